############################################################
#
# metricsrouter - Custom and External Metrics Router
#
# custom_metrics.py: custom.metrics.k8s.io API endpoints
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Custom metrics API endpoints, routed to the selected backend."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from metricsrouter.app.api.errors import to_http_exception
from metricsrouter.app.core.discovery.client import CUSTOM_METRICS_PATH
from metricsrouter.app.core.discovery.models import (
    CUSTOM_METRICS_GROUP_VERSION,
    MetricValueList,
)
from metricsrouter.app.core.provider import RoutedMetricsProvider, get_provider
from metricsrouter.app.core.routing.errors import MetricsRouterError
from metricsrouter.app.logging_config import get_logger

logger = get_logger(__name__)
router = APIRouter(tags=["custom-metrics"])


@router.get(CUSTOM_METRICS_PATH)
async def list_custom_metrics(
    provider: RoutedMetricsProvider = Depends(get_provider),
) -> Dict[str, Any]:
    """List every custom metric that has a backend, as an APIResourceList."""
    resources = [
        {
            "name": f"{key.group_resource}/{key.metric}",
            "singularName": "",
            "namespaced": key.namespaced,
            "kind": "MetricValueList",
            "verbs": ["get"],
        }
        for key in provider.list_all_metrics()
    ]
    return {
        "kind": "APIResourceList",
        "apiVersion": "v1",
        "groupVersion": CUSTOM_METRICS_GROUP_VERSION,
        "resources": resources,
    }


@router.get(CUSTOM_METRICS_PATH + "/namespaces/{namespace}/{resource}/{name}/{metric}")
async def get_namespaced_custom_metric(
    namespace: str,
    resource: str,
    name: str,
    metric: str,
    label_selector: Optional[str] = Query(None, alias="labelSelector"),
    metric_label_selector: Optional[str] = Query(None, alias="metricLabelSelector"),
    provider: RoutedMetricsProvider = Depends(get_provider),
) -> Dict[str, Any]:
    """Get a namespaced custom metric; ``name == "*"`` selects by label."""
    return await _get_custom_metric(
        provider, namespace, resource, name, metric, True,
        label_selector, metric_label_selector,
    )


@router.get(CUSTOM_METRICS_PATH + "/{resource}/{name}/{metric}")
async def get_root_scoped_custom_metric(
    resource: str,
    name: str,
    metric: str,
    label_selector: Optional[str] = Query(None, alias="labelSelector"),
    metric_label_selector: Optional[str] = Query(None, alias="metricLabelSelector"),
    provider: RoutedMetricsProvider = Depends(get_provider),
) -> Dict[str, Any]:
    """Get a root-scoped custom metric; ``name == "*"`` selects by label."""
    return await _get_custom_metric(
        provider, None, resource, name, metric, False,
        label_selector, metric_label_selector,
    )


async def _get_custom_metric(
    provider: RoutedMetricsProvider,
    namespace: Optional[str],
    resource: str,
    name: str,
    metric: str,
    namespaced: bool,
    label_selector: Optional[str],
    metric_label_selector: Optional[str],
) -> Dict[str, Any]:
    try:
        key = provider.custom_key(resource, metric, namespaced)
        if name == "*":
            values = await provider.get_metric_by_selector(
                namespace, label_selector, key, metric_label_selector
            )
        else:
            value = await provider.get_metric_by_name(
                namespace, name, key, metric_label_selector
            )
            values = MetricValueList(items=[value])
    except MetricsRouterError as e:
        logger.info(
            "custom_metric_query_failed",
            namespace=namespace,
            resource=resource,
            name=name,
            metric=metric,
            error=str(e),
        )
        raise to_http_exception(e)
    return values.to_wire()
