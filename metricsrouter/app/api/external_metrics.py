############################################################
#
# metricsrouter - Custom and External Metrics Router
#
# external_metrics.py: external.metrics.k8s.io API endpoints
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""External metrics API endpoints, routed to the selected backend."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from metricsrouter.app.api.errors import to_http_exception
from metricsrouter.app.core.discovery.client import EXTERNAL_METRICS_PATH
from metricsrouter.app.core.discovery.models import EXTERNAL_METRICS_GROUP_VERSION
from metricsrouter.app.core.provider import RoutedMetricsProvider, get_provider
from metricsrouter.app.core.routing.errors import MetricsRouterError
from metricsrouter.app.core.routing.models import ExternalMetricKey
from metricsrouter.app.logging_config import get_logger

logger = get_logger(__name__)
router = APIRouter(tags=["external-metrics"])


@router.get(EXTERNAL_METRICS_PATH)
async def list_external_metrics(
    provider: RoutedMetricsProvider = Depends(get_provider),
) -> Dict[str, Any]:
    """List every external metric that has a backend, as an APIResourceList."""
    resources = [
        {
            "name": key.metric,
            "singularName": "",
            "namespaced": True,
            "kind": "ExternalMetricValueList",
            "verbs": ["get"],
        }
        for key in provider.list_all_external_metrics()
    ]
    return {
        "kind": "APIResourceList",
        "apiVersion": "v1",
        "groupVersion": EXTERNAL_METRICS_GROUP_VERSION,
        "resources": resources,
    }


@router.get(EXTERNAL_METRICS_PATH + "/namespaces/{namespace}/{metric}")
async def get_external_metric(
    namespace: str,
    metric: str,
    label_selector: Optional[str] = Query(None, alias="labelSelector"),
    provider: RoutedMetricsProvider = Depends(get_provider),
) -> Dict[str, Any]:
    """Get an external metric's values from the backend that serves it."""
    try:
        values = await provider.get_external_metric(
            namespace, ExternalMetricKey(metric=metric), label_selector
        )
    except MetricsRouterError as e:
        logger.info(
            "external_metric_query_failed",
            namespace=namespace,
            metric=metric,
            error=str(e),
        )
        raise to_http_exception(e)
    return values.to_wire()
