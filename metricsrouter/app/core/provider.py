############################################################
#
# metricsrouter - Custom and External Metrics Router
#
# provider.py: Routed metrics provider for the query path
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Routed metrics provider.

Resolves each query to a single backend through the registry and delegates
the query to that backend's client.
"""

from typing import List, Optional

from metricsrouter.app.core.discovery.gateway import DiscoveryGateway
from metricsrouter.app.core.discovery.models import (
    ExternalMetricValueList,
    MetricValue,
    MetricValueList,
)
from metricsrouter.app.core.routing.errors import BackendPropertiesMissing
from metricsrouter.app.core.routing.models import (
    CustomMetricKey,
    ExternalMetricKey,
    MetricKey,
    MetricKind,
)
from metricsrouter.app.core.routing.registry import BackendRegistry, get_registry
from metricsrouter.app.logging_config import get_logger
from metricsrouter.app.settings import get_settings

logger = get_logger(__name__)


class RoutedMetricsProvider:
    """Custom and external metrics provider backed by the routing registry."""

    def __init__(self, registry: BackendRegistry, resolve_attempts: Optional[int] = None):
        self._registry = registry
        self._resolve_attempts = resolve_attempts or get_settings().resolve_retry_attempts

    def backend_for(self, key: MetricKey, kind: MetricKind) -> DiscoveryGateway:
        """
        Resolve the backend for a metric.

        BackendPropertiesMissing is a transient race with a concurrent
        removal, so the lookup is retried a few times.

        Raises:
            NoRouteForMetric: no backend serves the metric
            BackendPropertiesMissing: still racing after all attempts
        """
        last_error: Optional[BackendPropertiesMissing] = None
        for attempt in range(self._resolve_attempts):
            try:
                return self._registry.resolve(key, kind)
            except BackendPropertiesMissing as e:
                last_error = e
                logger.debug(
                    "resolve_race_retry",
                    metric=str(key),
                    backend=str(e.identity),
                    attempt=attempt + 1,
                )
        raise last_error

    async def get_metric_by_name(
        self,
        namespace: Optional[str],
        name: str,
        key: CustomMetricKey,
        metric_selector: Optional[str] = None,
    ) -> MetricValue:
        backend = self.backend_for(key, MetricKind.CUSTOM)
        return await backend.get_metric_by_name(namespace, name, key, metric_selector)

    async def get_metric_by_selector(
        self,
        namespace: Optional[str],
        selector: Optional[str],
        key: CustomMetricKey,
        metric_selector: Optional[str] = None,
    ) -> MetricValueList:
        backend = self.backend_for(key, MetricKind.CUSTOM)
        return await backend.get_metric_by_selector(namespace, selector, key, metric_selector)

    async def get_external_metric(
        self,
        namespace: str,
        key: ExternalMetricKey,
        metric_selector: Optional[str] = None,
    ) -> ExternalMetricValueList:
        backend = self.backend_for(key, MetricKind.EXTERNAL)
        return await backend.get_external_metric(namespace, key, metric_selector)

    def list_all_metrics(self) -> List[CustomMetricKey]:
        keys = self._registry.list_metric_keys(MetricKind.CUSTOM)
        return sorted(keys, key=lambda k: (k.group, k.resource, k.metric, k.namespaced))

    def list_all_external_metrics(self) -> List[ExternalMetricKey]:
        keys = self._registry.list_metric_keys(MetricKind.EXTERNAL)
        return sorted(keys, key=lambda k: k.metric)

    @staticmethod
    def custom_key(resource: str, metric: str, namespaced: bool) -> CustomMetricKey:
        """
        Build the metric key for a request path's resource and metric.

        ``resource`` may be ``deployments.apps`` or a bare ``pods``. Keys no
        backend serves are rejected by the lookup itself.
        """
        name, _, group = resource.partition(".")
        return CustomMetricKey(group=group, resource=name, namespaced=namespaced, metric=metric)


# Global provider instance
_provider: Optional[RoutedMetricsProvider] = None


def get_provider() -> RoutedMetricsProvider:
    """Get the global provider instance."""
    global _provider
    if _provider is None:
        _provider = RoutedMetricsProvider(get_registry())
    return _provider


def reset_provider() -> None:
    global _provider
    _provider = None
