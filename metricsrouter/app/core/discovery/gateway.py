############################################################
#
# metricsrouter - Custom and External Metrics Router
#
# gateway.py: Interface of per-backend discovery and query clients
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Discovery gateway interface.

The registry and controller only depend on this protocol; MetricsClient is
the HTTP implementation used in production.
"""

from typing import Callable, Optional, Protocol, Set, runtime_checkable

from metricsrouter.app.core.discovery.models import (
    ExternalMetricValueList,
    MetricValue,
    MetricValueList,
)
from metricsrouter.app.core.routing.errors import BackendUnreachable
from metricsrouter.app.core.routing.models import (
    BackendDescriptor,
    CustomMetricKey,
    ExternalMetricKey,
)


@runtime_checkable
class DiscoveryGateway(Protocol):
    """Discovery and query operations against one backend."""

    async def list_custom_metric_keys(self) -> Set[CustomMetricKey]:
        ...

    async def list_external_metric_keys(self) -> Set[ExternalMetricKey]:
        ...

    async def get_metric_by_name(
        self,
        namespace: Optional[str],
        name: str,
        key: CustomMetricKey,
        metric_selector: Optional[str] = None,
    ) -> MetricValue:
        ...

    async def get_metric_by_selector(
        self,
        namespace: Optional[str],
        selector: Optional[str],
        key: CustomMetricKey,
        metric_selector: Optional[str] = None,
    ) -> MetricValueList:
        ...

    async def get_external_metric(
        self,
        namespace: str,
        key: ExternalMetricKey,
        metric_selector: Optional[str] = None,
    ) -> ExternalMetricValueList:
        ...

    async def close(self) -> None:
        ...


ClientFactory = Callable[[BackendDescriptor], DiscoveryGateway]


def build_client(factory: ClientFactory, descriptor: BackendDescriptor) -> DiscoveryGateway:
    """
    Build a backend client with ``factory``.

    Raises:
        BackendUnreachable: if the factory fails for any reason
    """
    try:
        return factory(descriptor)
    except BackendUnreachable:
        raise
    except Exception as e:
        raise BackendUnreachable(descriptor.identity, f"failed to build client: {e}") from e
