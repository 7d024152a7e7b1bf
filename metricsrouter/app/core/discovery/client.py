############################################################
#
# metricsrouter - Custom and External Metrics Router
#
# client.py: HTTP client for metrics API backends
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""HTTP client for backends serving the custom and external metrics APIs."""

import os
import ssl
from typing import Any, Dict, Optional, Set, Union

import httpx
from pydantic import ValidationError

from metricsrouter.app.core.discovery.models import (
    CUSTOM_METRICS_GROUP_VERSION,
    EXTERNAL_METRICS_GROUP_VERSION,
    ExternalMetricValueList,
    MetricValue,
    MetricValueList,
)
from metricsrouter.app.core.routing.errors import BackendUnreachable, NoRouteForMetric
from metricsrouter.app.core.routing.models import (
    BackendDescriptor,
    BackendIdentity,
    CustomMetricKey,
    ExternalMetricKey,
)
from metricsrouter.app.logging_config import get_logger
from metricsrouter.app.settings import Settings, get_settings

logger = get_logger(__name__)

CUSTOM_METRICS_PATH = f"/apis/{CUSTOM_METRICS_GROUP_VERSION}"
EXTERNAL_METRICS_PATH = f"/apis/{EXTERNAL_METRICS_GROUP_VERSION}"


def parse_custom_resource_name(name: str, namespaced: bool) -> Optional[CustomMetricKey]:
    """
    Parse a custom metrics API resource name into a metric key.

    Names look like ``pods/http_requests`` or ``deployments.apps/queue_depth``.

    Returns:
        The metric key, or None if the name is malformed
    """
    resource, sep, metric = name.partition("/")
    if not sep or not resource or not metric:
        return None
    resource, _, group = resource.partition(".")
    return CustomMetricKey(
        group=group,
        resource=resource,
        namespaced=namespaced,
        metric=metric,
    )


class MetricsClient:
    """
    Client for one metrics backend.

    Metrics API endpoints used:
    - GET /apis/custom.metrics.k8s.io/v1beta1 - List custom metrics
    - GET /apis/custom.metrics.k8s.io/v1beta1/... - Query custom metric values
    - GET /apis/external.metrics.k8s.io/v1beta1 - List external metrics
    - GET /apis/external.metrics.k8s.io/v1beta1/namespaces/{ns}/{metric} - Query external metric
    """

    def __init__(
        self,
        base_url: str,
        identity: Optional[BackendIdentity] = None,
        token: Optional[str] = None,
        verify: Union[bool, ssl.SSLContext] = True,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.identity = identity
        self.timeout = timeout
        self._token = token
        self._verify = verify
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def __repr__(self) -> str:
        return f"MetricsClient({self.identity or self.base_url})"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {"Accept": "application/json"}
            if self._token:
                headers["Authorization"] = f"Bearer {self._token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=headers,
                verify=self._verify,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def list_custom_metric_keys(self) -> Set[CustomMetricKey]:
        """Discover the custom metrics this backend serves."""
        data = await self._get_json(CUSTOM_METRICS_PATH)
        keys: Set[CustomMetricKey] = set()
        for resource in data.get("resources") or []:
            name = resource.get("name", "")
            key = parse_custom_resource_name(name, bool(resource.get("namespaced", False)))
            if key is None:
                logger.warning(
                    "malformed_custom_metric",
                    backend=str(self.identity),
                    name=name,
                )
                continue
            keys.add(key)
        return keys

    async def list_external_metric_keys(self) -> Set[ExternalMetricKey]:
        """Discover the external metrics this backend serves."""
        data = await self._get_json(EXTERNAL_METRICS_PATH)
        keys: Set[ExternalMetricKey] = set()
        for resource in data.get("resources") or []:
            name = resource.get("name")
            if not name:
                logger.warning("malformed_external_metric", backend=str(self.identity))
                continue
            keys.add(ExternalMetricKey(metric=name))
        return keys

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_metric_by_name(
        self,
        namespace: Optional[str],
        name: str,
        key: CustomMetricKey,
        metric_selector: Optional[str] = None,
    ) -> MetricValue:
        """Get a custom metric for a single named object."""
        path = self._custom_metric_path(namespace, name, key)
        data = await self._get_json(path, self._params(None, metric_selector))
        values = self._parse(MetricValueList, data)
        if not values.items:
            raise NoRouteForMetric(
                key.metric,
                f"backend {self.identity} returned no value for {key.group_resource}/{name}",
            )
        return values.items[0]

    async def get_metric_by_selector(
        self,
        namespace: Optional[str],
        selector: Optional[str],
        key: CustomMetricKey,
        metric_selector: Optional[str] = None,
    ) -> MetricValueList:
        """Get a custom metric for every object matching a label selector."""
        path = self._custom_metric_path(namespace, "*", key)
        data = await self._get_json(path, self._params(selector, metric_selector))
        return self._parse(MetricValueList, data)

    async def get_external_metric(
        self,
        namespace: str,
        key: ExternalMetricKey,
        metric_selector: Optional[str] = None,
    ) -> ExternalMetricValueList:
        """Get an external metric's values."""
        path = f"{EXTERNAL_METRICS_PATH}/namespaces/{namespace}/{key.metric}"
        data = await self._get_json(path, self._params(metric_selector, None))
        return self._parse(ExternalMetricValueList, data)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _custom_metric_path(namespace: Optional[str], name: str, key: CustomMetricKey) -> str:
        if key.namespaced and namespace:
            return (
                f"{CUSTOM_METRICS_PATH}/namespaces/{namespace}"
                f"/{key.group_resource}/{name}/{key.metric}"
            )
        return f"{CUSTOM_METRICS_PATH}/{key.group_resource}/{name}/{key.metric}"

    @staticmethod
    def _params(selector: Optional[str], metric_selector: Optional[str]) -> Dict[str, str]:
        params = {}
        if selector:
            params["labelSelector"] = selector
        if metric_selector:
            params["metricLabelSelector"] = metric_selector
        return params

    def _parse(self, model, data: Dict[str, Any]):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise BackendUnreachable(self.identity, f"invalid response payload: {e}") from e

    async def _get_json(self, path: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        try:
            client = await self._get_client()
            response = await client.get(path, params=params)
        except httpx.TimeoutException as e:
            raise BackendUnreachable(self.identity, f"timeout requesting {path}") from e
        except httpx.HTTPError as e:
            raise BackendUnreachable(self.identity, f"{type(e).__name__}: {e}") from e

        if response.status_code != 200:
            raise BackendUnreachable(
                self.identity, f"HTTP {response.status_code} from {path}"
            )
        try:
            return response.json()
        except ValueError as e:
            raise BackendUnreachable(self.identity, f"invalid JSON from {path}") from e


def _build_ssl_context(descriptor: BackendDescriptor, settings: Settings) -> Union[bool, ssl.SSLContext]:
    if descriptor.insecure_skip_tls_verify:
        return False
    if os.path.exists(settings.root_ca_file):
        return ssl.create_default_context(cafile=settings.root_ca_file)
    logger.warning(
        "root_ca_missing",
        backend=str(descriptor.identity),
        path=settings.root_ca_file,
    )
    return True


def create_metrics_client(
    descriptor: BackendDescriptor,
    settings: Optional[Settings] = None,
) -> MetricsClient:
    """
    Build a client for a backend descriptor.

    Reads the bearer token and CA bundle configured in settings.

    Raises:
        OSError: if the token file cannot be read
        ValueError: if the descriptor's port is out of range
    """
    settings = settings or get_settings()
    if not 0 < descriptor.port < 65536:
        raise ValueError(f"invalid port {descriptor.port}")
    with open(settings.token_file, "r", encoding="utf-8") as f:
        token = f.read().strip()

    return MetricsClient(
        descriptor.base_url,
        identity=descriptor.identity,
        token=token,
        verify=_build_ssl_context(descriptor, settings),
        timeout=settings.discovery_timeout,
    )
