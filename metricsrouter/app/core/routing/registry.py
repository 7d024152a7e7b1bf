############################################################
#
# metricsrouter - Custom and External Metrics Router
#
# registry.py: Backend registry mapping metrics to backends
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Backend registry - the single source of truth for routing decisions."""

import inspect
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from prometheus_client import Gauge

from metricsrouter.app.core.discovery.gateway import ClientFactory, build_client
from metricsrouter.app.core.routing.errors import (
    BackendPropertiesMissing,
    NoRouteForMetric,
)
from metricsrouter.app.core.routing.locks import ReadWriteLock
from metricsrouter.app.core.routing.models import (
    BackendDescriptor,
    BackendIdentity,
    BackendProperties,
    CandidateEntry,
    CustomMetricKey,
    ExternalMetricKey,
    MetricKey,
    MetricKind,
    RegistrySnapshot,
)
from metricsrouter.app.core.routing.priority_index import PriorityIndex
from metricsrouter.app.logging_config import get_logger

logger = get_logger(__name__)

REGISTERED_BACKENDS = Gauge(
    "metricsrouter_registered_backends",
    "Number of backends with a live properties record",
)
ROUTED_METRICS = Gauge(
    "metricsrouter_routed_metrics",
    "Number of metric keys with at least one candidate backend",
    ["kind"],
)

_KEY_TYPES = {
    MetricKind.CUSTOM: CustomMetricKey,
    MetricKind.EXTERNAL: ExternalMetricKey,
}


class BackendRegistry:
    """
    Central registry for metric routing.

    Responsibilities:
    - Hold one PriorityIndex per metric key, for custom and external metrics
    - Hold the properties record (discovered keys, client) of each backend
    - Reconcile a backend's index entries against a freshly discovered catalog
    - Pick the authoritative backend for a metric at query time

    Every operation runs under one readers-writer lock so a reader never
    observes an index entry without its properties record or vice versa.
    Discovery and client construction happen before the lock is taken.
    """

    def __init__(self, client_factory: Optional[ClientFactory] = None):
        self._client_factory = client_factory
        self._lock = ReadWriteLock()
        self._properties: Dict[BackendIdentity, BackendProperties] = {}
        self._indices: Dict[MetricKind, Dict[Any, PriorityIndex]] = {
            MetricKind.CUSTOM: {},
            MetricKind.EXTERNAL: {},
        }

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._properties)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def upsert(
        self,
        descriptor: BackendDescriptor,
        custom_keys: Iterable[CustomMetricKey] = (),
        external_keys: Iterable[ExternalMetricKey] = (),
        client: Any = None,
    ) -> Any:
        """
        Reconcile a backend's index entries with its discovered catalog.

        Args:
            descriptor: Current desired state of the backend
            custom_keys: Custom metric keys the backend exposes right now
            external_keys: External metric keys the backend exposes right now
            client: Query client for the backend; built with the registry's
                client factory when omitted

        Returns:
            The client this call replaced, if any, so the caller can close it

        Raises:
            BackendUnreachable: if the client cannot be built. State is unchanged.
        """
        identity = descriptor.identity
        if client is None:
            client = self._build_client(descriptor)

        new_custom = self._filter_keys(identity, MetricKind.CUSTOM, custom_keys)
        new_external = self._filter_keys(identity, MetricKind.EXTERNAL, external_keys)
        entry = CandidateEntry.from_descriptor(descriptor)

        with self._lock.write_locked():
            previous = self._properties.get(identity)

            stale: Dict[MetricKind, frozenset] = {
                MetricKind.CUSTOM: frozenset(),
                MetricKind.EXTERNAL: frozenset(),
            }
            if previous is not None:
                stale[MetricKind.CUSTOM] = previous.custom_keys - new_custom
                stale[MetricKind.EXTERNAL] = previous.external_keys - new_external

            # Build every updated index before touching shared state
            staged: List[Tuple[MetricKind, Any, PriorityIndex]] = []
            for kind, keys in ((MetricKind.CUSTOM, new_custom), (MetricKind.EXTERNAL, new_external)):
                index_map = self._indices[kind]
                for key in keys:
                    index = index_map.get(key)
                    if index is None:
                        index = PriorityIndex(key)
                    staged.append((kind, key, index.with_entry(entry)))

            for kind, keys in stale.items():
                for key in keys:
                    self._remove_entry(kind, key, identity)

            for kind, key, index in staged:
                self._indices[kind][key] = index

            self._properties[identity] = BackendProperties(
                priority=descriptor.priority,
                created_at=descriptor.created_at,
                custom_keys=new_custom,
                external_keys=new_external,
                client=client,
            )
            self._update_gauges()

        logger.info(
            "backend_upserted",
            backend=str(identity),
            priority=descriptor.priority,
            custom_metrics=len(new_custom),
            external_metrics=len(new_external),
            stale_custom=len(stale[MetricKind.CUSTOM]),
            stale_external=len(stale[MetricKind.EXTERNAL]),
        )

        if previous is not None and previous.client is not client:
            return previous.client
        return None

    def remove(self, identity: BackendIdentity) -> Optional[BackendProperties]:
        """
        Remove a backend and every index entry it owns.

        Unknown identities are ignored.

        Returns:
            The removed properties record, or None if nothing was registered
        """
        with self._lock.write_locked():
            properties = self._properties.pop(identity, None)
            if properties is None:
                return None
            for kind in MetricKind:
                for key in properties.keys_for(kind):
                    self._remove_entry(kind, key, identity)
            self._update_gauges()

        logger.info(
            "backend_removed",
            backend=str(identity),
            custom_metrics=len(properties.custom_keys),
            external_metrics=len(properties.external_keys),
        )
        return properties

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def resolve(self, key: MetricKey, kind: Optional[MetricKind] = None) -> Any:
        """
        Pick the backend client that should answer queries for ``key``.

        Args:
            key: Metric key to route
            kind: Metric family; inferred from the key type when omitted

        Raises:
            NoRouteForMetric: no backend claims the metric
            NoCandidate: the metric's index is empty
            BackendPropertiesMissing: the winner vanished concurrently; retry
        """
        kind = kind or self._kind_of(key)
        with self._lock.read_locked():
            index = self._indices[kind].get(key)
            if index is None:
                raise NoRouteForMetric(key)
            best = index.best()
            properties = self._properties.get(best.identity)
            if properties is None:
                raise BackendPropertiesMissing(best.identity)
            return properties.client

    def resolve_identity(self, key: MetricKey, kind: Optional[MetricKind] = None) -> BackendIdentity:
        """Identity of the backend ``resolve`` would pick."""
        kind = kind or self._kind_of(key)
        with self._lock.read_locked():
            index = self._indices[kind].get(key)
            if index is None:
                raise NoRouteForMetric(key)
            return index.best().identity

    def list_metric_keys(self, kind: MetricKind) -> Set[MetricKey]:
        """All metric keys of ``kind`` that currently have a backend."""
        with self._lock.read_locked():
            return set(self._indices[kind])

    def candidates(self, key: MetricKey, kind: Optional[MetricKind] = None) -> Tuple[CandidateEntry, ...]:
        """Candidates for ``key`` in selection order (empty if unrouted)."""
        kind = kind or self._kind_of(key)
        with self._lock.read_locked():
            index = self._indices[kind].get(key)
            return index.entries() if index is not None else ()

    def get_properties(self, identity: BackendIdentity) -> Optional[BackendProperties]:
        with self._lock.read_locked():
            return self._properties.get(identity)

    def identities(self) -> List[BackendIdentity]:
        with self._lock.read_locked():
            return sorted(self._properties)

    def snapshot(self) -> RegistrySnapshot:
        """Consistent copy of the full registry state."""
        with self._lock.read_locked():
            return RegistrySnapshot(
                properties=dict(self._properties),
                custom_index={
                    k: v.entries() for k, v in self._indices[MetricKind.CUSTOM].items()
                },
                external_index={
                    k: v.entries() for k, v in self._indices[MetricKind.EXTERNAL].items()
                },
            )

    async def close(self) -> None:
        """Drop all state and close every owned client."""
        with self._lock.write_locked():
            clients = [p.client for p in self._properties.values()]
            self._properties.clear()
            for index_map in self._indices.values():
                index_map.clear()
            self._update_gauges()

        for client in clients:
            await close_client(client)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _build_client(self, descriptor: BackendDescriptor) -> Any:
        if self._client_factory is None:
            raise ValueError("no client supplied and no client factory configured")
        return build_client(self._client_factory, descriptor)

    def _remove_entry(self, kind: MetricKind, key: Any, identity: BackendIdentity) -> None:
        """Remove one candidate entry and prune the index if it emptied."""
        index_map = self._indices[kind]
        index = index_map.get(key)
        if index is None:
            return
        if index.remove(identity):
            del index_map[key]

    @staticmethod
    def _filter_keys(identity: BackendIdentity, kind: MetricKind, keys: Iterable[Any]) -> frozenset:
        """Keep only well-typed keys; anything else is logged and not indexed."""
        expected = _KEY_TYPES[kind]
        good = set()
        for key in keys:
            if isinstance(key, expected):
                good.add(key)
            else:
                logger.warning(
                    "malformed_metric_key_skipped",
                    backend=str(identity),
                    kind=kind.value,
                    key=repr(key),
                )
        return frozenset(good)

    @staticmethod
    def _kind_of(key: MetricKey) -> MetricKind:
        if isinstance(key, CustomMetricKey):
            return MetricKind.CUSTOM
        if isinstance(key, ExternalMetricKey):
            return MetricKind.EXTERNAL
        raise TypeError(f"not a metric key: {key!r}")

    def _update_gauges(self) -> None:
        REGISTERED_BACKENDS.set(len(self._properties))
        for kind, index_map in self._indices.items():
            ROUTED_METRICS.labels(kind=kind.value).set(len(index_map))


async def close_client(client: Any) -> None:
    """Close a backend client if it exposes a ``close`` method."""
    close = getattr(client, "close", None)
    if close is None:
        return
    try:
        result = close()
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.warning("client_close_error", error=str(e))


# Global registry instance
_registry: Optional[BackendRegistry] = None


def get_registry() -> BackendRegistry:
    """Get the global registry instance."""
    global _registry
    if _registry is None:
        from metricsrouter.app.core.discovery.client import create_metrics_client
        _registry = BackendRegistry(client_factory=create_metrics_client)
    return _registry


async def shutdown_registry() -> None:
    """Close the global registry and its clients."""
    global _registry
    if _registry:
        await _registry.close()
        _registry = None
