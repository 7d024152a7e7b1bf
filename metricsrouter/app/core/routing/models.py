############################################################
#
# metricsrouter - Custom and External Metrics Router
#
# models.py: Routing data models for backends and metric keys
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Routing data models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple, Union


class MetricKind(str, Enum):
    """Metric API families a backend can serve."""
    CUSTOM = "custom"
    EXTERNAL = "external"


@dataclass(frozen=True, order=True)
class BackendIdentity:
    """Uniquely identifies a registered backend service."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, key: str) -> "BackendIdentity":
        """Parse a ``namespace/name`` key."""
        namespace, sep, name = key.partition("/")
        if not sep or not namespace or not name:
            raise ValueError(f"invalid backend key: {key!r}")
        return cls(namespace=namespace, name=name)


@dataclass(frozen=True)
class CustomMetricKey:
    """Custom metric: resource scope plus metric name."""

    group: str
    resource: str
    namespaced: bool
    metric: str

    @property
    def group_resource(self) -> str:
        """Resource qualified by its API group, e.g. ``deployments.apps``."""
        if self.group:
            return f"{self.resource}.{self.group}"
        return self.resource


@dataclass(frozen=True)
class ExternalMetricKey:
    """External metric: identified by name alone."""

    metric: str


MetricKey = Union[CustomMetricKey, ExternalMetricKey]


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware datetime; naive values are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class BackendDescriptor:
    """Desired state of a registered backend.

    Immutable. A changed registration is represented by a new descriptor
    under the same identity.
    """

    identity: BackendIdentity
    port: int
    priority: int
    created_at: datetime
    insecure_skip_tls_verify: bool = False
    custom_metrics: bool = False
    external_metrics: bool = False
    host: Optional[str] = None

    def __post_init__(self):
        # Index ordering compares created_at across backends
        object.__setattr__(self, "created_at", as_utc(self.created_at))

    @property
    def hostname(self) -> str:
        """Host to connect to; defaults to the in-cluster service DNS name."""
        return self.host or f"{self.identity.name}.{self.identity.namespace}"

    @property
    def base_url(self) -> str:
        return f"https://{self.hostname}:{self.port}"


@dataclass(frozen=True)
class CandidateEntry:
    """Projection of a descriptor stored inside a PriorityIndex."""

    identity: BackendIdentity
    created_at: datetime
    priority: int

    @property
    def sort_key(self) -> Tuple[int, datetime, str, str]:
        """Selection precedence: priority, then age, then identity."""
        return (
            self.priority,
            self.created_at,
            self.identity.namespace,
            self.identity.name,
        )

    @classmethod
    def from_descriptor(cls, descriptor: BackendDescriptor) -> "CandidateEntry":
        return cls(
            identity=descriptor.identity,
            created_at=descriptor.created_at,
            priority=descriptor.priority,
        )


@dataclass(frozen=True)
class BackendProperties:
    """Per-backend record of the last successful reconciliation."""

    priority: int
    created_at: datetime
    custom_keys: FrozenSet[CustomMetricKey] = frozenset()
    external_keys: FrozenSet[ExternalMetricKey] = frozenset()
    client: Any = None

    def keys_for(self, kind: MetricKind) -> FrozenSet[MetricKey]:
        if kind == MetricKind.CUSTOM:
            return self.custom_keys
        return self.external_keys


@dataclass(frozen=True)
class RegistrySnapshot:
    """Point-in-time copy of the registry state."""

    properties: Dict[BackendIdentity, BackendProperties] = field(default_factory=dict)
    custom_index: Dict[CustomMetricKey, Tuple[CandidateEntry, ...]] = field(default_factory=dict)
    external_index: Dict[ExternalMetricKey, Tuple[CandidateEntry, ...]] = field(default_factory=dict)

    def index_for(self, kind: MetricKind) -> Dict[Any, Tuple[CandidateEntry, ...]]:
        if kind == MetricKind.CUSTOM:
            return self.custom_index
        return self.external_index
