############################################################
#
# metricsrouter - Custom and External Metrics Router
#
# sources.py: Metrics source registrations and change events
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Metrics source registrations.

A metrics source declares a backend service, its priority and which metric
families it serves. The SourceStore holds the desired set of sources and
notifies subscribers of Added/Updated/Deleted changes.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from metricsrouter.app.core.routing.errors import MalformedDescriptor
from metricsrouter.app.core.routing.models import BackendDescriptor, BackendIdentity, as_utc
from metricsrouter.app.logging_config import get_logger

logger = get_logger(__name__)


class MetricType(str, Enum):
    """Metric families a source can declare."""
    CUSTOM_METRICS = "CustomMetrics"
    EXTERNAL_METRICS = "ExternalMetrics"


class ServiceReference(BaseModel):
    """The backend service a source points at."""
    namespace: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    port: int = 443


class MetricsSource(BaseModel):
    """A registered metrics backend."""

    model_config = ConfigDict(populate_by_name=True)

    service: ServiceReference
    priority: int = 0
    insecure_skip_tls_verify: bool = Field(default=False, alias="insecureSkipTLSVerify")
    # Kept as plain strings so unknown values surface as MalformedDescriptor
    # during reconciliation instead of being rejected at registration.
    metric_types: List[str] = Field(default_factory=list, alias="metricTypes")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")

    @field_validator("created_at")
    @classmethod
    def validate_created_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Timestamps without an offset are taken to be UTC."""
        return as_utc(v) if v is not None else v

    @property
    def identity(self) -> BackendIdentity:
        return BackendIdentity(namespace=self.service.namespace, name=self.service.name)

    def to_descriptor(self) -> BackendDescriptor:
        """
        Convert to an immutable backend descriptor.

        Raises:
            MalformedDescriptor: on unknown metric types or an invalid port
        """
        custom = external = False
        for metric_type in self.metric_types:
            if metric_type == MetricType.CUSTOM_METRICS.value:
                custom = True
            elif metric_type == MetricType.EXTERNAL_METRICS.value:
                external = True
            else:
                raise MalformedDescriptor(self.identity, f"unknown metric type {metric_type!r}")

        if not 0 < self.service.port < 65536:
            raise MalformedDescriptor(self.identity, f"invalid port {self.service.port}")

        return BackendDescriptor(
            identity=self.identity,
            port=self.service.port,
            priority=self.priority,
            created_at=self.created_at or datetime.now(timezone.utc),
            insecure_skip_tls_verify=self.insecure_skip_tls_verify,
            custom_metrics=custom,
            external_metrics=external,
        )


class SourceEventType(str, Enum):
    ADDED = "Added"
    UPDATED = "Updated"
    DELETED = "Deleted"


@dataclass(frozen=True)
class SourceEvent:
    """A registration change."""

    type: SourceEventType
    identity: BackendIdentity
    source: Optional[MetricsSource] = None


SourceEventHandler = Callable[[SourceEvent], Awaitable[None]]

_SOURCE_LIST = TypeAdapter(List[MetricsSource])


class SourceStore:
    """In-memory store of desired metrics sources with change notification."""

    def __init__(self):
        self._sources: Dict[BackendIdentity, MetricsSource] = {}
        self._handlers: List[SourceEventHandler] = []

    def __len__(self) -> int:
        return len(self._sources)

    def subscribe(self, handler: SourceEventHandler) -> None:
        """Register an async handler for change events."""
        self._handlers.append(handler)

    def unsubscribe(self, handler: SourceEventHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def get(self, identity: BackendIdentity) -> Optional[MetricsSource]:
        """Current desired state for ``identity``, or None if not registered."""
        return self._sources.get(identity)

    def list(self) -> List[MetricsSource]:
        return [self._sources[k] for k in sorted(self._sources)]

    async def put(self, source: MetricsSource) -> MetricsSource:
        """Add or replace a source; the original creation time is preserved."""
        identity = source.identity
        existing = self._sources.get(identity)
        if existing is not None:
            created_at = existing.created_at
        else:
            created_at = source.created_at or datetime.now(timezone.utc)
        source = source.model_copy(update={"created_at": created_at})
        self._sources[identity] = source

        event_type = SourceEventType.ADDED if existing is None else SourceEventType.UPDATED
        logger.info("metrics_source_stored", backend=str(identity), change=event_type.value)
        await self._emit(SourceEvent(type=event_type, identity=identity, source=source))
        return source

    async def delete(self, identity: BackendIdentity) -> bool:
        """Delete a source. Returns False if it was not registered."""
        source = self._sources.pop(identity, None)
        if source is None:
            return False
        logger.info("metrics_source_deleted", backend=str(identity))
        await self._emit(SourceEvent(type=SourceEventType.DELETED, identity=identity, source=source))
        return True

    async def load_file(self, path: str) -> List[MetricsSource]:
        """Load a JSON list of sources and store each of them."""
        sources = _SOURCE_LIST.validate_json(Path(path).read_bytes())
        stored = [await self.put(source) for source in sources]
        logger.info("metrics_sources_loaded", path=path, count=len(stored))
        return stored

    async def _emit(self, event: SourceEvent) -> None:
        for handler in list(self._handlers):
            try:
                await handler(event)
            except Exception as e:
                logger.error(
                    "source_event_handler_error",
                    backend=str(event.identity),
                    change=event.type.value,
                    error=str(e),
                )
