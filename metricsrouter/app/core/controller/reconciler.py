############################################################
#
# metricsrouter - Custom and External Metrics Router
#
# reconciler.py: Reconciliation controller for metrics sources
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Reconciliation controller - keeps the registry in sync with sources.

Flow per backend identity:
    change event -> queue -> worker -> store lookup -> discovery -> registry

Deletes bypass the queue and remove the backend from the registry
immediately. Failed reconciliations are retried with exponential backoff
until they succeed or the source is deleted.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from prometheus_client import Counter, Histogram

from metricsrouter.app.core.controller.sources import (
    MetricsSource,
    SourceEvent,
    SourceEventType,
    SourceStore,
)
from metricsrouter.app.core.controller.workqueue import ExponentialBackoff, WorkQueue
from metricsrouter.app.core.discovery.client import create_metrics_client
from metricsrouter.app.core.discovery.gateway import ClientFactory, build_client
from metricsrouter.app.core.routing.errors import MalformedDescriptor
from metricsrouter.app.core.routing.models import BackendDescriptor, BackendIdentity
from metricsrouter.app.core.routing.registry import BackendRegistry, close_client
from metricsrouter.app.logging_config import bound_log_context, get_logger
from metricsrouter.app.settings import get_settings

logger = get_logger(__name__)

RECONCILE_TOTAL = Counter(
    "metricsrouter_reconcile_total",
    "Reconciliation attempts by result",
    ["result"],  # success, deleted, error, malformed
)
RECONCILE_DURATION = Histogram(
    "metricsrouter_reconcile_duration_seconds",
    "Time spent reconciling one backend, discovery included",
)


class ReconcileState(str, Enum):
    """Lifecycle of a backend identity inside the controller."""
    PENDING = "pending"
    RECONCILING = "reconciling"
    SETTLED = "settled"
    FAILED = "failed"


@dataclass
class ReconcileStatus:
    """Latest reconciliation status of one backend."""

    state: ReconcileState = ReconcileState.PENDING
    last_error: Optional[str] = None
    attempts: int = 0
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ReconcileController:
    """
    Drives BackendRegistry from SourceStore change events.

    Responsibilities:
    - Queue Added/Updated sources, coalescing duplicates per identity
    - Remove deleted sources from the registry synchronously
    - Discover each backend's catalog and upsert it, outside the registry lock
    - Retry failures with backoff, skip malformed sources until they change
    - Periodically resync every stored source
    """

    def __init__(
        self,
        store: SourceStore,
        registry: BackendRegistry,
        client_factory: Optional[ClientFactory] = None,
        workers: Optional[int] = None,
        resync_period: Optional[float] = None,
        queue: Optional[WorkQueue] = None,
    ):
        settings = get_settings()
        self._store = store
        self._registry = registry
        self._client_factory = client_factory or create_metrics_client
        self._workers = workers or settings.reconcile_workers
        self._resync_period = (
            resync_period if resync_period is not None else settings.resync_period
        )
        self._queue = queue or WorkQueue(
            "metricsrouter",
            ExponentialBackoff(settings.retry_base_delay, settings.retry_max_delay),
        )

        self._statuses: Dict[BackendIdentity, ReconcileStatus] = {}
        # Descriptor behind each registered client, for client reuse
        self._descriptors: Dict[BackendIdentity, BackendDescriptor] = {}
        # Sources that failed to parse; skipped until they change
        self._malformed: Dict[BackendIdentity, MetricsSource] = {}

        self._worker_tasks: List[asyncio.Task] = []
        self._resync_task: Optional[asyncio.Task] = None
        self._started = False

    @property
    def queue(self) -> WorkQueue:
        return self._queue

    @property
    def started(self) -> bool:
        return self._started

    def state(self, identity: BackendIdentity) -> Optional[ReconcileState]:
        status = self._statuses.get(identity)
        return status.state if status else None

    def states(self) -> Dict[BackendIdentity, ReconcileStatus]:
        return dict(self._statuses)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Subscribe to the store, queue existing sources and start workers."""
        if self._started:
            return
        self._store.subscribe(self.handle_event)
        for source in self._store.list():
            await self._enqueue(source.identity)

        self._worker_tasks = [
            asyncio.create_task(self._worker(i), name=f"reconcile-worker-{i}")
            for i in range(self._workers)
        ]
        if self._resync_period > 0:
            self._resync_task = asyncio.create_task(self._resync_loop())
        self._started = True
        logger.info(
            "reconcile_controller_started",
            workers=self._workers,
            resync_period=self._resync_period,
            sources=len(self._store),
        )

    async def stop(self) -> None:
        """Stop accepting work, let in-flight reconciliations finish."""
        if not self._started:
            return
        self._store.unsubscribe(self.handle_event)
        await self._queue.shut_down()

        if self._resync_task:
            self._resync_task.cancel()
            try:
                await self._resync_task
            except asyncio.CancelledError:
                pass
            self._resync_task = None

        await asyncio.gather(*self._worker_tasks, return_exceptions=True)
        self._worker_tasks = []
        self._started = False
        logger.info("reconcile_controller_stopped")

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def handle_event(self, event: SourceEvent) -> None:
        """Entry point for registration change events."""
        if event.type == SourceEventType.DELETED:
            await self.delete(event.identity)
            return
        self._malformed.pop(event.identity, None)
        await self._enqueue(event.identity)

    async def delete(self, identity: BackendIdentity) -> None:
        """Remove a backend now; no discovery is needed for a deleted source."""
        await self._remove_backend(identity)
        self._malformed.pop(identity, None)
        self._statuses.pop(identity, None)
        self._queue.forget(identity)
        if self._queue.is_processing(identity):
            # A worker may upsert after this removal; make it run once more
            # so it sees the source gone and removes it again.
            await self._queue.add(identity)
        else:
            await self._queue.discard(identity)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def reconcile(self, identity: BackendIdentity) -> bool:
        """
        Bring the registry in line with the current source for ``identity``.

        Returns:
            True if the source no longer exists and the backend was removed

        Raises:
            MalformedDescriptor: the source cannot be parsed
            BackendUnreachable: client construction or discovery failed
        """
        source = self._store.get(identity)
        if source is None:
            logger.info("metrics_source_gone", backend=str(identity))
            await self._remove_backend(identity)
            return True

        try:
            descriptor = source.to_descriptor()
        except MalformedDescriptor:
            self._malformed[identity] = source
            raise

        client, reused = self._client_for(descriptor)
        try:
            custom_keys = set()
            external_keys = set()
            if descriptor.custom_metrics:
                custom_keys = await client.list_custom_metric_keys()
            if descriptor.external_metrics:
                external_keys = await client.list_external_metric_keys()

            replaced = self._registry.upsert(
                descriptor, custom_keys, external_keys, client=client
            )
        except Exception:
            if not reused:
                await close_client(client)
            raise

        self._descriptors[identity] = descriptor
        if replaced is not None:
            await close_client(replaced)
        return False

    def _client_for(self, descriptor: BackendDescriptor):
        """Reuse the registered client when connection parameters are unchanged."""
        identity = descriptor.identity
        previous = self._descriptors.get(identity)
        properties = self._registry.get_properties(identity)
        if (
            previous is not None
            and properties is not None
            and properties.client is not None
            and previous.base_url == descriptor.base_url
            and previous.insecure_skip_tls_verify == descriptor.insecure_skip_tls_verify
        ):
            return properties.client, True

        return build_client(self._client_factory, descriptor), False

    async def _remove_backend(self, identity: BackendIdentity) -> None:
        self._descriptors.pop(identity, None)
        removed = self._registry.remove(identity)
        if removed is not None:
            await close_client(removed.client)

    async def _process(self, identity: BackendIdentity) -> None:
        status = self._statuses.setdefault(identity, ReconcileStatus())
        self._set_state(status, ReconcileState.RECONCILING)
        status.attempts += 1
        start = time.monotonic()

        try:
            deleted = await self.reconcile(identity)
        except MalformedDescriptor as e:
            RECONCILE_TOTAL.labels(result="malformed").inc()
            logger.warning("metrics_source_malformed", error=e.reason)
            status.last_error = str(e)
            self._set_state(status, ReconcileState.FAILED)
            self._queue.forget(identity)
            return
        except Exception as e:
            RECONCILE_TOTAL.labels(result="error").inc()
            logger.warning(
                "reconcile_failed",
                error=str(e),
                requeues=self._queue.num_requeues(identity),
            )
            status.last_error = str(e)
            self._set_state(status, ReconcileState.FAILED)
            self._queue.add_rate_limited(identity)
            return
        finally:
            RECONCILE_DURATION.observe(time.monotonic() - start)

        self._queue.forget(identity)
        if deleted:
            RECONCILE_TOTAL.labels(result="deleted").inc()
            self._statuses.pop(identity, None)
            return

        RECONCILE_TOTAL.labels(result="success").inc()
        status.last_error = None
        self._set_state(status, ReconcileState.SETTLED)

    async def _worker(self, worker_id: int) -> None:
        logger.debug("reconcile_worker_started", worker=worker_id)
        while True:
            identity, shutdown = await self._queue.get()
            if shutdown:
                break
            with bound_log_context(worker=worker_id, backend=str(identity)):
                try:
                    await self._process(identity)
                except Exception as e:
                    logger.error("reconcile_worker_error", error=str(e))
                finally:
                    await self._queue.done(identity)
        logger.debug("reconcile_worker_stopped", worker=worker_id)

    async def _resync_loop(self) -> None:
        """Periodically re-queue every source to pick up catalog drift."""
        while True:
            try:
                await asyncio.sleep(self._resync_period)
                await self.resync()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("resync_error", error=str(e))

    async def resync(self) -> None:
        """Queue every stored source except unchanged malformed ones."""
        count = 0
        for source in self._store.list():
            identity = source.identity
            if self._malformed.get(identity) == source:
                continue
            await self._enqueue(identity)
            count += 1
        logger.debug("resync_queued", count=count)

    async def _enqueue(self, identity: BackendIdentity) -> None:
        status = self._statuses.setdefault(identity, ReconcileStatus())
        if status.state != ReconcileState.RECONCILING:
            self._set_state(status, ReconcileState.PENDING)
        await self._queue.add(identity)

    @staticmethod
    def _set_state(status: ReconcileStatus, state: ReconcileState) -> None:
        status.state = state
        status.updated_at = datetime.now(timezone.utc)


# Global store and controller instances
_store: Optional[SourceStore] = None
_controller: Optional[ReconcileController] = None


def get_source_store() -> SourceStore:
    """Get the global source store."""
    global _store
    if _store is None:
        _store = SourceStore()
    return _store


def get_controller() -> ReconcileController:
    """Get the global controller instance."""
    global _controller
    if _controller is None:
        from metricsrouter.app.core.routing.registry import get_registry
        _controller = ReconcileController(get_source_store(), get_registry())
    return _controller


async def init_controller() -> ReconcileController:
    """Load configured sources and start the global controller."""
    settings = get_settings()
    store = get_source_store()
    if settings.sources_file:
        await store.load_file(settings.sources_file)
    controller = get_controller()
    await controller.start()
    return controller


async def shutdown_controller() -> None:
    """Stop the global controller."""
    global _controller, _store
    if _controller:
        await _controller.stop()
        _controller = None
    _store = None
