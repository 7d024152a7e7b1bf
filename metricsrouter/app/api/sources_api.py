############################################################
#
# metricsrouter - Custom and External Metrics Router
#
# sources_api.py: Admin endpoints for metrics source registration
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Admin API endpoints for metrics sources and routing state."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from metricsrouter.app.core.controller.reconciler import (
    ReconcileController,
    get_controller,
    get_source_store,
)
from metricsrouter.app.core.controller.sources import MetricsSource, SourceStore
from metricsrouter.app.core.routing.models import BackendIdentity, CandidateEntry
from metricsrouter.app.core.routing.registry import BackendRegistry, get_registry
from metricsrouter.app.logging_config import get_logger

logger = get_logger(__name__)
router = APIRouter()


# Response models
class BackendRouteResponse(BaseModel):
    """Registered backend and its reconciliation status."""
    backend: str
    priority: Optional[int] = None
    created_at: Optional[datetime] = None
    custom_metrics: List[str] = []
    external_metrics: List[str] = []
    state: Optional[str] = None
    last_error: Optional[str] = None
    attempts: int = 0


class MetricRouteResponse(BaseModel):
    """Candidates for one metric, best first."""
    metric: str
    kind: str
    namespaced: Optional[bool] = None
    candidates: List[str]


class RoutesResponse(BaseModel):
    backends: List[BackendRouteResponse]
    metrics: List[MetricRouteResponse]


def _source_wire(source: MetricsSource) -> Dict[str, Any]:
    return source.model_dump(by_alias=True, mode="json")


def _candidates(entries: List[CandidateEntry]) -> List[str]:
    return [str(e.identity) for e in entries]


@router.get("/sources")
async def list_sources(store: SourceStore = Depends(get_source_store)) -> List[Dict[str, Any]]:
    """List all registered metrics sources."""
    return [_source_wire(s) for s in store.list()]


@router.get("/sources/{namespace}/{name}")
async def get_source(
    namespace: str,
    name: str,
    store: SourceStore = Depends(get_source_store),
) -> Dict[str, Any]:
    """Get one metrics source."""
    source = store.get(BackendIdentity(namespace=namespace, name=name))
    if source is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"metrics source {namespace}/{name} not found",
        )
    return _source_wire(source)


@router.put("/sources")
async def put_source(
    source: MetricsSource,
    store: SourceStore = Depends(get_source_store),
) -> Dict[str, Any]:
    """Register or update a metrics source. Reconciliation is asynchronous."""
    stored = await store.put(source)
    logger.info("metrics_source_put", backend=str(stored.identity))
    return _source_wire(stored)


@router.delete("/sources/{namespace}/{name}")
async def delete_source(
    namespace: str,
    name: str,
    store: SourceStore = Depends(get_source_store),
) -> Dict[str, Any]:
    """Delete a metrics source; its routes are removed immediately."""
    identity = BackendIdentity(namespace=namespace, name=name)
    if not await store.delete(identity):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"metrics source {identity} not found",
        )
    return {"deleted": str(identity)}


@router.get("/routes", response_model=RoutesResponse)
async def get_routes(
    registry: BackendRegistry = Depends(get_registry),
    controller: ReconcileController = Depends(get_controller),
) -> RoutesResponse:
    """Snapshot of the routing registry plus reconciliation status."""
    snapshot = registry.snapshot()
    statuses = controller.states()

    backends = []
    for identity in sorted(set(snapshot.properties) | set(statuses)):
        props = snapshot.properties.get(identity)
        st = statuses.get(identity)
        backends.append(
            BackendRouteResponse(
                backend=str(identity),
                priority=props.priority if props else None,
                created_at=props.created_at if props else None,
                custom_metrics=sorted(
                    f"{k.group_resource}/{k.metric}" for k in props.custom_keys
                ) if props else [],
                external_metrics=sorted(k.metric for k in props.external_keys) if props else [],
                state=st.state.value if st else None,
                last_error=st.last_error if st else None,
                attempts=st.attempts if st else 0,
            )
        )

    metrics = [
        MetricRouteResponse(
            metric=f"{key.group_resource}/{key.metric}",
            kind="custom",
            namespaced=key.namespaced,
            candidates=_candidates(entries),
        )
        for key, entries in snapshot.custom_index.items()
    ]
    metrics += [
        MetricRouteResponse(metric=key.metric, kind="external", candidates=_candidates(entries))
        for key, entries in snapshot.external_index.items()
    ]
    metrics.sort(key=lambda m: (m.kind, m.metric))
    return RoutesResponse(backends=backends, metrics=metrics)
