############################################################
#
# metricsrouter - Custom and External Metrics Router
#
# health.py: Health check and Prometheus metrics endpoints
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Health check and metrics endpoints."""

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from metricsrouter.app.core.controller.reconciler import ReconcileController, get_controller
from metricsrouter.app.core.routing.models import MetricKind
from metricsrouter.app.core.routing.registry import BackendRegistry, get_registry

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def liveness_probe() -> Dict[str, str]:
    """
    Liveness probe - checks if the application is running.

    Returns 200 if the application is alive.
    """
    return {"status": "alive", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/readyz")
async def readiness_probe(
    registry: BackendRegistry = Depends(get_registry),
    controller: ReconcileController = Depends(get_controller),
) -> Any:
    """
    Readiness probe - checks if the router is ready to serve traffic.

    Ready once the reconcile controller is running. Zero routed metrics is
    still ready; queries for unknown metrics simply return 404.
    """
    body = {
        "status": "ready" if controller.started else "not_ready",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "backends": len(registry),
        "custom_metrics": len(registry.list_metric_keys(MetricKind.CUSTOM)),
        "external_metrics": len(registry.list_metric_keys(MetricKind.EXTERNAL)),
        "pending_reconciles": len(controller.queue),
    }
    if not controller.started:
        return JSONResponse(status_code=503, content=body)
    return body


@router.get("/metrics")
async def prometheus_metrics() -> Response:
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
