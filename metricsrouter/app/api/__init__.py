############################################################
#
# metricsrouter - Custom and External Metrics Router
#
# __init__.py: API router aggregation
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""API endpoints for metricsrouter."""

from fastapi import APIRouter

from metricsrouter.app.api.custom_metrics import router as custom_metrics_router
from metricsrouter.app.api.external_metrics import router as external_metrics_router
from metricsrouter.app.api.health import router as health_router
from metricsrouter.app.api.sources_api import router as sources_router

# Create main API router
api_router = APIRouter()

api_router.include_router(health_router)
api_router.include_router(custom_metrics_router)
api_router.include_router(external_metrics_router)
api_router.include_router(sources_router, prefix="/api/admin", tags=["admin"])

__all__ = ["api_router"]
