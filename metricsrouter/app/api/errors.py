############################################################
#
# metricsrouter - Custom and External Metrics Router
#
# errors.py: Mapping of routing errors to HTTP responses
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Translate routing errors into HTTP exceptions."""

from fastapi import HTTPException, status

from metricsrouter.app.core.routing.errors import (
    BackendPropertiesMissing,
    BackendUnreachable,
    MetricsRouterError,
    NoRouteForMetric,
)


def to_http_exception(exc: MetricsRouterError) -> HTTPException:
    """Map a routing error to the HTTP status the metrics API expects."""
    if isinstance(exc, NoRouteForMetric):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, BackendPropertiesMissing):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif isinstance(exc, BackendUnreachable):
        code = status.HTTP_502_BAD_GATEWAY
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=str(exc))
