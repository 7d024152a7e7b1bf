############################################################
#
# metricsrouter - Custom and External Metrics Router
#
# __init__.py: Routing registry package exports
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Metric routing registry for metricsrouter."""

from metricsrouter.app.core.routing.errors import (
    BackendPropertiesMissing,
    BackendUnreachable,
    MalformedDescriptor,
    MetricsRouterError,
    NoCandidate,
    NoRouteForMetric,
)
from metricsrouter.app.core.routing.models import (
    BackendDescriptor,
    BackendIdentity,
    BackendProperties,
    CandidateEntry,
    CustomMetricKey,
    ExternalMetricKey,
    MetricKind,
)
from metricsrouter.app.core.routing.priority_index import PriorityIndex
from metricsrouter.app.core.routing.registry import BackendRegistry

__all__ = [
    "BackendRegistry",
    "PriorityIndex",
    "BackendDescriptor",
    "BackendIdentity",
    "BackendProperties",
    "CandidateEntry",
    "CustomMetricKey",
    "ExternalMetricKey",
    "MetricKind",
    "MetricsRouterError",
    "NoRouteForMetric",
    "NoCandidate",
    "BackendPropertiesMissing",
    "BackendUnreachable",
    "MalformedDescriptor",
]
