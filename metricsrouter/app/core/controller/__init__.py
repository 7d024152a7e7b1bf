############################################################
#
# metricsrouter - Custom and External Metrics Router
#
# __init__.py: Reconciliation controller package exports
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Reconciliation of metrics source registrations into the routing registry."""

from metricsrouter.app.core.controller.reconciler import (
    ReconcileController,
    ReconcileState,
    ReconcileStatus,
)
from metricsrouter.app.core.controller.sources import (
    MetricsSource,
    MetricType,
    ServiceReference,
    SourceEvent,
    SourceEventType,
    SourceStore,
)
from metricsrouter.app.core.controller.workqueue import ExponentialBackoff, WorkQueue

__all__ = [
    "ReconcileController",
    "ReconcileState",
    "ReconcileStatus",
    "MetricsSource",
    "MetricType",
    "ServiceReference",
    "SourceEvent",
    "SourceEventType",
    "SourceStore",
    "ExponentialBackoff",
    "WorkQueue",
]
