############################################################
#
# metricsrouter - Custom and External Metrics Router
#
# errors.py: Routing and reconciliation error types
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Error types raised by the routing registry and reconciler.

Query-path errors (``NoRouteForMetric`` and its ``NoCandidate`` subclass,
``BackendPropertiesMissing``) propagate to the HTTP layer. Reconciliation
errors (``BackendUnreachable``, ``MalformedDescriptor``) are handled by the
controller and never reach query callers.
"""

from typing import Any, Optional


class MetricsRouterError(Exception):
    """Base class for all metricsrouter errors."""


class NoRouteForMetric(MetricsRouterError, LookupError):
    """No backend currently claims the requested metric."""

    def __init__(self, metric: Any, message: Optional[str] = None):
        self.metric = metric
        super().__init__(
            message or f"metric {metric} is not provided by any metrics backend"
        )


class NoCandidate(NoRouteForMetric):
    """An index exists for the metric but holds no entries."""

    def __init__(self, metric: Any = None):
        super().__init__(metric, f"no metrics backend for metric {metric}")


class BackendPropertiesMissing(MetricsRouterError):
    """The winning backend was removed between index and properties lookup.

    Benign race with a concurrent removal; callers should retry the resolve.
    """

    def __init__(self, identity: Any):
        self.identity = identity
        super().__init__(f"properties for metrics backend {identity} are missing")


class BackendUnreachable(MetricsRouterError):
    """Client construction, discovery or a backend query failed."""

    def __init__(self, identity: Any, reason: str):
        self.identity = identity
        self.reason = reason
        super().__init__(f"metrics backend {identity} unreachable: {reason}")


class MalformedDescriptor(MetricsRouterError, ValueError):
    """A registration cannot be turned into a usable descriptor."""

    def __init__(self, identity: Any, reason: str):
        self.identity = identity
        self.reason = reason
        super().__init__(f"malformed metrics source {identity}: {reason}")
