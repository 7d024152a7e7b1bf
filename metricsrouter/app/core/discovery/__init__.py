############################################################
#
# metricsrouter - Custom and External Metrics Router
#
# __init__.py: Backend discovery package exports
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Backend metric discovery and query clients."""

from metricsrouter.app.core.discovery.client import MetricsClient, create_metrics_client
from metricsrouter.app.core.discovery.gateway import ClientFactory, DiscoveryGateway

__all__ = [
    "ClientFactory",
    "DiscoveryGateway",
    "MetricsClient",
    "create_metrics_client",
]
