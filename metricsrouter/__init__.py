############################################################
#
# metricsrouter - Custom and External Metrics Router
#
# __init__.py: Root package initialization and version definition
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""metricsrouter - Priority-based router for custom and external metrics."""

__version__ = "0.3.0"
