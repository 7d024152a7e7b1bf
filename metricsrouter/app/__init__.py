############################################################
#
# metricsrouter - Custom and External Metrics Router
#
# __init__.py: Application package initialization
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""metricsrouter application package."""

from metricsrouter import __version__

__all__ = ["__version__"]
