############################################################
#
# metricsrouter - Custom and External Metrics Router
#
# __init__.py: Core routing, discovery and reconciliation package
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Core application logic for metricsrouter."""
