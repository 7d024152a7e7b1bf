############################################################
#
# metricsrouter - Custom and External Metrics Router
#
# models.py: Metric value payloads returned by backends
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Metric value payloads (custom.metrics.k8s.io / external.metrics.k8s.io v1beta1)."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

CUSTOM_METRICS_GROUP_VERSION = "custom.metrics.k8s.io/v1beta1"
EXTERNAL_METRICS_GROUP_VERSION = "external.metrics.k8s.io/v1beta1"


class _WireModel(BaseModel):
    """Base for payloads that use camelCase on the wire."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class ObjectReference(_WireModel):
    """The object a custom metric describes."""
    kind: Optional[str] = None
    namespace: Optional[str] = None
    name: Optional[str] = None
    api_version: Optional[str] = Field(default=None, alias="apiVersion")
    resource_version: Optional[str] = Field(default=None, alias="resourceVersion")


class MetricValue(_WireModel):
    """A single custom metric value for one described object."""
    described_object: ObjectReference = Field(alias="describedObject")
    metric_name: str = Field(alias="metricName")
    timestamp: Optional[datetime] = None
    window_seconds: Optional[int] = Field(default=None, alias="windowSeconds")
    value: str
    selector: Optional[Dict[str, Any]] = None


class MetricValueList(_WireModel):
    """List of custom metric values."""
    kind: str = "MetricValueList"
    api_version: str = Field(default=CUSTOM_METRICS_GROUP_VERSION, alias="apiVersion")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    items: List[MetricValue] = Field(default_factory=list)


class ExternalMetricValue(_WireModel):
    """A single external metric value."""
    metric_name: str = Field(alias="metricName")
    metric_labels: Dict[str, str] = Field(default_factory=dict, alias="metricLabels")
    timestamp: Optional[datetime] = None
    window_seconds: Optional[int] = Field(default=None, alias="windowSeconds")
    value: str


class ExternalMetricValueList(_WireModel):
    """List of external metric values."""
    kind: str = "ExternalMetricValueList"
    api_version: str = Field(default=EXTERNAL_METRICS_GROUP_VERSION, alias="apiVersion")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    items: List[ExternalMetricValue] = Field(default_factory=list)
