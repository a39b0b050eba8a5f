"""
Pydantic models for HorizontalPodAutoscaler manifests.
Parses the autoscaling/v1 and autoscaling/v2 YAML this controller is
configured from and turns them into controller scale policies.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from enum import Enum

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from controller.scaler import ScalePolicy, DEFAULT_CALL_TIMEOUT, DEFAULT_POLL_INTERVAL

DEFAULT_SCALE_DOWN_WINDOW_SECONDS = 300
DEFAULT_V1_TARGET_CPU = 80
SUPPORTED_API_VERSIONS = ("autoscaling/v1", "autoscaling/v2")


class MetricSourceType(str, Enum):
    """Metric source types. Only Resource is supported."""
    RESOURCE = "Resource"
    PODS = "Pods"
    OBJECT = "Object"
    EXTERNAL = "External"
    CONTAINER_RESOURCE = "ContainerResource"


class MetricTargetType(str, Enum):
    UTILIZATION = "Utilization"
    AVERAGE_VALUE = "AverageValue"
    VALUE = "Value"


class ObjectMeta(BaseModel):
    name: str = Field(..., pattern=r'^[a-z0-9]([-a-z0-9.]*[a-z0-9])?$', max_length=253)
    namespace: str = Field("default", pattern=r'^[a-z0-9]([-a-z0-9]*[a-z0-9])?$', max_length=63)
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)


class CrossVersionObjectReference(BaseModel):
    """The workload being scaled."""
    apiVersion: str = "apps/v1"
    kind: str = "Deployment"
    name: str


class MetricTarget(BaseModel):
    type: MetricTargetType
    averageUtilization: Optional[int] = Field(None, ge=1, le=100)
    averageValue: Optional[str] = None
    value: Optional[str] = None


class ResourceMetricSource(BaseModel):
    name: str
    target: MetricTarget


class MetricSpec(BaseModel):
    type: MetricSourceType
    resource: Optional[ResourceMetricSource] = None

    @model_validator(mode='after')
    def cpu_utilization_only(self):
        if self.type != MetricSourceType.RESOURCE:
            raise ValueError(f"Unsupported metric type '{self.type.value}': only Resource metrics are supported")
        if self.resource is None:
            raise ValueError("Resource metric requires a 'resource' section")
        if self.resource.name != "cpu":
            raise ValueError(f"Unsupported resource '{self.resource.name}': only cpu is supported")
        target = self.resource.target
        if target.type != MetricTargetType.UTILIZATION or target.averageUtilization is None:
            raise ValueError("cpu metric must use a Utilization target with averageUtilization")
        return self


class ScalingRules(BaseModel):
    stabilizationWindowSeconds: Optional[int] = Field(None, ge=0, le=3600)


class ScalingBehavior(BaseModel):
    scaleUp: Optional[ScalingRules] = None
    scaleDown: Optional[ScalingRules] = None


class HpaSpec(BaseModel):
    scaleTargetRef: CrossVersionObjectReference
    minReplicas: int = Field(1, ge=1)
    maxReplicas: int = Field(..., ge=1)
    metrics: List[MetricSpec] = Field(default_factory=list)
    behavior: Optional[ScalingBehavior] = None
    # autoscaling/v1 only
    targetCPUUtilizationPercentage: Optional[int] = Field(None, ge=1, le=100)

    @field_validator('metrics')
    @classmethod
    def single_metric(cls, v):
        if len(v) > 1:
            raise ValueError('Only a single cpu utilization metric is supported')
        return v

    @model_validator(mode='after')
    def max_greater_than_min(self):
        if self.maxReplicas < self.minReplicas:
            raise ValueError('maxReplicas must be >= minReplicas')
        return self


class HpaManifest(BaseModel):
    """A HorizontalPodAutoscaler document."""
    apiVersion: str = Field("autoscaling/v2")
    kind: str = Field("HorizontalPodAutoscaler")
    metadata: ObjectMeta
    spec: HpaSpec

    @field_validator('apiVersion')
    @classmethod
    def validate_api_version(cls, v):
        if v not in SUPPORTED_API_VERSIONS:
            raise ValueError(f'Unsupported API version {v}')
        return v

    @field_validator('kind')
    @classmethod
    def validate_kind(cls, v):
        if v != "HorizontalPodAutoscaler":
            raise ValueError(f'Expected kind HorizontalPodAutoscaler, got {v}')
        return v

    @model_validator(mode='after')
    def version_specific_fields(self):
        if self.apiVersion == "autoscaling/v1" and self.spec.metrics:
            raise ValueError('autoscaling/v1 uses targetCPUUtilizationPercentage, not metrics')
        if self.apiVersion == "autoscaling/v2" and not self.spec.metrics:
            raise ValueError('autoscaling/v2 requires a cpu utilization metric')
        return self

    @property
    def target_id(self) -> str:
        return f"{self.metadata.namespace}/{self.spec.scaleTargetRef.name}"

    @property
    def target_utilization_percent(self) -> int:
        if self.spec.metrics:
            return self.spec.metrics[0].resource.target.averageUtilization
        return self.spec.targetCPUUtilizationPercentage or DEFAULT_V1_TARGET_CPU

    @property
    def stabilization_window_seconds(self) -> int:
        behavior = self.spec.behavior
        if behavior and behavior.scaleDown and behavior.scaleDown.stabilizationWindowSeconds is not None:
            return behavior.scaleDown.stabilizationWindowSeconds
        return DEFAULT_SCALE_DOWN_WINDOW_SECONDS

    def to_policy(self, poll_interval: float = DEFAULT_POLL_INTERVAL,
                  call_timeout: float = DEFAULT_CALL_TIMEOUT, **overrides) -> ScalePolicy:
        """Build the controller policy for this manifest."""
        return ScalePolicy(
            min_replicas=self.spec.minReplicas,
            max_replicas=self.spec.maxReplicas,
            target_utilization_percent=self.target_utilization_percent,
            poll_interval=poll_interval,
            stabilization_window=float(self.stabilization_window_seconds),
            call_timeout=call_timeout,
            **overrides,
        )


# Configuration validation helpers

def validate_hpa_manifest(manifest: Dict[str, Any]) -> HpaManifest:
    """
    Validate and parse a HorizontalPodAutoscaler manifest.

    Args:
        manifest: Dictionary containing the manifest

    Returns:
        Validated HpaManifest object

    Raises:
        ValueError: If the manifest is invalid
    """
    try:
        return HpaManifest(**manifest)
    except ValidationError as e:
        raise ValueError(f"Invalid HorizontalPodAutoscaler manifest: {e}")


def load_hpa_manifests(path: Union[str, Path]) -> List[HpaManifest]:
    """
    Load every HorizontalPodAutoscaler document from a YAML file or directory.

    Other kinds (Deployments, Services...) are skipped so a full manifest
    bundle can be pointed at directly.
    """
    path = Path(path)
    if path.is_dir():
        files = sorted(p for p in path.iterdir() if p.suffix in ('.yml', '.yaml'))
    else:
        files = [path]

    manifests = []
    for file in files:
        with open(file) as f:
            for doc in yaml.safe_load_all(f):
                if not isinstance(doc, dict) or doc.get("kind") != "HorizontalPodAutoscaler":
                    continue
                manifests.append(validate_hpa_manifest(doc))
    return manifests


def get_example_manifest(name: str = "web-app", target_cpu: int = 70) -> Dict[str, Any]:
    """An autoscaling/v2 manifest for a Deployment, as documented for the web app."""
    return {
        "apiVersion": "autoscaling/v2",
        "kind": "HorizontalPodAutoscaler",
        "metadata": {"name": f"{name}-hpa", "namespace": "default"},
        "spec": {
            "scaleTargetRef": {"apiVersion": "apps/v1", "kind": "Deployment", "name": name},
            "minReplicas": 2,
            "maxReplicas": 8,
            "metrics": [
                {
                    "type": "Resource",
                    "resource": {
                        "name": "cpu",
                        "target": {"type": "Utilization", "averageUtilization": target_cpu},
                    },
                }
            ],
            "behavior": {"scaleDown": {"stabilizationWindowSeconds": 300}},
        },
    }
