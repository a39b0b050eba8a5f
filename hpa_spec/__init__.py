"""
HorizontalPodAutoscaler manifest models for scalekeeper.
"""

from .models import (
    HpaManifest, HpaSpec, ObjectMeta, CrossVersionObjectReference, MetricSpec,
    MetricTarget, ScalingBehavior, ScalingRules,
    validate_hpa_manifest, load_hpa_manifests, get_example_manifest
)

__all__ = [
    'HpaManifest', 'HpaSpec', 'ObjectMeta', 'CrossVersionObjectReference', 'MetricSpec',
    'MetricTarget', 'ScalingBehavior', 'ScalingRules',
    'validate_hpa_manifest', 'load_hpa_manifests', 'get_example_manifest'
]
