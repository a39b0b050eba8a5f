"""
scalekeeper Controller Package

This package contains the core components of the scalekeeper CPU
utilization autoscaler.

Components:
- AutoscaleController: Per-target control loop and scaling decisions
- ControllerManager: Runs one controller per scale target
- MetricSource / ScaleTarget: Collaborator contracts and transports
- ControllerSettings: Environment-driven configuration
- API: FastAPI-based admin interface (controller.api)
"""

from .errors import (
    ScalerError, MetricUnavailable, ZeroSampleWindow, ScaleConflict,
    TargetUnavailable, InvalidPolicy
)
from .scaler import (
    AutoscaleController, ScalePolicy, ScaleState, ObservedMetric,
    ScalingDecision, DecisionAction, ControllerPhase, compute_desired_replicas
)
from .sources import (
    MetricSource, ScaleTarget, SimulatedMetricSource, InMemoryScaleTarget,
    HttpMetricSource, HttpScaleTarget
)
from .manager import ControllerManager
from .config import ControllerSettings

__version__ = "1.0.0"

__all__ = [
    "ScalerError",
    "MetricUnavailable",
    "ZeroSampleWindow",
    "ScaleConflict",
    "TargetUnavailable",
    "InvalidPolicy",
    "AutoscaleController",
    "ScalePolicy",
    "ScaleState",
    "ObservedMetric",
    "ScalingDecision",
    "DecisionAction",
    "ControllerPhase",
    "compute_desired_replicas",
    "MetricSource",
    "ScaleTarget",
    "SimulatedMetricSource",
    "InMemoryScaleTarget",
    "HttpMetricSource",
    "HttpScaleTarget",
    "ControllerManager",
    "ControllerSettings",
]
