"""
Error taxonomy for the autoscale controller.

Only InvalidPolicy is fatal. Everything else is raised by a collaborator
during a cycle and contained by the controller, which records the cycle as
a skip and retries on the next tick.
"""


class ScalerError(Exception):
    """Base class for all controller errors."""


class MetricUnavailable(ScalerError):
    """Metric source unreachable, timed out or returned garbage."""


class ZeroSampleWindow(MetricUnavailable):
    """No ready replicas reported metrics for this window."""


class ScaleConflict(ScalerError):
    """Scale target rejected the update (e.g. concurrent modification)."""


class TargetUnavailable(ScalerError):
    """Scale target unreachable or timed out."""


class InvalidPolicy(ScalerError, ValueError):
    """Scale policy violates its own invariants."""
