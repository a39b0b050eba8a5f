"""
Metrics collection and export for scalekeeper.
"""

from .exporter import MetricsExporter, ScalingEventPoint

__all__ = ['MetricsExporter', 'ScalingEventPoint']
