"""
Prometheus/OpenMetrics exporter for scalekeeper.
Collects per-target scaling metrics from the autoscale controllers.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from collections import deque

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

logger = logging.getLogger(__name__)


@dataclass
class ScalingEventPoint:
    """A scale command that was applied to a target."""
    target: str
    direction: str
    from_replicas: int
    to_replicas: int
    reason: str
    timestamp: float = field(default_factory=time.time)


class MetricsExporter:
    """
    Exports controller metrics in Prometheus format.

    Each exporter owns its registry so several controller processes (or
    tests) can build their own without clashing on metric names.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None, event_buffer_size: int = 1000):
        self.registry = registry or CollectorRegistry()
        self._events = deque(maxlen=event_buffer_size)
        self._setup_prometheus_metrics()

    def _setup_prometheus_metrics(self):
        """Initialize Prometheus metric objects."""
        self.cycles = Counter(
            'scalekeeper_cycles_total', 'Number of control cycles', ['target', 'action'],
            registry=self.registry,
        )
        self.skips = Counter(
            'scalekeeper_skipped_cycles_total', 'Number of skipped cycles by error class', ['target', 'error'],
            registry=self.registry,
        )
        self.scaling_events = Counter(
            'scalekeeper_scaling_events_total', 'Number of scale commands applied', ['target', 'direction'],
            registry=self.registry,
        )
        self.replicas = Gauge(
            'scalekeeper_replicas', 'Replica count', ['target', 'kind'],
            registry=self.registry,
        )
        self.utilization = Gauge(
            'scalekeeper_utilization_percent', 'Last observed average CPU utilization', ['target'],
            registry=self.registry,
        )
        self.cycle_duration = Histogram(
            'scalekeeper_cycle_duration_seconds', 'Control cycle duration', ['target'],
            registry=self.registry,
        )

    def record_decision(self, target: str, decision, duration_seconds: float):
        """Update all metrics from one cycle outcome."""
        try:
            action = decision.action.value
            self.cycles.labels(target=target, action=action).inc()
            self.cycle_duration.labels(target=target).observe(duration_seconds)

            if decision.current_replicas is not None:
                self.replicas.labels(target=target, kind="current").set(decision.current_replicas)
            if decision.desired_replicas is not None:
                self.replicas.labels(target=target, kind="desired").set(decision.desired_replicas)
            if decision.utilization_percent is not None:
                self.utilization.labels(target=target).set(decision.utilization_percent)

            if action == "skip":
                self.skips.labels(target=target, error=decision.error or "unknown").inc()
            elif action in ("scale-up", "scale-down"):
                self.export_scaling_event(
                    target, action, decision.current_replicas, decision.desired_replicas, decision.reason
                )
        except Exception as e:
            logger.error(f"Failed to update Prometheus metrics: {e}")

    def export_scaling_event(self, target: str, direction: str, from_replicas: int, to_replicas: int, reason: str):
        """Export a scaling event."""
        self.scaling_events.labels(target=target, direction=direction).inc()
        self._events.append(ScalingEventPoint(target, direction, from_replicas, to_replicas, reason))
        logger.info(f"Scaling event: {target} {direction} from {from_replicas} to {to_replicas} ({reason})")

    def forget_target(self, target: str):
        """Drop gauge series and buffered events for a target that is no longer managed."""
        for kind in ("current", "desired"):
            try:
                self.replicas.remove(target, kind)
            except KeyError:
                pass
        try:
            self.utilization.remove(target)
        except KeyError:
            pass
        self._events = deque((e for e in self._events if e.target != target), maxlen=self._events.maxlen)

    def get_prometheus_metrics(self) -> str:
        """Get metrics in Prometheus format."""
        try:
            return generate_latest(self.registry).decode('utf-8')
        except Exception as e:
            logger.error(f"Failed to generate Prometheus metrics: {e}")
            return ""

    def get_recent_events(self, target: Optional[str] = None, limit: int = 50) -> List[ScalingEventPoint]:
        """Most recent scale commands, oldest first."""
        if limit <= 0:
            return []
        events = [e for e in self._events if target is None or e.target == target]
        return events[-limit:]

    def get_event_counts(self, target: Optional[str] = None) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for event in self._events:
            if target is not None and event.target != target:
                continue
            counts[event.direction] = counts.get(event.direction, 0) + 1
        return counts
