"""
Autoscaling logic for replicated workloads.
Keeps a target's replica count proportional to its observed CPU utilization,
within the bounds of its scaling policy.
"""

import asyncio
import logging
import math
import time
from collections import deque
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from .errors import (
    InvalidPolicy,
    MetricUnavailable,
    ScaleConflict,
    TargetUnavailable,
    ZeroSampleWindow,
)

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 15.0
DEFAULT_STABILIZATION_WINDOW = 300.0
DEFAULT_CALL_TIMEOUT = 5.0
DEFAULT_HISTORY_LIMIT = 100
RATIO_PRECISION = 9  # decimal places kept before rounding up


@dataclass(frozen=True)
class ScalePolicy:
    """Scaling policy for one target. Immutable once the controller is built."""
    min_replicas: int = 1
    max_replicas: int = 5
    target_utilization_percent: int = 70
    poll_interval: float = DEFAULT_POLL_INTERVAL
    stabilization_window: float = DEFAULT_STABILIZATION_WINDOW
    call_timeout: float = DEFAULT_CALL_TIMEOUT
    history_limit: int = DEFAULT_HISTORY_LIMIT

    def __post_init__(self):
        """Validate policy parameters."""
        for name in ("min_replicas", "max_replicas", "target_utilization_percent", "history_limit"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidPolicy(f"{name} must be an integer, got {value!r}")
        if self.min_replicas < 1:
            raise InvalidPolicy("min_replicas must be >= 1")
        if self.max_replicas < self.min_replicas:
            raise InvalidPolicy(f"max_replicas ({self.max_replicas}) must be >= min_replicas ({self.min_replicas})")
        if self.target_utilization_percent <= 0 or self.target_utilization_percent > 100:
            raise InvalidPolicy("target_utilization_percent must be between 1 and 100")
        if self.poll_interval <= 0:
            raise InvalidPolicy("poll_interval must be > 0")
        if self.stabilization_window < 0:
            raise InvalidPolicy("stabilization_window must be >= 0")
        if self.call_timeout <= 0:
            raise InvalidPolicy("call_timeout must be > 0")
        if self.history_limit < 1:
            raise InvalidPolicy("history_limit must be >= 1")

    def clamp(self, replicas: int) -> int:
        return max(self.min_replicas, min(self.max_replicas, replicas))


@dataclass(frozen=True)
class ObservedMetric:
    """A utilization snapshot reported by a metric source."""
    timestamp: float
    average_utilization_percent: float
    sample_count: int


@dataclass
class ScaleState:
    """Mutable scaling state, owned by exactly one controller."""
    current_replicas: int
    desired_replicas: int
    last_scale_down_time: Optional[float] = None
    last_scale_up_time: Optional[float] = None


class DecisionAction(str, Enum):
    SCALE_UP = "scale-up"
    SCALE_DOWN = "scale-down"
    NO_OP = "no-op"
    SKIP = "skip"


class ControllerPhase(str, Enum):
    IDLE = "Idle"
    EVALUATING = "Evaluating"


@dataclass
class ScalingDecision:
    """Outcome of one control cycle."""
    timestamp: float
    action: DecisionAction
    reason: str
    current_replicas: Optional[int] = None
    desired_replicas: Optional[int] = None
    utilization_percent: Optional[float] = None
    sample_count: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["action"] = self.action.value
        return data


def compute_desired_replicas(current_replicas: int, utilization_percent: float, policy: ScalePolicy) -> int:
    """
    Proportional replica count for the observed utilization.

    ceil(current * utilization / target), clamped to the policy bounds after
    rounding so the result never under-provisions.
    """
    raw = current_replicas * utilization_percent / policy.target_utilization_percent
    return policy.clamp(math.ceil(round(raw, RATIO_PRECISION)))


class AutoscaleController:
    """
    Control loop for a single scale target.

    Cycles are strictly sequential. A stop request is only honoured while the
    loop waits for the next tick, so an in-flight cycle always completes.
    """

    def __init__(
        self,
        target_id: str,
        policy: ScalePolicy,
        metric_source,
        scale_target,
        exporter=None,
        clock: Callable[[], float] = time.time,
    ):
        if not isinstance(policy, ScalePolicy):
            raise InvalidPolicy(f"Expected ScalePolicy, got {type(policy).__name__}")

        self.target_id = target_id
        self.policy = policy
        self.metric_source = metric_source
        self.scale_target = scale_target
        self.exporter = exporter
        self._clock = clock

        self.state: Optional[ScaleState] = None
        self.phase = ControllerPhase.IDLE
        self.cycle_count = 0
        self.skip_count = 0
        self._history: Deque[ScalingDecision] = deque(maxlen=policy.history_limit)
        self._cycle_lock = asyncio.Lock()
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

        logger.info(
            f"Created controller for {target_id}: "
            f"min={policy.min_replicas}, max={policy.max_replicas}, "
            f"target={policy.target_utilization_percent}%, "
            f"window={policy.stabilization_window}s, interval={policy.poll_interval}s"
        )

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Start the control loop on the running event loop."""
        if self.running:
            return self._task
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self.run(), name=f"autoscale:{self.target_id}")
        return self._task

    async def stop(self):
        """Request a stop and wait for the loop to leave at its next idle point."""
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info(f"[{self.target_id}] Controller stopped")

    async def run(self):
        if self._stop_event is None:
            self._stop_event = asyncio.Event()
        logger.info(f"[{self.target_id}] Control loop started")

        while not self._stop_event.is_set():
            await self.run_cycle()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.policy.poll_interval)
            except asyncio.TimeoutError:
                pass

    async def run_cycle(self) -> ScalingDecision:
        """Run one observe/decide/act cycle. Never raises for per-cycle failures."""
        async with self._cycle_lock:
            self.phase = ControllerPhase.EVALUATING
            started = time.perf_counter()
            try:
                decision = await self._evaluate()
            except Exception as e:
                logger.exception(f"[{self.target_id}] Unexpected error during scaling cycle")
                decision = self._skip(f"Unexpected error: {e}", error=e)
            finally:
                self.phase = ControllerPhase.IDLE

            self.cycle_count += 1
            self._history.append(decision)
            if self.exporter is not None:
                self.exporter.record_decision(self.target_id, decision, time.perf_counter() - started)
            return decision

    async def _evaluate(self) -> ScalingDecision:
        policy = self.policy

        try:
            metric = await self._bounded(
                self.metric_source.get_average_utilization(self.target_id),
                MetricUnavailable, "metric fetch",
            )
            self._check_metric(metric)
        except MetricUnavailable as e:
            return self._skip(str(e), error=e)

        try:
            current = await self._bounded(
                self.scale_target.get_replica_count(self.target_id),
                TargetUnavailable, "replica fetch",
            )
            if current < 0:
                raise TargetUnavailable(f"Scale target reported invalid replica count {current}")
        except TargetUnavailable as e:
            return self._skip(str(e), error=e, metric=metric)

        state = self._reconcile(current)
        now = self._clock()
        desired = compute_desired_replicas(current, metric.average_utilization_percent, policy)

        logger.debug(
            f"[{self.target_id}] util={metric.average_utilization_percent:.1f}% "
            f"samples={metric.sample_count} target={policy.target_utilization_percent}% "
            f"current={current} desired={desired}"
        )

        if desired == current:
            state.desired_replicas = current
            return self._decision(DecisionAction.NO_OP, "Utilization within target", metric, state)

        clamp_only = False
        if desired < current and state.last_scale_down_time is not None:
            since = now - state.last_scale_down_time
            if since < policy.stabilization_window:
                # Inside the window only the clamp back to max_replicas may go out.
                floor = policy.clamp(current)
                if floor == current:
                    state.desired_replicas = current
                    reason = (
                        f"Scale-down to {desired} rejected: last scale-down {since:.0f}s ago, "
                        f"within stabilization window ({policy.stabilization_window:.0f}s)"
                    )
                    logger.info(f"[{self.target_id}] {reason}")
                    return self._decision(DecisionAction.NO_OP, reason, metric, state)
                desired = max(desired, floor)
                clamp_only = True

        try:
            await self._bounded(
                self.scale_target.set_replica_count(self.target_id, desired),
                TargetUnavailable, "scale command",
            )
        except (ScaleConflict, TargetUnavailable) as e:
            return self._skip(f"Scale to {desired} discarded: {e}", error=e, metric=metric)

        committed_at = self._clock()
        state.desired_replicas = desired
        if desired > current:
            state.last_scale_up_time = committed_at
            action = DecisionAction.SCALE_UP
        else:
            state.last_scale_down_time = committed_at
            action = DecisionAction.SCALE_DOWN

        if clamp_only:
            reason = (
                f"Clamped to max_replicas: {current} -> {desired} "
                f"(load-driven scale-down held by stabilization window)"
            )
        else:
            reason = (
                f"Utilization {metric.average_utilization_percent:.1f}% vs target "
                f"{policy.target_utilization_percent}%: {current} -> {desired}"
            )
        logger.info(f"[{self.target_id}] SCALING {action.value}: {reason}")
        return self._decision(action, reason, metric, state)

    async def _bounded(self, awaitable: Awaitable, error_cls, what: str):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.policy.call_timeout)
        except asyncio.TimeoutError:
            raise error_cls(f"{what} timed out after {self.policy.call_timeout}s")

    def _check_metric(self, metric: ObservedMetric):
        if metric is None:
            raise MetricUnavailable("Metric source returned no data")
        if metric.sample_count <= 0:
            raise ZeroSampleWindow("No ready replicas reporting metrics")
        value = metric.average_utilization_percent
        if not math.isfinite(value) or value < 0:
            raise MetricUnavailable(f"Invalid utilization value: {value}")

    def _reconcile(self, current: int) -> ScaleState:
        if self.state is None:
            self.state = ScaleState(current_replicas=current, desired_replicas=self.policy.clamp(current))
            logger.info(f"[{self.target_id}] Initialized scale state at {current} replicas")
        else:
            self.state.current_replicas = current
        return self.state

    def _decision(self, action: DecisionAction, reason: str, metric: ObservedMetric, state: ScaleState) -> ScalingDecision:
        return ScalingDecision(
            timestamp=self._clock(),
            action=action,
            reason=reason,
            current_replicas=state.current_replicas,
            desired_replicas=state.desired_replicas,
            utilization_percent=metric.average_utilization_percent,
            sample_count=metric.sample_count,
        )

    def _skip(self, reason: str, error: Optional[Exception] = None,
              metric: Optional[ObservedMetric] = None) -> ScalingDecision:
        self.skip_count += 1
        logger.warning(f"[{self.target_id}] Cycle skipped (degraded): {reason}")
        return ScalingDecision(
            timestamp=self._clock(),
            action=DecisionAction.SKIP,
            reason=reason,
            current_replicas=self.state.current_replicas if self.state else None,
            desired_replicas=self.state.desired_replicas if self.state else None,
            utilization_percent=metric.average_utilization_percent if metric else None,
            sample_count=metric.sample_count if metric else None,
            error=type(error).__name__ if error else None,
        )

    def get_state(self) -> Dict[str, Any]:
        """Read-only snapshot of the scale state."""
        state = self.state
        return {
            "target_id": self.target_id,
            "phase": self.phase.value,
            "running": self.running,
            "initialized": state is not None,
            "current_replicas": state.current_replicas if state else None,
            "desired_replicas": state.desired_replicas if state else None,
            "last_scale_up_time": state.last_scale_up_time if state else None,
            "last_scale_down_time": state.last_scale_down_time if state else None,
            "cycle_count": self.cycle_count,
            "skip_count": self.skip_count,
            "policy": asdict(self.policy),
        }

    def get_history(self, limit: int = 10) -> List[ScalingDecision]:
        """Most recent decisions, oldest first."""
        decisions = list(self._history)
        if limit <= 0:
            return []
        return decisions[-limit:]
