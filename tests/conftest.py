"""
Shared pytest fixtures.
"""

import logging

import pytest

from controller.errors import MetricUnavailable
from controller.scaler import ObservedMetric, ScalePolicy
from controller.sources import InMemoryScaleTarget, MetricSource

logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s", force=True)
logging.getLogger("controller").setLevel(logging.DEBUG)


class FakeClock:
    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class ScriptedMetricSource(MetricSource):
    """Returns queued observations; an exception in the queue is raised instead."""

    def __init__(self, clock):
        self.clock = clock
        self.queue = []
        self.calls = 0

    def push(self, utilization: float, samples: int = 3):
        self.queue.append(ObservedMetric(self.clock(), utilization, samples))

    def fail(self, error: Exception = None):
        self.queue.append(error or MetricUnavailable("metrics-server unreachable"))

    async def get_average_utilization(self, target_id: str) -> ObservedMetric:
        self.calls += 1
        if not self.queue:
            raise MetricUnavailable("no data")
        item = self.queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class RecordingScaleTarget(InMemoryScaleTarget):
    """In-memory target that records scale commands and can reject the next one."""

    def __init__(self, initial_replicas: int = 1):
        super().__init__(initial_replicas)
        self.commands = []
        self.next_error = None

    async def set_replica_count(self, target_id: str, desired: int) -> None:
        if self.next_error is not None:
            error, self.next_error = self.next_error, None
            raise error
        self.commands.append((target_id, desired))
        await super().set_replica_count(target_id, desired)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def metric_source(clock):
    return ScriptedMetricSource(clock)


@pytest.fixture
def policy():
    return ScalePolicy(
        min_replicas=2,
        max_replicas=8,
        target_utilization_percent=70,
        poll_interval=15.0,
        stabilization_window=300.0,
        call_timeout=1.0,
    )


@pytest.fixture
def make_target():
    return RecordingScaleTarget
