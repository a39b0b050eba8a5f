import asyncio

from controller.scaler import (
    AutoscaleController,
    ControllerPhase,
    DecisionAction,
    ObservedMetric,
    ScalePolicy,
)
from controller.sources import InMemoryScaleTarget, MetricSource, SimulatedMetricSource

TARGET = "default/web-app"


class GatedMetricSource(MetricSource):
    """Blocks every fetch until the test opens the gate."""

    def __init__(self):
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()
        self.active = 0
        self.max_active = 0

    async def get_average_utilization(self, target_id):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.entered.set()
        try:
            await self.gate.wait()
        finally:
            self.active -= 1
        return ObservedMetric(0.0, 140.0, 2)


def test_loop_runs_cycles_until_stopped():
    policy = ScalePolicy(min_replicas=1, max_replicas=5, poll_interval=0.01)
    source = SimulatedMetricSource()
    source.publish(TARGET, 70.0, 2)
    target = InMemoryScaleTarget(initial_replicas=2)
    controller = AutoscaleController(TARGET, policy, source, target)

    async def scenario():
        controller.start()
        assert controller.running
        await asyncio.sleep(0.1)
        await controller.stop()

    asyncio.run(scenario())

    assert not controller.running
    assert controller.phase == ControllerPhase.IDLE
    assert controller.cycle_count >= 2
    assert all(d.action == DecisionAction.NO_OP for d in controller.get_history(100))


def test_stop_waits_for_in_flight_cycle():
    policy = ScalePolicy(min_replicas=1, max_replicas=5, poll_interval=60)
    target = InMemoryScaleTarget(initial_replicas=2)

    async def scenario():
        source = GatedMetricSource()
        controller = AutoscaleController(TARGET, policy, source, target)
        controller.start()
        await source.entered.wait()
        assert controller.phase == ControllerPhase.EVALUATING

        stopping = asyncio.create_task(controller.stop())
        await asyncio.sleep(0.05)
        assert not stopping.done()

        source.gate.set()
        await stopping
        return controller

    controller = asyncio.run(scenario())

    assert controller.cycle_count == 1
    assert controller.get_history()[-1].action == DecisionAction.SCALE_UP
    assert target.replicas[TARGET] == 4
    assert controller.phase == ControllerPhase.IDLE


def test_cycles_for_one_target_never_overlap():
    policy = ScalePolicy(min_replicas=1, max_replicas=10)
    target = InMemoryScaleTarget(initial_replicas=2)

    async def scenario():
        source = GatedMetricSource()
        controller = AutoscaleController(TARGET, policy, source, target)
        cycles = asyncio.gather(controller.run_cycle(), controller.run_cycle())
        await source.entered.wait()
        await asyncio.sleep(0.01)
        source.gate.set()
        await cycles
        return source

    source = asyncio.run(scenario())

    assert source.max_active == 1


def test_stop_before_start_is_harmless():
    policy = ScalePolicy()
    controller = AutoscaleController(TARGET, policy, SimulatedMetricSource(), InMemoryScaleTarget())

    asyncio.run(controller.stop())

    assert not controller.running
    assert controller.cycle_count == 0
