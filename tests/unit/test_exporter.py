import asyncio

from controller.scaler import AutoscaleController, ScalePolicy
from controller.sources import InMemoryScaleTarget, SimulatedMetricSource
from metrics import MetricsExporter

TARGET = "default/web-app"


def run_cycles(exporter, *observations):
    source = SimulatedMetricSource()
    target = InMemoryScaleTarget(initial_replicas=2)
    policy = ScalePolicy(min_replicas=2, max_replicas=8, target_utilization_percent=70)
    controller = AutoscaleController(TARGET, policy, source, target, exporter=exporter)

    async def scenario():
        for utilization, samples in observations:
            source.publish(TARGET, utilization, samples)
            await controller.run_cycle()

    asyncio.run(scenario())
    return controller


def sample(exporter, name, **labels):
    return exporter.registry.get_sample_value(name, labels)


def test_cycle_outcomes_are_exported():
    exporter = MetricsExporter()

    run_cycles(exporter, (140.0, 2), (70.0, 0), (70.0, 4))

    assert sample(exporter, "scalekeeper_cycles_total", target=TARGET, action="scale-up") == 1.0
    assert sample(exporter, "scalekeeper_cycles_total", target=TARGET, action="skip") == 1.0
    assert sample(exporter, "scalekeeper_cycles_total", target=TARGET, action="no-op") == 1.0
    assert sample(exporter, "scalekeeper_skipped_cycles_total", target=TARGET, error="ZeroSampleWindow") == 1.0
    assert sample(exporter, "scalekeeper_scaling_events_total", target=TARGET, direction="scale-up") == 1.0
    assert sample(exporter, "scalekeeper_replicas", target=TARGET, kind="desired") == 4.0
    assert sample(exporter, "scalekeeper_utilization_percent", target=TARGET) == 70.0
    assert sample(exporter, "scalekeeper_cycle_duration_seconds_count", target=TARGET) == 3.0


def test_events_and_exposition():
    exporter = MetricsExporter()

    run_cycles(exporter, (140.0, 2))

    events = exporter.get_recent_events(TARGET)
    assert len(events) == 1
    assert (events[0].from_replicas, events[0].to_replicas) == (2, 4)
    assert exporter.get_event_counts() == {"scale-up": 1}
    exposition = exporter.get_prometheus_metrics()
    assert "scalekeeper_replicas{" in exposition
    assert 'target="default/web-app"' in exposition


def test_exporters_do_not_share_registries():
    first, second = MetricsExporter(), MetricsExporter()

    run_cycles(first, (140.0, 2))

    assert sample(second, "scalekeeper_cycles_total", target=TARGET, action="scale-up") is None


def test_forget_target_drops_gauges():
    exporter = MetricsExporter()
    run_cycles(exporter, (140.0, 2))

    exporter.forget_target(TARGET)
    exporter.forget_target(TARGET)

    assert sample(exporter, "scalekeeper_replicas", target=TARGET, kind="desired") is None
    assert exporter.get_recent_events(TARGET) == []
    assert exporter.get_event_counts(TARGET) == {}


def test_event_queries_filter_by_target():
    exporter = MetricsExporter()
    exporter.export_scaling_event("default/a", "scale-up", 2, 4, "load")
    exporter.export_scaling_event("default/b", "scale-down", 6, 3, "idle")
    exporter.export_scaling_event("default/a", "scale-down", 4, 3, "idle")

    assert [e.to_replicas for e in exporter.get_recent_events("default/a")] == [4, 3]
    assert [e.to_replicas for e in exporter.get_recent_events("default/a", limit=1)] == [3]
    assert exporter.get_recent_events("default/a", limit=0) == []
    assert exporter.get_event_counts("default/a") == {"scale-up": 1, "scale-down": 1}
    assert exporter.get_event_counts() == {"scale-up": 1, "scale-down": 2}
