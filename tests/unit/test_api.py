import time

import pytest
import yaml
from fastapi.testclient import TestClient

from controller.api import app
from controller.config import ControllerSettings
from controller.utils import lifecycle
from hpa_spec import get_example_manifest

TARGET = "default/web-app"


@pytest.fixture
def client(tmp_path):
    manifest_file = tmp_path / "hpa.yaml"
    manifest_file.write_text(yaml.safe_dump(get_example_manifest("web-app", target_cpu=70)), encoding="utf-8")
    lifecycle.configure(ControllerSettings(
        manifests_path=str(manifest_file),
        poll_interval=3600,
        initial_replicas=2,
    ))
    with TestClient(app) as test_client:
        # the loop evaluates once on start; let that cycle finish before the tests drive it
        for _ in range(200):
            if test_client.get(f"/targets/{TARGET}/history").json()["decisions"]:
                break
            time.sleep(0.01)
        yield test_client
    lifecycle.configure(None)


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_targets_loaded_from_manifests(client):
    targets = client.get("/targets").json()["targets"]

    assert [t["target_id"] for t in targets] == [TARGET]
    assert targets[0]["min_replicas"] == 2
    assert targets[0]["max_replicas"] == 8


def test_simulated_load_scales_up(client):
    response = client.post(f"/targets/{TARGET}/simulateMetrics", json={"utilizationPercent": 140, "sampleCount": 2})

    assert response.status_code == 200
    decision = response.json()["decision"]
    assert decision["action"] == "scale-up"
    assert decision["desired_replicas"] == 4

    state = client.get(f"/targets/{TARGET}/state").json()
    assert state["desired_replicas"] == 4
    assert state["phase"] == "Idle"
    assert state["last_scale_up_time"] is not None

    history = client.get(f"/targets/{TARGET}/history", params={"limit": 1}).json()
    assert [d["action"] for d in history["decisions"]] == ["scale-up"]


def test_zero_samples_are_skipped(client):
    response = client.post(f"/targets/{TARGET}/simulateMetrics", json={"utilizationPercent": 500, "sampleCount": 0})

    decision = response.json()["decision"]
    assert decision["action"] == "skip"
    assert decision["error"] == "ZeroSampleWindow"


def test_simulate_without_evaluation(client):
    response = client.post(
        f"/targets/{TARGET}/simulateMetrics",
        json={"utilizationPercent": 140, "sampleCount": 2, "evaluate": False},
    )

    assert response.status_code == 200
    assert response.json()["decision"] is None


def test_unknown_target(client):
    assert client.get("/targets/default/nope/state").status_code == 404
    assert client.get("/targets/default/nope/history").status_code == 404
    assert client.delete("/targets/default/nope").status_code == 404


def test_register_and_remove(client):
    manifest = {
        "apiVersion": "autoscaling/v1",
        "kind": "HorizontalPodAutoscaler",
        "metadata": {"name": "api-hpa", "namespace": "shop"},
        "spec": {
            "scaleTargetRef": {"name": "api"},
            "maxReplicas": 4,
            "targetCPUUtilizationPercentage": 60,
        },
    }

    response = client.post("/targets/register", json=manifest)
    assert response.status_code == 200
    assert response.json() == {
        "status": "registered",
        "target": "shop/api",
        "message": "Controller running for Deployment api",
    }
    assert client.post("/targets/register", json=manifest).json()["status"] == "replaced"

    assert client.get("/targets/shop/api/state").json()["policy"]["target_utilization_percent"] == 60
    assert client.delete("/targets/shop/api").json() == {"status": "removed", "target": "shop/api"}
    assert client.get("/targets/shop/api/state").status_code == 404


def test_register_invalid_manifest(client):
    manifest = get_example_manifest()
    manifest["spec"]["minReplicas"] = 9

    response = client.post("/targets/register", json=manifest)

    assert response.status_code == 400
    assert "maxReplicas must be >= minReplicas" in response.json()["detail"]


def test_prometheus_metrics(client):
    client.post(f"/targets/{TARGET}/simulateMetrics", json={"utilizationPercent": 140, "sampleCount": 2})

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "scalekeeper_cycles_total" in response.text


def test_events_list_applied_scale_commands(client):
    client.post(f"/targets/{TARGET}/simulateMetrics", json={"utilizationPercent": 140, "sampleCount": 2})

    response = client.get(f"/targets/{TARGET}/events")

    assert response.status_code == 200
    body = response.json()
    assert [(e["direction"], e["from_replicas"], e["to_replicas"]) for e in body["events"]] == [("scale-up", 2, 4)]
    assert body["counts"] == {"scale-up": 1}
    assert client.get("/targets/default/nope/events").status_code == 404


def test_cli_events_command(client, monkeypatch):
    from typer.testing import CliRunner

    import cli.main as cli_main

    def routed_get(url, **kwargs):
        return client.get(url[len(cli_main.API_URL):], **kwargs)

    monkeypatch.setattr(cli_main.requests, "get", routed_get)
    client.post(f"/targets/{TARGET}/simulateMetrics", json={"utilizationPercent": 140, "sampleCount": 2})

    result = CliRunner().invoke(cli_main.app, ["events", TARGET])

    assert result.exit_code == 0
    assert "scale-up" in result.output
    assert "2 -> 4" in result.output
    assert "Totals: scale-up=1" in result.output
