import typer
import requests
from dotenv import load_dotenv
import os
import json
import yaml

load_dotenv()

app = typer.Typer(name="scalekeeper", help="scalekeeper autoscaler CLI")

# Default values for local development
SCALEKEEPER_HOST = os.getenv("SCALEKEEPER_HOST", "localhost")
SCALEKEEPER_PORT = os.getenv("SCALEKEEPER_PORT", "8000")

API_URL = f"http://{SCALEKEEPER_HOST}:{SCALEKEEPER_PORT}"


def check_service_running():
    """Check if the controller is running and provide helpful error messages."""
    try:
        response = requests.get(f"{API_URL}/health", timeout=5)
        if response.status_code == 200:
            return True
    except requests.exceptions.ConnectionError:
        typer.echo("scalekeeper controller is not running.", err=True)
        typer.echo("", err=True)
        typer.echo("To start it:", err=True)
        typer.echo("   scalekeeper-controller --manifests k8s/hpa.yaml", err=True)
        raise typer.Exit(1)
    except requests.exceptions.Timeout:
        typer.echo("scalekeeper controller is not responding (timeout).", err=True)
        raise typer.Exit(1)

    typer.echo(f"scalekeeper controller is unhealthy (HTTP {response.status_code})", err=True)
    raise typer.Exit(1)


def _fail_on_error(response: requests.Response):
    if response.status_code == 404:
        typer.echo(f" Not found: {response.json().get('detail')}", err=True)
        raise typer.Exit(1)
    if response.status_code >= 400:
        typer.echo(f" Error: {response.json()}", err=True)
        raise typer.Exit(1)


def _load_manifest(path: str) -> dict:
    if not os.path.exists(path):
        typer.echo(f" Manifest file '{path}' not found", err=True)
        raise typer.Exit(1)

    with open(path) as f:
        if path.endswith(('.yml', '.yaml')):
            docs = [d for d in yaml.safe_load_all(f) if isinstance(d, dict)]
        else:
            docs = [json.load(f)]

    hpas = [d for d in docs if d.get("kind") == "HorizontalPodAutoscaler"]
    if len(hpas) != 1:
        typer.echo(f" Expected exactly one HorizontalPodAutoscaler in '{path}', found {len(hpas)}", err=True)
        raise typer.Exit(1)
    return hpas[0]


@app.command()
def validate(manifest: str):
    """Validate an HPA manifest locally and print the derived policy."""
    from hpa_spec import validate_hpa_manifest
    from controller.errors import InvalidPolicy

    try:
        hpa = validate_hpa_manifest(_load_manifest(manifest))
        policy = hpa.to_policy()
    except (ValueError, InvalidPolicy) as e:
        typer.echo(f" {e}", err=True)
        raise typer.Exit(1)

    typer.echo(f" {hpa.target_id}: valid")
    typer.echo(yaml.dump({
        "minReplicas": policy.min_replicas,
        "maxReplicas": policy.max_replicas,
        "targetUtilizationPercent": policy.target_utilization_percent,
        "stabilizationWindowSeconds": policy.stabilization_window,
    }, default_flow_style=False))


@app.command()
def register(manifest: str):
    """Register a target from an HPA manifest."""
    check_service_running()
    spec = _load_manifest(manifest)

    response = requests.post(f"{API_URL}/targets/register", json=spec)
    _fail_on_error(response)
    typer.echo(" Target registered successfully!")
    typer.echo(json.dumps(response.json(), indent=2))


@app.command()
def remove(target: str):
    """Stop autoscaling a target."""
    check_service_running()
    response = requests.delete(f"{API_URL}/targets/{target}")
    _fail_on_error(response)
    typer.echo(response.json())


@app.command()
def targets():
    """List all managed targets."""
    check_service_running()
    response = requests.get(f"{API_URL}/targets")
    _fail_on_error(response)
    for t in response.json()["targets"]:
        typer.echo(
            f"{t['target_id']:<40} {t['phase']:<11} "
            f"replicas={t['current_replicas']}/{t['desired_replicas']} "
            f"bounds=[{t['min_replicas']},{t['max_replicas']}] "
            f"cpu={t['target_utilization_percent']}%"
        )


@app.command()
def status(target: str):
    """Show the scale state of a target."""
    check_service_running()
    response = requests.get(f"{API_URL}/targets/{target}/state")
    _fail_on_error(response)
    typer.echo(json.dumps(response.json(), indent=2))


@app.command()
def history(target: str, limit: int = 10):
    """Show recent scaling decisions of a target."""
    check_service_running()
    response = requests.get(f"{API_URL}/targets/{target}/history", params={"limit": limit})
    _fail_on_error(response)
    for d in response.json()["decisions"]:
        typer.echo(
            f"{d['timestamp']:.0f} {d['action']:<10} "
            f"{d['current_replicas']} -> {d['desired_replicas']}  {d['reason']}"
        )


@app.command()
def events(target: str, limit: int = 20):
    """Show scale commands applied to a target."""
    check_service_running()
    response = requests.get(f"{API_URL}/targets/{target}/events", params={"limit": limit})
    _fail_on_error(response)
    data = response.json()
    for e in data["events"]:
        typer.echo(
            f"{e['timestamp']:.0f} {e['direction']:<10} "
            f"{e['from_replicas']} -> {e['to_replicas']}  {e['reason']}"
        )
    totals = ", ".join(f"{direction}={count}" for direction, count in sorted(data["counts"].items()))
    typer.echo(f"Totals: {totals or 'none'}")


@app.command()
def simulate(target: str, utilization: float, samples: int = 1, evaluate: bool = True):
    """Inject a simulated CPU utilization sample for a target."""
    check_service_running()
    response = requests.post(
        f"{API_URL}/targets/{target}/simulateMetrics",
        json={"utilizationPercent": utilization, "sampleCount": samples, "evaluate": evaluate},
    )
    _fail_on_error(response)
    typer.echo(json.dumps(response.json(), indent=2))


@app.command()
def info():
    """Show controller status."""
    try:
        response = requests.get(f"{API_URL}/health", timeout=5)
        if response.status_code == 200:
            typer.echo(" scalekeeper controller: Running")
            typer.echo(f"   API: {API_URL}")
            typer.echo(f"   Version: {response.json().get('version')}")

            targets_response = requests.get(f"{API_URL}/targets")
            if targets_response.status_code == 200:
                typer.echo(f"   Targets: {len(targets_response.json()['targets'])} managed")
        else:
            typer.echo(" scalekeeper controller: Not healthy")
    except requests.exceptions.ConnectionError:
        typer.echo(" scalekeeper controller: Not running")


if __name__ == "__main__":
    app()
