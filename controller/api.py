import logging
import time
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, Dict

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from controller.sources import SimulatedMetricSource
from controller.utils.models import (
    DecisionResponse,
    EventsResponse,
    HistoryResponse,
    ScaleStateResponse,
    SimulatedMetricsRequest,
    TargetRegistrationResponse,
)
from controller.utils import lifecycle
from hpa_spec import validate_hpa_manifest

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Initialize all components when the API starts and clean up on shutdown."""
    await lifecycle.startup_event()
    try:
        yield
    finally:
        await lifecycle.shutdown_event()


# FastAPI app
app = FastAPI(
    title="scalekeeper Controller API",
    description="CPU utilization autoscaling controller API",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_controller_manager():
    manager = lifecycle.get_controller_manager()
    if manager is None:
        raise HTTPException(status_code=503, detail="Controller not initialized")
    return manager


def get_metrics_exporter():
    return lifecycle.get_metrics_exporter()


def get_controller(target_id: str):
    controller = get_controller_manager().get(target_id)
    if controller is None:
        raise HTTPException(status_code=404, detail=f"Target {target_id} not found")
    return controller

# API Endpoints

@app.get("/targets")
async def list_targets():
    """List all managed scale targets."""
    return {"targets": get_controller_manager().list_targets()}


@app.post("/targets/register", response_model=TargetRegistrationResponse)
async def register_target(manifest: Dict[str, Any]):
    """Register a target from a HorizontalPodAutoscaler manifest."""
    try:
        hpa = validate_hpa_manifest(manifest)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    replaced = get_controller_manager().get(hpa.target_id) is not None
    await get_controller_manager().register(hpa)

    return TargetRegistrationResponse(
        status="replaced" if replaced else "registered",
        target=hpa.target_id,
        message=f"Controller running for {hpa.spec.scaleTargetRef.kind} {hpa.spec.scaleTargetRef.name}",
    )


@app.get("/targets/{target_id:path}/state", response_model=ScaleStateResponse)
async def target_state(target_id: str):
    """Get the current scale state of a target."""
    return ScaleStateResponse(**get_controller(target_id).get_state())


@app.get("/targets/{target_id:path}/history", response_model=HistoryResponse)
async def target_history(target_id: str, limit: int = 10):
    """Get the most recent scaling decisions of a target."""
    decisions = get_controller(target_id).get_history(limit)
    return HistoryResponse(
        target=target_id,
        decisions=[DecisionResponse(**d.to_dict()) for d in decisions],
    )


@app.get("/targets/{target_id:path}/events", response_model=EventsResponse)
async def target_events(target_id: str, limit: int = 50):
    """Get the scale commands applied to a target."""
    get_controller(target_id)
    exporter = get_metrics_exporter()
    events = exporter.get_recent_events(target_id, limit) if exporter else []
    return EventsResponse(
        target=target_id,
        events=[asdict(e) for e in events],
        counts=exporter.get_event_counts(target_id) if exporter else {},
    )

@app.post("/targets/{target_id:path}/simulateMetrics")
async def simulate_metrics(target_id: str, sim: SimulatedMetricsRequest):
    """Inject a simulated utilization sample and optionally run a scaling cycle right away.
    Helpful for verifying autoscaling without generating real load."""
    controller = get_controller(target_id)
    source = lifecycle.get_metric_source()
    if not isinstance(source, SimulatedMetricSource):
        raise HTTPException(status_code=409, detail="Metric simulation requires the simulated backend")

    metric = source.publish(target_id, sim.utilizationPercent, sim.sampleCount)

    decision = None
    if sim.evaluate:
        decision = await controller.run_cycle()

    return {
        "target": target_id,
        "metric": {
            "timestamp": metric.timestamp,
            "averageUtilizationPercent": metric.average_utilization_percent,
            "sampleCount": metric.sample_count,
        },
        "decision": decision.to_dict() if decision else None,
    }


@app.delete("/targets/{target_id:path}")
async def remove_target(target_id: str):
    """Stop and remove the controller for a target."""
    if not await get_controller_manager().remove(target_id):
        raise HTTPException(status_code=404, detail=f"Target {target_id} not found")
    return {"status": "removed", "target": target_id}


@app.get("/metrics", response_class=PlainTextResponse)
async def prometheus_metrics():
    """Prometheus exposition of controller metrics."""
    exporter = get_metrics_exporter()
    return exporter.get_prometheus_metrics() if exporter else ""


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": VERSION,
    }
