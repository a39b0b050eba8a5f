"""
Lifecycle management for the scalekeeper controller.
Handles startup and shutdown events for all components.
"""
import logging
from typing import Optional

from controller.config import BACKEND_HTTP, ControllerSettings
from controller.manager import ControllerManager
from controller.sources import (
    HttpMetricSource,
    HttpScaleTarget,
    InMemoryScaleTarget,
    SimulatedMetricSource,
)
from hpa_spec import load_hpa_manifests
from metrics import MetricsExporter

logger = logging.getLogger(__name__)

# Global components - initialized when starting the API
settings: Optional[ControllerSettings] = None
controller_manager: Optional[ControllerManager] = None
metrics_exporter: Optional[MetricsExporter] = None
metric_source = None
scale_target = None


def get_controller_manager() -> Optional[ControllerManager]:
    """Get the global controller manager instance."""
    return controller_manager


def get_metrics_exporter() -> Optional[MetricsExporter]:
    """Get the global metrics exporter instance."""
    return metrics_exporter


def get_metric_source():
    """Get the metric source shared by all controllers."""
    return metric_source


def configure(new_settings: ControllerSettings):
    """Use explicit settings instead of reading the environment at startup."""
    global settings
    settings = new_settings


def build_collaborators(cfg: ControllerSettings):
    """Create the metric source and scale target for the configured backend."""
    if cfg.backend == BACKEND_HTTP:
        logger.info(f"Using HTTP backend: metrics={cfg.metrics_url}, targets={cfg.target_url}")
        return HttpMetricSource(cfg.metrics_url), HttpScaleTarget(cfg.target_url)

    logger.info("Using simulated backend (metrics via /targets/{id}/simulateMetrics)")
    return SimulatedMetricSource(), InMemoryScaleTarget(initial_replicas=cfg.initial_replicas)


async def startup_event():
    """Initialize all components when the API starts."""
    global settings, controller_manager, metrics_exporter, metric_source, scale_target

    try:
        if settings is None:
            settings = ControllerSettings.from_env()

        metrics_exporter = MetricsExporter()
        metric_source, scale_target = build_collaborators(settings)
        controller_manager = ControllerManager(
            metric_source,
            scale_target,
            exporter=metrics_exporter,
            poll_interval=settings.poll_interval,
            call_timeout=settings.call_timeout,
            history_limit=settings.history_limit,
        )

        if settings.manifests_path:
            manifests = load_hpa_manifests(settings.manifests_path)
            logger.info(f"Loaded {len(manifests)} HorizontalPodAutoscaler manifest(s) from {settings.manifests_path}")
            for manifest in manifests:
                await controller_manager.register(manifest)

        controller_manager.start()
        logger.info("scalekeeper controller API started successfully")

    except Exception as e:
        logger.error(f"Failed to start controller: {e}")
        raise


async def shutdown_event():
    """Clean up resources when shutting down."""
    global controller_manager, metric_source, scale_target

    if controller_manager:
        await controller_manager.stop()
        controller_manager = None

    for client in (metric_source, scale_target):
        close = getattr(client, "close", None)
        if close is not None:
            await close()
    metric_source = None
    scale_target = None

    logger.info("scalekeeper controller API shut down")
