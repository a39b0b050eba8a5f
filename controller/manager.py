"""
Controller management for scalekeeper.
Owns one autoscale controller per scale target and runs their loops
concurrently. Controllers share collaborators but no mutable state.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from .scaler import (
    AutoscaleController,
    ScalePolicy,
    DEFAULT_CALL_TIMEOUT,
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_POLL_INTERVAL,
)
from .sources import SimulatedMetricSource

logger = logging.getLogger(__name__)


class ControllerManager:
    def __init__(
        self,
        metric_source,
        scale_target,
        exporter=None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        call_timeout: float = DEFAULT_CALL_TIMEOUT,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        clock: Callable[[], float] = time.time,
    ):
        self.metric_source = metric_source
        self.scale_target = scale_target
        self.exporter = exporter
        self.poll_interval = poll_interval
        self.call_timeout = call_timeout
        self.history_limit = history_limit
        self._clock = clock

        self.controllers: Dict[str, AutoscaleController] = {}
        self.manifests: Dict[str, Any] = {}
        self._started = False

    async def register(self, manifest) -> AutoscaleController:
        """Create (or replace) the controller for an HPA manifest."""
        policy = manifest.to_policy(
            poll_interval=self.poll_interval,
            call_timeout=self.call_timeout,
            history_limit=self.history_limit,
        )
        controller = await self.add(manifest.target_id, policy)
        self.manifests[manifest.target_id] = manifest
        return controller

    async def add(self, target_id: str, policy: ScalePolicy) -> AutoscaleController:
        """
        Add a controller for a target. A policy change replaces the existing
        controller once its current cycle has finished.
        """
        existing = self.controllers.get(target_id)
        if existing is not None:
            logger.info(f"Replacing controller for {target_id} with new policy")
            await existing.stop()

        controller = AutoscaleController(
            target_id,
            policy,
            self.metric_source,
            self.scale_target,
            exporter=self.exporter,
            clock=self._clock,
        )
        self.controllers[target_id] = controller

        if self._started:
            controller.start()
        return controller

    async def remove(self, target_id: str) -> bool:
        controller = self.controllers.pop(target_id, None)
        self.manifests.pop(target_id, None)
        if controller is None:
            return False

        await controller.stop()
        if self.exporter is not None:
            self.exporter.forget_target(target_id)
        if isinstance(self.metric_source, SimulatedMetricSource):
            self.metric_source.clear(target_id)
        logger.info(f"Removed controller for {target_id}")
        return True

    def get(self, target_id: str) -> Optional[AutoscaleController]:
        return self.controllers.get(target_id)

    def start(self):
        """Start every control loop. Must be called from a running event loop."""
        self._started = True
        for controller in self.controllers.values():
            controller.start()
        logger.info(f"Started {len(self.controllers)} controller(s)")

    async def stop(self):
        self._started = False
        if self.controllers:
            await asyncio.gather(*(c.stop() for c in self.controllers.values()))
        logger.info("All controllers stopped")

    def list_targets(self) -> List[Dict[str, Any]]:
        targets = []
        for target_id, controller in sorted(self.controllers.items()):
            state = controller.get_state()
            targets.append({
                "target_id": target_id,
                "phase": state["phase"],
                "running": state["running"],
                "current_replicas": state["current_replicas"],
                "desired_replicas": state["desired_replicas"],
                "min_replicas": controller.policy.min_replicas,
                "max_replicas": controller.policy.max_replicas,
                "target_utilization_percent": controller.policy.target_utilization_percent,
            })
        return targets
