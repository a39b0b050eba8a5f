"""
Collaborator contracts for the autoscale controller.

MetricSource reports average utilization for a target, ScaleTarget reports
and accepts replica counts. Two transports are provided: in-memory (local
runs and simulated metrics) and HTTP (aiohttp, JSON over REST).
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional

import aiohttp

from .errors import MetricUnavailable, ScaleConflict, TargetUnavailable
from .scaler import ObservedMetric

logger = logging.getLogger(__name__)


class MetricSource(ABC):
    @abstractmethod
    async def get_average_utilization(self, target_id: str) -> ObservedMetric:
        """Return the latest utilization snapshot or raise MetricUnavailable."""


class ScaleTarget(ABC):
    @abstractmethod
    async def get_replica_count(self, target_id: str) -> int:
        """Return the current replica count or raise TargetUnavailable."""

    @abstractmethod
    async def set_replica_count(self, target_id: str, desired: int) -> None:
        """Apply a replica count; raise ScaleConflict or TargetUnavailable on rejection."""


class SimulatedMetricSource(MetricSource):
    """Metric source fed by hand, e.g. from the simulateMetrics endpoint."""

    def __init__(self):
        self._latest: Dict[str, ObservedMetric] = {}

    def publish(self, target_id: str, utilization_percent: float, sample_count: int,
                timestamp: Optional[float] = None) -> ObservedMetric:
        metric = ObservedMetric(
            timestamp=timestamp if timestamp is not None else time.time(),
            average_utilization_percent=utilization_percent,
            sample_count=sample_count,
        )
        self._latest[target_id] = metric
        logger.debug(f"Published simulated metric for {target_id}: {metric}")
        return metric

    def clear(self, target_id: str):
        self._latest.pop(target_id, None)

    async def get_average_utilization(self, target_id: str) -> ObservedMetric:
        metric = self._latest.get(target_id)
        if metric is None:
            raise MetricUnavailable(f"No metrics published for {target_id}")
        return metric


class InMemoryScaleTarget(ScaleTarget):
    """Replica counts kept in a dict. Missing targets start at `initial_replicas`."""

    def __init__(self, initial_replicas: int = 1):
        self.initial_replicas = initial_replicas
        self.replicas: Dict[str, int] = {}

    async def get_replica_count(self, target_id: str) -> int:
        return self.replicas.setdefault(target_id, self.initial_replicas)

    async def set_replica_count(self, target_id: str, desired: int) -> None:
        if desired < 1:
            raise ScaleConflict(f"Refusing to scale {target_id} to {desired}")
        previous = self.replicas.get(target_id, self.initial_replicas)
        self.replicas[target_id] = desired
        logger.info(f"Scaled {target_id}: {previous} -> {desired}")


class _HttpClient:
    """Shared aiohttp session handling for the HTTP collaborators."""

    def __init__(self, base_url: str, timeout_seconds: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.session: Optional[aiohttp.ClientSession] = None

    def _url(self, target_id: str, resource: str) -> str:
        return f"{self.base_url}/targets/{target_id}/{resource}"

    def _session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            )
        return self.session

    async def close(self):
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None


class HttpMetricSource(_HttpClient, MetricSource):
    """GET {base}/targets/{id}/utilization -> {timestamp, averageUtilizationPercent, sampleCount}"""

    async def get_average_utilization(self, target_id: str) -> ObservedMetric:
        url = self._url(target_id, "utilization")
        try:
            async with self._session().get(url) as response:
                if response.status != 200:
                    raise MetricUnavailable(f"Metric source returned HTTP {response.status} for {target_id}")
                payload = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise MetricUnavailable(f"Metric source unreachable: {e}") from e

        try:
            return ObservedMetric(
                timestamp=float(payload.get("timestamp", time.time())),
                average_utilization_percent=float(payload["averageUtilizationPercent"]),
                sample_count=int(payload["sampleCount"]),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise MetricUnavailable(f"Malformed metric payload for {target_id}: {e}") from e


class HttpScaleTarget(_HttpClient, ScaleTarget):
    """GET/PUT {base}/targets/{id}/replicas with body {"replicas": n}; 409 means conflict."""

    async def get_replica_count(self, target_id: str) -> int:
        url = self._url(target_id, "replicas")
        try:
            async with self._session().get(url) as response:
                if response.status != 200:
                    raise TargetUnavailable(f"Scale target returned HTTP {response.status} for {target_id}")
                payload = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TargetUnavailable(f"Scale target unreachable: {e}") from e

        try:
            return int(payload["replicas"])
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise TargetUnavailable(f"Malformed replica payload for {target_id}: {e}") from e

    async def set_replica_count(self, target_id: str, desired: int) -> None:
        url = self._url(target_id, "replicas")
        try:
            async with self._session().put(url, json={"replicas": desired}) as response:
                if response.status == 409:
                    detail = await response.text()
                    raise ScaleConflict(f"Scale target rejected update for {target_id}: {detail}")
                if response.status >= 300:
                    raise TargetUnavailable(f"Scale target returned HTTP {response.status} for {target_id}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TargetUnavailable(f"Scale target unreachable: {e}") from e
