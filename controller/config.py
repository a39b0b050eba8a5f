"""
Runtime configuration for the scalekeeper controller, read from the
environment (and a .env file when present).
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .scaler import DEFAULT_CALL_TIMEOUT, DEFAULT_HISTORY_LIMIT, DEFAULT_POLL_INTERVAL

BACKEND_SIMULATED = "simulated"
BACKEND_HTTP = "http"


@dataclass
class ControllerSettings:
    host: str = "0.0.0.0"
    port: int = 8000
    manifests_path: Optional[str] = None
    backend: str = BACKEND_SIMULATED
    metrics_url: Optional[str] = None
    target_url: Optional[str] = None
    poll_interval: float = DEFAULT_POLL_INTERVAL
    call_timeout: float = DEFAULT_CALL_TIMEOUT
    history_limit: int = DEFAULT_HISTORY_LIMIT
    initial_replicas: int = 1
    log_level: str = "INFO"

    def __post_init__(self):
        if self.backend not in (BACKEND_SIMULATED, BACKEND_HTTP):
            raise ValueError(f"Unknown backend '{self.backend}', expected '{BACKEND_SIMULATED}' or '{BACKEND_HTTP}'")
        if self.backend == BACKEND_HTTP and not (self.metrics_url and self.target_url):
            raise ValueError("SCALEKEEPER_METRICS_URL and SCALEKEEPER_TARGET_URL are required for the http backend")

    @classmethod
    def from_env(cls, load_dotenv_file: bool = True) -> "ControllerSettings":
        if load_dotenv_file:
            load_dotenv()
        return cls(
            host=os.getenv("SCALEKEEPER_HOST", "0.0.0.0"),
            port=int(os.getenv("SCALEKEEPER_PORT", "8000")),
            manifests_path=os.getenv("SCALEKEEPER_MANIFESTS") or None,
            backend=os.getenv("SCALEKEEPER_BACKEND", BACKEND_SIMULATED).lower(),
            metrics_url=os.getenv("SCALEKEEPER_METRICS_URL") or None,
            target_url=os.getenv("SCALEKEEPER_TARGET_URL") or None,
            poll_interval=float(os.getenv("SCALEKEEPER_POLL_INTERVAL", DEFAULT_POLL_INTERVAL)),
            call_timeout=float(os.getenv("SCALEKEEPER_CALL_TIMEOUT", DEFAULT_CALL_TIMEOUT)),
            history_limit=int(os.getenv("SCALEKEEPER_HISTORY_LIMIT", DEFAULT_HISTORY_LIMIT)),
            initial_replicas=int(os.getenv("SCALEKEEPER_INITIAL_REPLICAS", "1")),
            log_level=os.getenv("SCALEKEEPER_LOG_LEVEL", "INFO"),
        )
