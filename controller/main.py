#!/usr/bin/env python3
"""
scalekeeper Controller Daemon

Main entry point for running the autoscale controller as a daemon.
This starts the FastAPI server and one control loop per registered target.
"""

import os
import sys
import logging
import argparse
from dataclasses import replace
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def setup_logging(level: str = "INFO", logs_dir: str = None):
    """Set up logging configuration."""
    # SCALEKEEPER_LOG_DIR wins, otherwise ./logs next to the project root
    if logs_dir is None:
        logs_dir = os.getenv("SCALEKEEPER_LOG_DIR") or Path(__file__).parent.parent / 'logs'
    logs_dir = Path(logs_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)

    log_file_path = logs_dir / 'scalekeeper-controller.log'

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_file_path)
        ]
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging to file: {log_file_path}")


def main():
    """Main entry point for the controller daemon."""
    from controller.config import ControllerSettings

    parser = argparse.ArgumentParser(description="scalekeeper Controller Daemon")
    parser.add_argument("--host", default=None, help="Host to bind to (default: from environment)")
    parser.add_argument("--port", type=int, default=None, help="Port to bind to (default: from environment)")
    parser.add_argument("--log-level", default=None,
                       choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                       help="Logging level (default: from environment)")
    parser.add_argument("--manifests", default=None,
                       help="HorizontalPodAutoscaler YAML file or directory to load at startup")
    parser.add_argument("--backend", default=None, choices=["simulated", "http"],
                       help="Collaborator backend (default: from environment)")
    parser.add_argument("--poll-interval", type=float, default=None,
                       help="Seconds between control cycles")

    args = parser.parse_args()

    try:
        settings = ControllerSettings.from_env(load_dotenv_file=False)
        overrides = {
            "host": args.host,
            "port": args.port,
            "log_level": args.log_level,
            "manifests_path": args.manifests,
            "backend": args.backend,
            "poll_interval": args.poll_interval,
        }
        settings = replace(settings, **{k: v for k, v in overrides.items() if v is not None})
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    logger.info("Starting scalekeeper controller...")
    logger.info(f"API will be available at http://{settings.host}:{settings.port}")
    logger.info(f"Backend: {settings.backend}, poll interval: {settings.poll_interval}s")

    import uvicorn
    from controller.api import app
    from controller.utils import lifecycle

    lifecycle.configure(settings)

    # Configure uvicorn logging to work with our setup
    log_config = uvicorn.config.LOGGING_CONFIG
    log_config["handlers"]["default"]["stream"] = "ext://sys.stdout"

    try:
        # uvicorn handles SIGINT/SIGTERM and runs the lifespan shutdown,
        # which lets every in-flight cycle finish before exiting
        uvicorn.run(
            app,
            host=settings.host,
            port=settings.port,
            log_level=settings.log_level.lower(),
            access_log=True,
            log_config=log_config
        )
    except Exception as e:
        logger.error(f"Failed to start controller: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
