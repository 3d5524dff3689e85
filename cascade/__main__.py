"""
Standalone entry point for the cascade detector service.

Usage::
    python -m cascade
    python -m cascade --config config/config.json --log-level DEBUG
    python -m cascade --with-dashboard
"""

import argparse
import asyncio
import logging
from typing import Any, Dict, Optional

from cascade.config import cascade_settings, load_config
from cascade.logging_setup import configure_logging
from cascade.service import CascadeDetectorService

logger = logging.getLogger("cascade")


async def _run(
    raw_config: Dict[str, Any],
    config_path: Optional[str],
    with_dashboard: bool,
) -> None:
    emitter = None
    server = None
    if with_dashboard:
        from dashboard.event_emitter import DashboardEventEmitter

        emitter = DashboardEventEmitter()

    service = CascadeDetectorService(cascade_settings(raw_config), emitter=emitter)

    if with_dashboard:
        import uvicorn

        from dashboard.server import create_app

        app = create_app(config_path=config_path, emitter=emitter, registry=service.registry)
        dash = app.state.dashboard_config.dashboard
        server = uvicorn.Server(
            uvicorn.Config(app, host=dash["host"], port=int(dash["port"]), log_level="info")
        )

    await service.start()
    try:
        if server is not None:
            logger.info("Dashboard on %s:%s", server.config.host, server.config.port)
            await server.serve()
        else:
            # Runs until cancelled (Ctrl-C)
            await asyncio.Event().wait()
    finally:
        await service.stop()


def main() -> None:
    parser = argparse.ArgumentParser(description="Liquidation Cascade Detector")
    parser.add_argument(
        "--config", default=None,
        help="Path to config file (reads cascade_detector section)",
    )
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument(
        "--log-file", default=None,
        help="Optional JSON-lines log file (rotated)",
    )
    parser.add_argument(
        "--with-dashboard", action="store_true",
        help="Serve the dashboard API alongside the detector",
    )
    args = parser.parse_args()

    configure_logging(args.log_level, json_file=args.log_file)
    raw_config = load_config(args.config)

    try:
        asyncio.run(_run(raw_config, args.config, args.with_dashboard))
    except KeyboardInterrupt:
        logger.info("Cascade detector shut down by user")


if __name__ == "__main__":
    main()
