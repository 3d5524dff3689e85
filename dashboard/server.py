"""FastAPI dashboard server: cascade REST endpoints + WebSocket relay."""

import argparse
import asyncio
import logging
import queue as _queue
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from cascade.gating import TradeGate
from cascade.registry import DetectorRegistry
from dashboard.config import DashboardConfig
from dashboard.event_emitter import DashboardEventEmitter
from dashboard.routers import cascade
from dashboard.ws_manager import ConnectionManager

logger = logging.getLogger(__name__)

HEARTBEAT_SECONDS = 30


def create_app(
    config_path: Optional[str] = None,
    emitter: Optional[DashboardEventEmitter] = None,
    registry: Optional[DetectorRegistry] = None,
) -> FastAPI:
    app = FastAPI(title="Cascade Detector Dashboard", version="1.0.0")

    # CORS (allow a separately served frontend during development)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Shared state
    cfg = DashboardConfig(config_path)
    if registry is None:
        # Read-only view when no detector service shares its registry
        registry = DetectorRegistry(auto_enabled=cfg.auto_enabled)
        registry.sync_symbols(cfg.symbols)
    app.state.dashboard_config = cfg
    app.state.registry = registry
    app.state.trade_gate = TradeGate(registry)
    app.state.ws_manager = ConnectionManager()
    app.state.emitter = emitter or DashboardEventEmitter()
    app.state.start_time = datetime.now(timezone.utc)

    app.include_router(cascade.router)

    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket):
        mgr = app.state.ws_manager
        # Subscribe before accepting so no event emitted after the handshake is missed
        q = app.state.emitter.subscribe()
        relay = None
        try:
            await mgr.connect(ws)
            relay = asyncio.create_task(_relay(q, ws, cfg.broadcast_channel))
            while True:
                try:
                    await asyncio.wait_for(ws.receive_text(), timeout=HEARTBEAT_SECONDS)
                except asyncio.TimeoutError:
                    await ws.send_json({
                        "channel": "heartbeat",
                        "data": {
                            "status": "OPERATIONAL",
                            "uptime": (datetime.now(timezone.utc) - app.state.start_time).total_seconds(),
                            "symbols": len(app.state.registry),
                            "ws_clients": mgr.active_count,
                        },
                        "ts": datetime.now(timezone.utc).isoformat(),
                    })
        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.debug("WS error: %s", e)
        finally:
            if relay is not None:
                relay.cancel()
            app.state.emitter.unsubscribe(q)
            mgr.disconnect(ws)

    async def _relay(q, ws: WebSocket, channel: str):
        try:
            while True:
                try:
                    msg = await asyncio.to_thread(q.get, timeout=2)
                except _queue.Empty:
                    continue
                if msg.get("channel") != channel:
                    continue
                await ws.send_json(msg)
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug("WS relay stopped: %s", e)

    @app.get("/api/health")
    async def health():
        return {
            "status": "ok",
            "symbols": app.state.registry.symbols(),
            "ws_clients": app.state.ws_manager.active_count,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return app


def main():
    parser = argparse.ArgumentParser(description="Cascade Detector Dashboard Server")
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--host", type=str, default=None)
    parser.add_argument("--config", type=str, default=None)
    args = parser.parse_args()

    import uvicorn

    app = create_app(config_path=args.config)
    dash = app.state.dashboard_config.dashboard
    host = args.host or dash["host"]
    port = args.port or int(dash["port"])
    logger.info("Starting dashboard on %s:%s", host, port)
    uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()
