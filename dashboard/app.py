"""
Swarm API
=========
The HTTP + WebSocket front door for the swarm dashboard.

Endpoints (all JSON, under /api):
- POST /start       {config}           start a run (camelCase config keys)
- POST /stop                            stop the run
- POST /buy         {tokenAddress, solAmount}
- POST /sell        {positionId}
- GET  /status      running flag + agent board
- GET  /positions   all positions, newest first
- GET  /tokens      top 50 scanned tokens by score
- GET  /narratives  top 10 narratives by score
- GET  /history     latest 100 ledger rows
- GET  /logs        the last 500 log entries
- GET  /balance     {sol, address} or null (no wallet / not running)
- GET  /search?q=   DexScreener search, with this run's scores attached

WebSocket /ws pushes {type, data, timestamp} events:
- init (once, on connect): {running, agents, logs}
- log, status, trade: as they happen

Errors: a bad config is 400, an operation that needs a running swarm is 409.

Run with:
    python main.py --api

Then open http://localhost:3000/api/status
"""

import asyncio
from contextlib import asynccontextmanager

from fastapi import Body, FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from agent.swarm import GatewayFactory, SwarmController, SwarmNotRunning
from config.settings import Settings
from config.swarm_config import SwarmConfig
from database.db import Database
from utils.errors import ConfigError, GatewayError
from utils.logger import get_logger
from utils.timeutil import now_ms

logger = get_logger(__name__)


class BuyRequest(BaseModel):
    tokenAddress: str = Field(min_length=1)
    solAmount: float = Field(gt=0)


class SellRequest(BaseModel):
    positionId: int


def create_app(
    settings: Settings | None = None,
    gateway_factory: GatewayFactory | None = None,
    swarm_options: dict | None = None,
) -> FastAPI:
    """Build the API app. The database opens when the app starts serving."""
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = Database(settings.db_path)
        await db.initialize()
        app.state.controller = SwarmController(
            db, settings, gateway_factory=gateway_factory, swarm_options=swarm_options,
        )
        logger.info("api_ready", db=settings.db_path)
        try:
            yield
        finally:
            await app.state.controller.stop()
            await db.close()

    app = FastAPI(title="Swarm", docs_url=None, redoc_url=None, lifespan=lifespan)

    def controller(request: Request) -> SwarmController:
        return request.app.state.controller

    @app.exception_handler(ConfigError)
    async def config_error_handler(request: Request, exc: ConfigError):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(SwarmNotRunning)
    async def not_running_handler(request: Request, exc: SwarmNotRunning):
        return JSONResponse(status_code=409, content={"error": str(exc)})

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        return JSONResponse(status_code=502, content={"error": str(exc)})

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @app.post("/api/start")
    async def api_start(request: Request, payload: dict | None = Body(default=None)):
        """Start the swarm. Missing config keys fall back to the .env settings."""
        config = SwarmConfig.from_dict(payload or {}, base=settings.default_swarm_config())
        ctl = controller(request)
        await ctl.start(config)
        return ctl.status()

    @app.post("/api/stop")
    async def api_stop(request: Request):
        ctl = controller(request)
        await ctl.stop()
        return ctl.status()

    # =========================================================================
    # Manual trading
    # =========================================================================

    @app.post("/api/buy")
    async def api_buy(request: Request, body: BuyRequest):
        return await controller(request).manual_buy(body.tokenAddress, body.solAmount)

    @app.post("/api/sell")
    async def api_sell(request: Request, body: SellRequest):
        return await controller(request).manual_sell(body.positionId)

    # =========================================================================
    # Reads
    # =========================================================================

    @app.get("/api/status")
    async def api_status(request: Request):
        return controller(request).status()

    @app.get("/api/positions")
    async def api_positions(request: Request):
        return await controller(request).positions()

    @app.get("/api/tokens")
    async def api_tokens(request: Request):
        return await controller(request).scanned_tokens()

    @app.get("/api/narratives")
    async def api_narratives(request: Request):
        return await controller(request).narratives()

    @app.get("/api/history")
    async def api_history(request: Request):
        return await controller(request).trade_history()

    @app.get("/api/logs")
    async def api_logs(request: Request):
        return controller(request).logs()

    @app.get("/api/balance")
    async def api_balance(request: Request):
        return await controller(request).balance()

    @app.get("/api/search")
    async def api_search(request: Request, q: str = Query(default="")):
        return await controller(request).search(q)

    # =========================================================================
    # Push channel
    # =========================================================================

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        ctl: SwarmController = websocket.app.state.controller
        await websocket.accept()
        queue = ctl.feed.subscribe()
        logger.info("ws_connected", subscribers=ctl.feed.subscriber_count)

        async def pump() -> None:
            while True:
                event = await queue.get()
                await websocket.send_json(event)

        async def watch_disconnect() -> None:
            # Clients don't send anything; this only notices the close.
            while True:
                await websocket.receive_text()

        try:
            await websocket.send_json({
                "type": "init",
                "data": {**ctl.status(), "logs": ctl.logs()},
                "timestamp": now_ms(),
            })
            tasks = [asyncio.create_task(pump()), asyncio.create_task(watch_disconnect())]
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
            for task in done:
                exc = task.exception()
                if exc and not isinstance(exc, WebSocketDisconnect):
                    logger.warning("ws_error", error=str(exc))
        except WebSocketDisconnect:
            pass
        finally:
            ctl.feed.unsubscribe(queue)
            logger.info("ws_disconnected", subscribers=ctl.feed.subscriber_count)

    return app


def run_dashboard(settings: Settings, host: str | None = None, port: int | None = None) -> None:
    """Serve the API with uvicorn (blocks until interrupted)."""
    import uvicorn

    host = host or settings.api_host
    port = port or settings.api_port
    logger.info("api_starting", url=f"http://localhost:{port}")
    uvicorn.run(create_app(settings), host=host, port=port, log_level="warning")
