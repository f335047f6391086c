"""
Trading server application - FastAPI trigger surface for the execution engine.
Single process; the in-process scheduler shares the controller's run lease.
"""
import time
from contextlib import asynccontextmanager
from typing import Dict, Any, Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from tradedesk.config import as_int, load_config, validate_config
from tradedesk.main import configure_logging

from .routes_trading import Unauthorized, make_router as make_trading_router
from .trading_controller import TradingController


def create_app(
    config: Optional[Dict[str, Any]] = None,
    controller: Optional[TradingController] = None
) -> FastAPI:
    if config is None:
        load_dotenv()
        config = load_config()
        validate_config(config)
        configure_logging(config)
    if controller is None:
        controller = TradingController.from_config(config)

    server_cfg = config.get("server", {}) or {}

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        controller.start()
        logger.info("Trading server started")
        try:
            yield
        finally:
            await controller.aclose()
            logger.info("Trading server stopped")

    app = FastAPI(
        title="TradeDesk",
        version="0.1.0",
        description="Automated scan-and-trade execution with bracket orders",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=server_cfg.get("cors_origins") or ["http://localhost", "http://127.0.0.1"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "details": jsonable_errors(exc)},
        )

    @app.exception_handler(Unauthorized)
    async def unauthorized(request: Request, exc: Unauthorized):
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    app.include_router(make_trading_router(controller, server_cfg))

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "timestamp": time.strftime("%Y-%m-%d %H:%M:%S"),
        }

    app.state.controller = controller
    logger.info("Trading server initialized successfully")
    return app


def jsonable_errors(exc: RequestValidationError):
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]


def main():
    try:
        logger.info("=" * 80)
        logger.info("Starting TradeDesk Server")
        logger.info("=" * 80)
        app = create_app()
        server_cfg = app.state.controller.bot.config.get("server", {}) or {}
        uvicorn.run(
            app,
            host=server_cfg.get("host", "127.0.0.1"),
            port=as_int(server_cfg.get("port"), 8000),
            log_level="info",
        )
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception as e:
        logger.opt(exception=e).error(f"Fatal error: {e}")
        raise


if __name__ == "__main__":
    main()
