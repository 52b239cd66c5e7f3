"""
Connector manager service — application entry point.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import time
from contextlib import asynccontextmanager, suppress
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from config.settings import Settings, config
from connectors.routes import router as connectors_router
from connectors.service import ConnectorService

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "urllib3", "aiosqlite", "sqlalchemy.engine"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


async def run_token_validation(service: ConnectorService, interval_seconds: int) -> None:
    """Validate connector tokens every *interval_seconds* until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await service.validate_connector_tokens()
        except Exception:
            logger.exception("Periodic token validation failed")


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[ConnectorService] = None,
) -> FastAPI:
    settings = settings or config
    service = service or ConnectorService.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await service.initialize()
        validator: Optional[asyncio.Task] = None
        if settings.token_validation_interval_seconds > 0:
            logger.info(
                "Token validation every %ds", settings.token_validation_interval_seconds
            )
            validator = asyncio.create_task(
                run_token_validation(service, settings.token_validation_interval_seconds)
            )
        try:
            yield
        finally:
            if validator is not None:
                validator.cancel()
                with suppress(asyncio.CancelledError):
                    await validator
            await service.close()

    app = FastAPI(
        title="Connector Manager",
        version="1.0.0",
        description="Connector credential lifecycle and sync-state management.",
        lifespan=lifespan,
    )
    app.state.connector_service = service

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_timer(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        logger.debug("%s %s — %.3fs", request.method, request.url.path, elapsed)
        return response

    # Routes
    app.include_router(connectors_router, prefix="/api/v1/connectors")

    @app.get("/health")
    async def health() -> dict:
        return {
            "status": "ok",
            "initialized": service.is_initialized,
            "backend": settings.persistence_backend,
        }

    return app


if __name__ == "__main__":
    uvicorn.run(
        "main:create_app",
        factory=True,
        host=config.host,
        port=config.port,
        reload=config.debug,
    )
