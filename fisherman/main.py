"""FastAPI application factory with lifespan context manager."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from fisherman.config import load_config, settings
from fisherman.dependencies import init_deps
from fisherman.logging_config import configure_logging
from fisherman.routers import deployments, health, webhooks


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Load the deployment configuration before serving.

    A missing or invalid configuration file raises ``ConfigError`` here,
    which aborts startup.
    """
    configure_logging(json_logs=not settings.debug, log_level=settings.log_level)
    config = load_config(settings.config_path)
    config.check_for_potential_mistakes()
    init_deps(config)

    structlog.get_logger().info(
        "listening_for_webhooks",
        port=config.default.port,
        repositories=sorted(config.specific),
    )
    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return a JSON 500 response for any unhandled exception."""
    logger = structlog.get_logger()
    logger.exception("unhandled_exception", path=request.url.path, method=request.method)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.include_router(health.router)
app.include_router(deployments.router)
app.include_router(webhooks.router)
