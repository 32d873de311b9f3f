"""
FastAPI application entry point for the treasure hunt service.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from google.api_core import exceptions as google_exceptions
from redis.exceptions import RedisError

from qrhunt.config import get_settings
from qrhunt.dependencies import Services, build_services
from qrhunt.errors import MediaValidationError, NotFoundError
from qrhunt.routes import router

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)

# Transport failures from the remote stores surface as 503.
BACKEND_ERRORS = (
    google_exceptions.GoogleAPIError,
    BotoCoreError,
    ClientError,
    RedisError,
)


def create_app(services: Optional[Services] = None) -> FastAPI:
    services = services or build_services(get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        services.close()

    app = FastAPI(title="QR Treasure Hunts", version="0.1.0", lifespan=lifespan)
    app.state.services = services
    app.include_router(router, prefix=services.settings.api_prefix)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(MediaValidationError)
    async def handle_invalid_media(request: Request, exc: MediaValidationError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    async def handle_backend_error(request: Request, exc: Exception):
        logger.error("Backend call failed on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=503, content={"detail": "Storage backend unavailable"}
        )

    for exc_class in BACKEND_ERRORS:
        app.add_exception_handler(exc_class, handle_backend_error)

    return app
