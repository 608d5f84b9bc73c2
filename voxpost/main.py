import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException

# Load env before settings are read
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from voxpost.core.config import settings, validate_config
from voxpost.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from voxpost.core.logging import configure_logging
from voxpost.core.middleware.request_id import RequestIdMiddleware
from voxpost.core.validation import validate_env
from voxpost.api import auth, health, payments, recordings, users
from voxpost.features.payments.gateway import build_gateway
from voxpost.features.recordings.provider import build_content_provider

_FROM_SETTINGS = object()


def create_app(gateway=_FROM_SETTINGS, provider=_FROM_SETTINGS) -> FastAPI:
    """
    Build the voxpost API.

    Args:
        gateway: PaymentGateway to use; None disables payments. Built from
            settings when omitted.
        provider: ContentProvider to use; None disables transcription.
            Built from settings when omitted.
    """
    configure_logging(settings.ENV)
    validate_env()
    validate_config(strict=settings.CONFIG_STRICT)

    if gateway is _FROM_SETTINGS:
        gateway = build_gateway(settings)
    if provider is _FROM_SETTINGS:
        provider = build_content_provider(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger = logging.getLogger("voxpost")
        logger.info("Starting voxpost backend...")
        try:
            yield
        finally:
            close = getattr(app.state.gateway, "close", None)
            if close is not None:
                close()
            logger.info("Stopping voxpost backend...")

    app = FastAPI(title="voxpost", lifespan=lifespan)
    app.state.gateway = gateway
    app.state.provider = provider

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(users.router)
    app.include_router(recordings.router)
    app.include_router(payments.router)
    return app


app = create_app()
