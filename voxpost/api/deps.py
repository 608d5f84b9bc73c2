from typing import Optional

from fastapi import Request

from voxpost.core.config import settings
from voxpost.features.payments.gateway import PaymentGateway
from voxpost.features.recordings.provider import ContentProvider
from voxpost.features.routing.service import classify_origin


def get_gateway(request: Request) -> Optional[PaymentGateway]:
    return getattr(request.app.state, "gateway", None)


def get_content_provider(request: Request) -> Optional[ContentProvider]:
    return getattr(request.app.state, "provider", None)


def current_origin(request: Request) -> str:
    """free, premium or unknown, from the Host header."""
    return classify_origin(request.headers.get("host"), settings.FREE_ORIGIN, settings.PREMIUM_ORIGIN)


def public_base_url(request: Request) -> str:
    """Scheme and host the client used, for gateway callback URLs."""
    return str(request.base_url).rstrip("/")
