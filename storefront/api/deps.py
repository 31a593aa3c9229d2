"""FastAPI dependency injection functions."""

import logging
import re
import secrets
from typing import Annotated

from fastapi import Depends, Request, Response

from storefront.core.config import get_settings
from storefront.core.storage import KeyValueStore, get_storage_backend
from storefront.services.analytics import AnalyticsSink, LoggingAnalyticsSink
from storefront.services.cart_session import CartSession, CartSessionConfig

logger = logging.getLogger(__name__)

SESSION_TOKEN_HEADER = "X-Session-Token"
OFFER_ELIGIBLE_HEADER = "X-Offer-Eligible"

# Tokens become part of storage keys, so only a safe alphabet is accepted
_TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_-]{16,128}$")
_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def get_session_cookie_config() -> dict:
    """Get session cookie configuration from settings."""
    settings = get_settings()
    # SameSite=None requires Secure=True; fall back to Lax for local development
    samesite = "none" if settings.session_cookie_secure else "lax"
    return {
        "key": settings.session_cookie_name,
        "max_age": settings.session_cookie_max_age,
        "httponly": True,
        "secure": settings.session_cookie_secure,
        "samesite": samesite,
        "path": "/",
    }


def generate_session_token() -> str:
    """Generate a new opaque session token (64 hex characters)."""
    return secrets.token_hex(32)


def get_session_token(request: Request) -> str | None:
    """Extract session token from X-Session-Token header or cookie.

    Checks header first (works when third-party cookies are blocked),
    then falls back to cookie. Malformed tokens are ignored.

    Args:
        request: FastAPI request object.

    Returns:
        str | None: The session token or None if not present.
    """
    candidates = (
        request.headers.get(SESSION_TOKEN_HEADER),
        request.cookies.get(get_session_cookie_config()["key"]),
    )
    for token in candidates:
        if not token:
            continue
        if _TOKEN_PATTERN.match(token):
            return token
        logger.warning("Ignoring malformed session token")
    return None


def set_session_cookie(response: Response, token: str) -> None:
    """Set session cookie on response.

    Args:
        response: FastAPI response object.
        token: The session token to set.
    """
    config = get_session_cookie_config()
    response.set_cookie(
        key=config["key"],
        value=token,
        max_age=config["max_age"],
        httponly=config["httponly"],
        secure=config["secure"],
        samesite=config["samesite"],
        path=config["path"],
    )


async def resolve_session_token(request: Request, response: Response) -> str:
    """Return the caller's session token, issuing a new one when absent.

    The token is echoed back in the X-Session-Token header and the session
    cookie so header-only clients can keep using it.
    """
    token = get_session_token(request)
    if token is None:
        token = generate_session_token()
        logger.info("Issued new session token")
    set_session_cookie(response, token)
    response.headers[SESSION_TOKEN_HEADER] = token
    return token


def get_offer_eligibility(request: Request) -> bool:
    """Read offer eligibility from X-Offer-Eligible, else the configured default.

    The header is trusted as sent, like the prices on cart requests.
    """
    raw = request.headers.get(OFFER_ELIGIBLE_HEADER)
    if raw is not None:
        value = raw.strip().lower()
        if value in _TRUTHY:
            return True
        if value in _FALSY:
            return False
        logger.warning("Unrecognized %s value %r; using default", OFFER_ELIGIBLE_HEADER, raw)
    return get_settings().offers_default_eligible


# Global analytics sink
_analytics_sink: AnalyticsSink | None = None


def get_analytics_sink() -> AnalyticsSink:
    """Get or create the global analytics sink."""
    global _analytics_sink
    if _analytics_sink is None:
        _analytics_sink = LoggingAnalyticsSink()
    return _analytics_sink


SessionToken = Annotated[str, Depends(resolve_session_token)]
OfferEligible = Annotated[bool, Depends(get_offer_eligibility)]
Sink = Annotated[AnalyticsSink, Depends(get_analytics_sink)]


def get_cart_session(token: SessionToken, eligible: OfferEligible, sink: Sink) -> CartSession:
    """Build the cart session for the caller's storage namespace.

    State lives in the shared storage backend only, so every request
    rebuilds its session from storage like a freshly activated tab.
    """
    settings = get_settings()
    store = KeyValueStore(get_storage_backend(), prefix=settings.storage_prefix).namespaced(token)
    return CartSession(
        store,
        eligibility=lambda: eligible,
        sink=sink,
        config=CartSessionConfig.from_settings(),
    )


CurrentCart = Annotated[CartSession, Depends(get_cart_session)]
