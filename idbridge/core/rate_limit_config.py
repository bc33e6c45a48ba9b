"""
Rate limiting configuration for the credential endpoints
"""

from typing import List

from fastapi import Request
from slowapi.util import get_remote_address


def _forwarded_for(request: Request) -> List[str]:
    # Repeated headers count as one list, in arrival order
    values = request.headers.getlist("X-Forwarded-For")
    return [entry.strip() for value in values for entry in value.split(",") if entry.strip()]


def _trusted_hops(request: Request) -> int:
    app = request.scope.get("app")
    settings = getattr(getattr(app, "state", None), "settings", None)
    return getattr(settings, "TRUSTED_PROXY_HOPS", 0)


def get_real_ip(request: Request) -> str:
    """
    Get the client IP address used as the rate limit key.

    Every proxy appends the address it received the request from, so only
    the right-most TRUSTED_PROXY_HOPS entries of X-Forwarded-For were
    written by our own infrastructure. The client is the left-most of
    those. Anything further left is whatever the client chose to send.
    """
    hops = _trusted_hops(request)
    if hops > 0:
        forwarded = _forwarded_for(request)
        if len(forwarded) >= hops:
            return forwarded[-hops]

    # Fallback to direct connection IP
    return get_remote_address(request)


RATE_LIMITS = {
    "sign_in": "10/minute",      # Password guesses
    "provision": "30/minute",    # Certificate requests
}

RATE_LIMIT_MESSAGE = "Too many requests. Please wait a moment and try again."
