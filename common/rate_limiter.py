"""
Per-client throttling for the unauthenticated OAuth endpoints.
"""
from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address


def client_address(request: Request) -> str:
    """
    Rate-limit key.

    Behind a trusted proxy this is the last X-Forwarded-For entry, the one
    the proxy appended. Earlier entries are client-supplied and ignored.
    """
    settings = getattr(request.app.state, "settings", None)
    if settings is not None and settings.trust_proxy_headers:
        hops = [hop.strip() for hop in request.headers.get("x-forwarded-for", "").split(",")]
        if hops[-1]:
            return hops[-1]
    return get_remote_address(request)


# Shared by every router; the app factory toggles ``enabled`` from settings
limiter = Limiter(key_func=client_address, default_limits=["100/minute"])

rate_limiter = limiter

# Login and registration are the credential-guessing and spam surfaces
RATE_LIMITS = {
    "oauth": {
        "login": "10/minute",
        "register": "5/minute",
        "token": "30/minute",
    },
}

DEFAULT_RATE_LIMIT = "100/minute"


def get_rate_limit(scope: str, endpoint: str) -> str:
    return RATE_LIMITS.get(scope, {}).get(endpoint, DEFAULT_RATE_LIMIT)
