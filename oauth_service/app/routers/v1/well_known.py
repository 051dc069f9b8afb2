from fastapi import APIRouter, Depends, Request

from common.config import Settings
from oauth_service.app.dependencies import get_app_settings
from oauth_service.app.schemas.oauth import SUPPORTED_GRANT_TYPES, SUPPORTED_SCOPES

router = APIRouter(prefix="/.well-known", tags=["discovery"])


def get_base_url(request: Request, settings: Settings) -> str:
    """Configured public origin, else the one the client reached us on (honouring proxies)."""
    if settings.base_url:
        return settings.base_url.rstrip("/")
    proto = request.url.scheme
    host = request.headers.get("host") or request.url.netloc
    if settings.trust_proxy_headers:
        proto = request.headers.get("x-forwarded-proto") or proto
        host = request.headers.get("x-forwarded-host") or host
    return f"{proto}://{host}"


@router.get("/oauth-protected-resource")
async def protected_resource_metadata(request: Request, settings: Settings = Depends(get_app_settings)):
    """RFC 9728 protected resource metadata"""
    base_url = get_base_url(request, settings)
    return {
        "resource": base_url,
        "authorization_servers": [base_url],
        "bearer_methods_supported": ["header"],
        "scopes_supported": SUPPORTED_SCOPES,
    }


@router.get("/oauth-authorization-server")
async def authorization_server_metadata(request: Request, settings: Settings = Depends(get_app_settings)):
    """RFC 8414 authorization server metadata"""
    base_url = get_base_url(request, settings)
    return {
        "issuer": base_url,
        "authorization_endpoint": f"{base_url}/oauth/authorize",
        "token_endpoint": f"{base_url}/oauth/token",
        "registration_endpoint": f"{base_url}/oauth/register",
        "scopes_supported": SUPPORTED_SCOPES,
        "response_types_supported": ["code"],
        "grant_types_supported": SUPPORTED_GRANT_TYPES,
        "token_endpoint_auth_methods_supported": ["none"],
        "code_challenge_methods_supported": ["S256"],
    }
