# cors.py - CORS for the machine-facing OAuth endpoints only
from starlette.middleware.cors import CORSMiddleware
from starlette.types import Receive, Scope, Send


class PublicEndpointCORSMiddleware(CORSMiddleware):
    """
    Cross-origin access for endpoints that unauthenticated clients call
    directly (registration, token, discovery). Browser-navigated pages
    such as authorize and consent pass through without CORS headers.
    """

    CORS_PATHS = (
        "/oauth/register",
        "/oauth/token",
        "/.well-known/oauth-protected-resource",
        "/.well-known/oauth-authorization-server",
    )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and scope.get("path") in self.CORS_PATHS:
            await super().__call__(scope, receive, send)
            return
        await self.app(scope, receive, send)
