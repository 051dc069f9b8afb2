from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import List, Optional
from uuid import uuid4
import structlog

from common.exceptions import InvalidClient, InvalidRedirectUri
from oauth_service.app.models.oauth_models import OAuthClient

logger = structlog.get_logger("crm.oauth.client_registry")


class ClientRegistry:
    """Shared registry of public OAuth clients. Clients are immutable once stored."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def register(self, client_name: str, redirect_uris: List[str], grant_types: List[str]) -> OAuthClient:
        client = OAuthClient(
            client_id=str(uuid4()),
            client_name=client_name,
            redirect_uris=list(redirect_uris),
            grant_types=list(grant_types),
        )
        self.db.add(client)
        await self.db.flush()
        logger.info("OAuth client registered", client_id=client.client_id, redirect_uri_count=len(redirect_uris))
        return client

    async def get(self, client_id: str) -> Optional[OAuthClient]:
        result = await self.db.execute(select(OAuthClient).where(OAuthClient.client_id == client_id))
        return result.scalar_one_or_none()

    async def validate(self, client_id: str, redirect_uri: str) -> OAuthClient:
        client = await self.get(client_id)
        if client is None:
            logger.warning("Unknown client_id", client_id=client_id[:36])
            raise InvalidClient()
        # Exact string comparison only
        if redirect_uri not in client.redirect_uris:
            logger.warning("Unregistered redirect_uri", client_id=client_id)
            raise InvalidRedirectUri()
        return client
