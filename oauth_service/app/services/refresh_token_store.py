from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import UUID
import hashlib
import secrets
import structlog

from common.database import utcnow
from common.exceptions import ClientMismatch, InvalidRefreshToken, RefreshTokenExpired
from oauth_service.app.models.refresh_token_models import OAuthRefreshToken

logger = structlog.get_logger("crm.oauth.refresh_token_store")

REFRESH_TOKEN_TTL = timedelta(days=7)


def hash_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class RotatedRefreshToken:
    raw_token: str
    user_id: UUID
    tenant_id: UUID
    scope: Optional[str]


class RefreshTokenStore:
    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utcnow, ttl: timedelta = REFRESH_TOKEN_TTL):
        self.db = db
        self.clock = clock
        self.ttl = ttl

    async def issue(self, user_id: UUID, tenant_id: UUID, client_id: str, scope: Optional[str]) -> str:
        """Store a new refresh token and return its raw value. The raw value is not kept."""
        raw_token = secrets.token_hex(32)
        self.db.add(OAuthRefreshToken(
            token_hash=hash_token(raw_token),
            client_id=client_id,
            user_id=user_id,
            tenant_id=tenant_id,
            scope=scope,
            expires_at=self.clock() + self.ttl,
        ))
        await self.db.flush()
        return raw_token

    async def rotate(self, presented_token: str, client_id: str) -> RotatedRefreshToken:
        token_hash = hash_token(presented_token)
        result = await self.db.execute(select(OAuthRefreshToken).where(OAuthRefreshToken.token_hash == token_hash))
        record = result.scalar_one_or_none()

        if record is None:
            raise InvalidRefreshToken()
        if record.expires_at <= self.clock():
            raise RefreshTokenExpired()
        if record.client_id != client_id:
            logger.warning("Refresh token presented by another client", client_id=client_id)
            raise ClientMismatch()

        user_id, tenant_id, scope = record.user_id, record.tenant_id, record.scope

        deleted = await self.db.execute(
            delete(OAuthRefreshToken)
            .where(OAuthRefreshToken.token_hash == token_hash)
            .execution_options(synchronize_session=False)
        )
        if deleted.rowcount != 1:
            # Another request rotated this token first
            logger.warning("Lost refresh token rotation race", client_id=client_id)
            raise InvalidRefreshToken()
        self.db.expunge(record)

        new_token = await self.issue(user_id, tenant_id, client_id, scope)
        return RotatedRefreshToken(raw_token=new_token, user_id=user_id, tenant_id=tenant_id, scope=scope)

    async def purge_expired(self) -> int:
        result = await self.db.execute(
            delete(OAuthRefreshToken)
            .where(OAuthRefreshToken.expires_at <= self.clock())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
