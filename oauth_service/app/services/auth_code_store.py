from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import UUID
import secrets
import structlog

from common.database import utcnow
from common.exceptions import (
    InvalidCode,
    CodeAlreadyUsed,
    CodeExpired,
    ClientMismatch,
    RedirectMismatch,
    InvalidVerifier,
)
from oauth_service.app.models.auth_code_models import AuthorizationCode
from oauth_service.app.services.pkce import verify_pkce

logger = structlog.get_logger("crm.oauth.auth_code_store")

CODE_TTL = timedelta(minutes=5)


@dataclass(frozen=True)
class RedeemedGrant:
    user_id: UUID
    tenant_id: UUID
    scope: Optional[str]


class AuthorizationCodeStore:
    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utcnow, ttl: timedelta = CODE_TTL):
        self.db = db
        self.clock = clock
        self.ttl = ttl

    async def create(
        self,
        client_id: str,
        user_id: UUID,
        tenant_id: UUID,
        redirect_uri: str,
        code_challenge: str,
        code_challenge_method: str = "S256",
        scope: Optional[str] = None,
        state: Optional[str] = None,
    ) -> str:
        if code_challenge_method != "S256":
            raise ValueError("Only S256 code challenges are supported")
        code = secrets.token_hex(32)
        self.db.add(AuthorizationCode(
            code=code,
            client_id=client_id,
            user_id=user_id,
            tenant_id=tenant_id,
            redirect_uri=redirect_uri,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            scope=scope,
            state=state,
            expires_at=self.clock() + self.ttl,
            used_at=None,
        ))
        await self.db.flush()
        logger.info("Authorization code issued", client_id=client_id, user_id=str(user_id))
        return code

    async def redeem(self, code: str, code_verifier: str, client_id: str, redirect_uri: str) -> RedeemedGrant:
        """
        Validate a presented code and mark it used.

        Checks run in a fixed order and each raises its own error. The final
        conditional UPDATE is what guarantees single use: when two requests
        race past the checks, only one of them flips ``used_at``.
        Commit is left to the caller so token issuance lands in the same
        transaction.
        """
        result = await self.db.execute(select(AuthorizationCode).where(AuthorizationCode.code == code))
        record = result.scalar_one_or_none()
        now = self.clock()

        if record is None:
            raise InvalidCode()
        if record.used_at is not None:
            logger.warning("Authorization code replay", client_id=record.client_id, user_id=str(record.user_id))
            raise CodeAlreadyUsed()
        if record.expires_at <= now:
            raise CodeExpired()
        if record.client_id != client_id:
            raise ClientMismatch()
        if record.redirect_uri != redirect_uri:
            raise RedirectMismatch()
        if not verify_pkce(code_verifier, record.code_challenge):
            raise InvalidVerifier()

        marked = await self.db.execute(
            update(AuthorizationCode)
            .where(
                AuthorizationCode.code == code,
                AuthorizationCode.used_at.is_(None),
                AuthorizationCode.expires_at > now,
            )
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )
        if marked.rowcount != 1:
            logger.warning("Lost authorization code redemption race", client_id=client_id)
            raise CodeAlreadyUsed()

        return RedeemedGrant(user_id=record.user_id, tenant_id=record.tenant_id, scope=record.scope)

    async def purge_expired(self) -> int:
        result = await self.db.execute(
            delete(AuthorizationCode)
            .where(AuthorizationCode.expires_at <= self.clock())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
