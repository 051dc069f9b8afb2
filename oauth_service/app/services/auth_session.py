from sqlalchemy.ext.asyncio import AsyncSession
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Callable
from jose import JWTError, jwt
import structlog

from common.auth import AuthManager
from common.database import utcnow
from common.exceptions import AccountInactive, InvalidCredentials, InvalidOrExpiredSession
from common.models import TenantStatus, User
from common.utils import get_user_by_email

logger = structlog.get_logger("crm.oauth.auth_session")

AUTH_SESSION_AUDIENCE = "crm-oauth-auth-session"
AUTH_SESSION_TTL = timedelta(minutes=2)


@dataclass(frozen=True)
class AuthSessionIdentity:
    user_id: str
    tenant_id: str
    email: str
    role: str

    @classmethod
    def from_user(cls, user: User) -> "AuthSessionIdentity":
        return cls(
            user_id=str(user.id),
            tenant_id=str(user.tenant_id),
            email=user.email,
            role=user.role.value if hasattr(user.role, "value") else str(user.role),
        )


async def authenticate(db: AsyncSession, auth_manager: AuthManager, email: str, password: str) -> User:
    """
    Check a login form against the credential store.

    Every path performs exactly one bcrypt verification, so response time
    does not reveal whether the email exists.
    """
    user = await get_user_by_email(db, email)
    if user is None:
        auth_manager.dummy_verify()
        raise InvalidCredentials()
    if not auth_manager.verify_password(password, user.hashed_password):
        raise InvalidCredentials()
    if not user.is_active or user.tenant is None or user.tenant.status != TenantStatus.ACTIVE:
        raise AccountInactive()
    return user


class AuthSessionSigner:
    """Signs the short-lived token that carries a logged-in identity to the consent step."""

    def __init__(self, secret_key: str, algorithm: str = "HS256", ttl: timedelta = AUTH_SESSION_TTL,
                 clock: Callable[[], datetime] = utcnow):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.ttl = ttl
        self.clock = clock

    def issue(self, identity: AuthSessionIdentity) -> str:
        now = self.clock()
        claims = asdict(identity)
        claims.update(
            aud=AUTH_SESSION_AUDIENCE,
            iat=int(now.timestamp()),
            exp=int((now + self.ttl).timestamp()),
        )
        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)

    def verify(self, token: str) -> AuthSessionIdentity:
        try:
            # jose checks exp against wall-clock time; re-check with our clock
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                audience=AUTH_SESSION_AUDIENCE,
                options={"verify_exp": False},
            )
        except JWTError as e:
            logger.info("Rejected auth session token", reason=type(e).__name__)
            raise InvalidOrExpiredSession() from e

        # jose accepts tokens that carry no aud at all
        if payload.get("aud") != AUTH_SESSION_AUDIENCE:
            raise InvalidOrExpiredSession()
        exp = payload.get("exp")
        if not isinstance(exp, (int, float)) or exp <= self.clock().timestamp():
            raise InvalidOrExpiredSession()
        try:
            return AuthSessionIdentity(
                user_id=str(payload["user_id"]),
                tenant_id=str(payload["tenant_id"]),
                email=str(payload["email"]),
                role=str(payload["role"]),
            )
        except KeyError as e:
            raise InvalidOrExpiredSession() from e
