from typing import Optional, Dict, Any
from datetime import datetime, timedelta, timezone
from uuid import uuid4
from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError
from passlib.context import CryptContext
from pydantic import BaseModel, ConfigDict
import structlog

from .config import Settings

logger = structlog.get_logger("crm.auth")


class TokenExpiredError(Exception):
    """
    Raised when a JWT has passed its expiration time.

    Attributes:
        message (str): A human-readable error message.
        token_type (Optional[str]): The type of token that expired (e.g. 'access').
    """

    def __init__(self, message: str = "Token has expired", token_type: Optional[str] = None):
        self.message = message
        self.token_type = token_type
        super().__init__(self.message)


# ────────────────────────────────────────────────────────────────────────────────
# Pydantic models for token payload
# ────────────────────────────────────────────────────────────────────────────────
class TokenData(BaseModel):
    user_id: str
    tenant_id: str
    email: str
    role: str
    jti: Optional[str] = None
    token_type: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


# ────────────────────────────────────────────────────────────────────────────────
# AuthManager: password hashing and access-token minting
# ────────────────────────────────────────────────────────────────────────────────
class AuthManager:
    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        access_token_expire_minutes: int = 15,
        bcrypt_rounds: int = 12,
    ):
        """
        Args:
            secret_key: HMAC signing secret, injected by the caller
            algorithm: JWT algorithm, default "HS256"
            access_token_expire_minutes: access token lifetime
            bcrypt_rounds: cost factor for new password hashes
        """
        if not secret_key:
            raise ValueError("secret_key must not be empty")
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.access_token_expire_minutes = access_token_expire_minutes
        self.bcrypt_rounds = bcrypt_rounds
        self.pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
        # Unknown-email logins verify against this hash
        self._dummy_hash = self.hash_password(uuid4().hex)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AuthManager":
        return cls(
            secret_key=settings.jwt_secret_key,
            algorithm=settings.jwt_algorithm,
            access_token_expire_minutes=settings.access_token_expire_minutes,
            bcrypt_rounds=settings.bcrypt_rounds,
        )

    def verify_password(self, plain_password: str, hashed_password: str) -> bool:
        """
        Verify a plaintext password against a bcrypt-hashed password.
        """
        try:
            return self.pwd_context.verify(plain_password, hashed_password)
        except ValueError:
            # Malformed stored hash
            return False

    def hash_password(self, password: str) -> str:
        """
        Hash a plaintext password using bcrypt with configured rounds.
        """
        return self.pwd_context.hash(password, rounds=self.bcrypt_rounds)

    def dummy_verify(self) -> None:
        """Spend one bcrypt verification so unknown accounts take as long as known ones."""
        self.pwd_context.verify("not-the-password", self._dummy_hash)

    def create_access_token(self, identity: Dict[str, Any], expires_delta: Optional[timedelta] = None,
                            now: Optional[datetime] = None) -> str:
        """
        Mint a signed access token carrying the caller's identity claims.

        ``identity`` must hold ``user_id``, ``tenant_id``, ``email`` and ``role``.
        """
        issued_at = now or datetime.now(timezone.utc)
        expire = issued_at + (expires_delta or timedelta(minutes=self.access_token_expire_minutes))
        to_encode = {
            "sub": str(identity["user_id"]),
            "user_id": str(identity["user_id"]),
            "tenant_id": str(identity["tenant_id"]),
            "email": identity["email"],
            "role": identity["role"],
            "iat": int(issued_at.timestamp()),
            "exp": int(expire.timestamp()),
            "jti": str(uuid4()),
            "token_type": "access",
        }
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def decode_access_token(self, token: str) -> TokenData:
        """
        Validate signature and expiry of an access token.

        Raises:
            TokenExpiredError: token is past ``exp``
            JWTError: any other signature or claim problem
        """
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError as e:
            raise TokenExpiredError(token_type="access") from e
        if payload.get("token_type") != "access":
            raise JWTError("Not an access token")
        return TokenData(**payload)
