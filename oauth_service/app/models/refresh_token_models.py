from sqlalchemy import Column, String, ForeignKey, Uuid
from common.database import Base, UTCDateTime


class OAuthRefreshToken(Base):
    """Only the SHA-256 hex digest of the raw token is ever persisted."""
    __tablename__ = "oauth_refresh_tokens"

    token_hash = Column(String(64), primary_key=True)
    client_id = Column(String(255), ForeignKey("oauth_clients.client_id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    tenant_id = Column(Uuid(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    scope = Column(String(255), nullable=True)
    expires_at = Column(UTCDateTime, nullable=False, index=True)
