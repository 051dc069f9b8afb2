from sqlalchemy import Column, String, Text, ForeignKey, Uuid
from common.database import Base, UTCDateTime


class AuthorizationCode(Base):
    __tablename__ = "oauth_authorization_codes"

    code = Column(String(128), primary_key=True)
    client_id = Column(String(255), ForeignKey("oauth_clients.client_id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    tenant_id = Column(Uuid(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    redirect_uri = Column(Text, nullable=False)
    code_challenge = Column(String(255), nullable=False)
    code_challenge_method = Column(String(10), nullable=False, default="S256")
    scope = Column(String(255), nullable=True)
    state = Column(Text, nullable=True)
    expires_at = Column(UTCDateTime, nullable=False, index=True)
    used_at = Column(UTCDateTime, nullable=True)
