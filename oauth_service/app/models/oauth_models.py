from sqlalchemy import Column, String, JSON
from sqlalchemy.sql import func
from common.database import Base, UTCDateTime


class OAuthClient(Base):
    """Dynamically registered public client. Never holds a secret."""
    __tablename__ = "oauth_clients"

    client_id = Column(String(255), primary_key=True)
    client_name = Column(String(255), nullable=False)
    redirect_uris = Column(JSON, nullable=False)
    grant_types = Column(JSON, nullable=False)
    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False)
