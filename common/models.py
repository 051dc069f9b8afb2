from sqlalchemy import (
    Column,
    String,
    Boolean,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Uuid,
)
from sqlalchemy.sql import func
from enum import Enum
import uuid
from sqlalchemy.orm import relationship
from common.database import Base, UTCDateTime


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    USER = "USER"


class TenantStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(225), nullable=False)
    status = Column(SQLEnum(TenantStatus), default=TenantStatus.ACTIVE, nullable=False)
    created_at = Column(UTCDateTime, server_default=func.now())


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)
    email = Column(String(225), nullable=False, unique=True, index=True)
    hashed_password = Column(String(255), nullable=False)
    first_name = Column(String(225), nullable=True)
    last_name = Column(String(225), nullable=True)
    role = Column(SQLEnum(UserRole), default=UserRole.USER, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(UTCDateTime, server_default=func.now())

    tenant = relationship("Tenant", lazy="joined")

    @property
    def display_name(self) -> str:
        if self.first_name and self.last_name:
            return f"{self.first_name} {self.last_name}"
        return self.email


# Logins match emails case-insensitively, so uniqueness must hold the same way
Index("ux_users_email_lower", func.lower(User.email), unique=True)
