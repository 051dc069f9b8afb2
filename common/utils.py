from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from typing import Optional, Union
from uuid import UUID

from common.models import User


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    """Case-insensitive lookup; emails are unique across tenants."""
    query = select(User).where(func.lower(User.email) == email.strip().lower())
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_user_by_id(db: AsyncSession, user_id: Union[UUID, str], tenant_id: Optional[Union[UUID, str]] = None) -> Optional[User]:
    try:
        user_id = user_id if isinstance(user_id, UUID) else UUID(str(user_id))
        if tenant_id is not None and not isinstance(tenant_id, UUID):
            tenant_id = UUID(str(tenant_id))
    except ValueError:
        return None
    query = select(User).where(User.id == user_id)
    if tenant_id:
        query = query.where(User.tenant_id == tenant_id)
    result = await db.execute(query)
    return result.scalar_one_or_none()


__all__ = ["get_user_by_email", "get_user_by_id"]
