"""Shared route dependencies."""

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.models.infrastructure import User


async def get_current_admin(
    x_user_id: str | None = Header(None),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    The acting administrator, identified by the X-User-Id header.

    Session handling lives in front of this service; here the header is
    trusted and only the role is checked.
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    user = await db.get(User, x_user_id)
    if user is None or not user.is_active or not user.is_admin:
        raise HTTPException(status_code=403, detail="Administrator access required")
    return user
