from fastapi import Header, HTTPException, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy import select
from typing import Optional
from groundwork.database import get_db
from groundwork.models.user import User
from groundwork.utils.logger import logger

MAX_USER_ID_LENGTH = 255


async def get_current_user(
    x_user_id: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Resolve the caller from the X-User-ID header.

    Authentication happens upstream (gateway / identity provider); this
    service only needs a stable subject for data isolation. The User row is
    created the first time a subject is seen.

    Usage:
        @router.get("/endpoint")
        async def endpoint(current_user: User = Depends(get_current_user)):
            ...
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=401,
            detail="X-User-ID header required",
        )

    external_id = x_user_id.strip()
    if len(external_id) > MAX_USER_ID_LENGTH:
        raise HTTPException(status_code=400, detail="Invalid user ID format")

    result = await db.execute(select(User).where(User.external_id == external_id))
    user = result.scalar_one_or_none()
    if user:
        return user

    user = User(external_id=external_id)
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        # Concurrent first request for the same subject created it
        await db.rollback()
        result = await db.execute(select(User).where(User.external_id == external_id))
        return result.scalar_one()

    await db.refresh(user)
    logger.info("user.provisioned", extra={"user_id": user.id})
    return user
