"""
User lookup helpers (identity collaborator's local profile copy)
"""

from typing import Dict, Iterable, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.models.users import User


async def find_user_by_id(db: AsyncSession, user_id: int) -> Optional[User]:
    """사용자 ID로 조회"""
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def find_users_by_ids(db: AsyncSession, user_ids: Iterable[int]) -> Dict[int, User]:
    """여러 사용자를 한 번에 조회 ({user_id: User})"""
    ids = set(user_ids)
    if not ids:
        return {}
    result = await db.execute(select(User).where(User.id.in_(ids)))
    return {user.id: user for user in result.scalars().all()}
