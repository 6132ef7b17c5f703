from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from app.database.mysql import get_async_session
from app.models.users import User
from app.utils.auth import get_user_id_from_token
from app.core.errors import (
    user_not_found_error,
    invalid_token_error,
    AuthenticationException
)
from app.services.user_service import find_user_by_id

# OAuth2 설정 (토큰 발급은 외부 인증 서비스 담당)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


async def get_current_user(
        token: Optional[str] = Depends(oauth2_scheme),
        db: AsyncSession = Depends(get_async_session)
) -> User:
    """
    현재 인증된 사용자 조회

    토큰의 sub(사용자 ID)를 그대로 신뢰하며, 채팅 코어에서 다시 검증하지 않습니다.
    """
    if not token:
        raise AuthenticationException("Not authenticated")

    user_id = get_user_id_from_token(token)
    if user_id is None:
        raise invalid_token_error()

    user = await find_user_by_id(db, user_id)
    if not user:
        raise user_not_found_error(user_id)
    if not user.is_active:
        raise AuthenticationException("Inactive user")

    return user
