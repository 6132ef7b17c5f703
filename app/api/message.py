import logging
from typing import Optional
from fastapi import APIRouter, Depends, status, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database.mysql import get_async_session
from app.models.users import User
from app.schemas.message import (
    MessageCreate,
    MessageUpdate,
    MessageResponse,
    MessagePageResponse,
    ReactionRequest,
    TypingRequest,
    TypingResponse,
)
from app.api.auth import get_current_user
from app.services import chat_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/messages", tags=["Messages"])


@router.post("/{room_id}", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    room_id: int,
    message_data: MessageCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session)
) -> MessageResponse:
    """
    메시지 전송

    - **room_id**: 채팅방 ID
    - **content**: 메시지 내용 (앞뒤 공백 제거, 최대 길이 제한)

    저장이 커밋된 뒤 구독 중인 참여자들에게 실시간으로 전달됩니다.
    """
    return MessageResponse(**await chat_service.send_message(db, current_user.id, room_id, message_data.content))


@router.get("/{room_id}", response_model=MessagePageResponse)
async def get_messages(
    room_id: int,
    cursor: Optional[str] = Query(None, description="이전 응답의 next_cursor"),
    limit: Optional[int] = Query(None, description="페이지 크기 (1-100)"),
    direction: str = Query("forward", pattern="^(forward|backward)$", description="forward: 오래된 순, backward: 최신 순"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session)
) -> MessagePageResponse:
    """
    채팅방 메시지 목록 (커서 기반)

    next_cursor가 null이면 더 이상 메시지가 없습니다.
    """
    page = await chat_service.list_messages(
        db, current_user.id, room_id, cursor=cursor, limit=limit, direction=direction
    )
    return MessagePageResponse(**page)


@router.post("/{room_id}/typing", response_model=TypingResponse)
async def update_typing(
    room_id: int,
    typing: TypingRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session)
) -> TypingResponse:
    """입력 중 상태 변경"""
    await chat_service.set_typing(db, current_user.id, room_id, typing.is_typing)
    return TypingResponse(
        room_id=room_id,
        typing_users=await chat_service.get_typing_users(db, current_user.id, room_id)
    )


@router.get("/{room_id}/typing", response_model=TypingResponse)
async def get_typing(
    room_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session)
) -> TypingResponse:
    """현재 입력 중인 사용자 목록"""
    return TypingResponse(
        room_id=room_id,
        typing_users=await chat_service.get_typing_users(db, current_user.id, room_id)
    )


@router.put("/item/{message_id}", response_model=MessageResponse)
async def update_message(
    message_id: int,
    message_data: MessageUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session)
) -> MessageResponse:
    """메시지 수정 (보낸 사람만)"""
    return MessageResponse(**await chat_service.edit_message(db, current_user.id, message_id, message_data.content))


@router.delete("/item/{message_id}", response_model=MessageResponse)
async def delete_message(
    message_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session)
) -> MessageResponse:
    """메시지 삭제 (보낸 사람만, 기록은 유지되고 내용만 가려짐)"""
    return MessageResponse(**await chat_service.delete_message(db, current_user.id, message_id))


@router.put("/item/{message_id}/reaction", response_model=MessageResponse)
async def set_reaction(
    message_id: int,
    reaction: ReactionRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session)
) -> MessageResponse:
    """반응 추가 또는 교체 (사용자당 하나)"""
    return MessageResponse(**await chat_service.react(db, current_user.id, message_id, reaction.kind))


@router.delete("/item/{message_id}/reaction", response_model=MessageResponse)
async def delete_reaction(
    message_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session)
) -> MessageResponse:
    """내 반응 제거"""
    return MessageResponse(**await chat_service.remove_reaction(db, current_user.id, message_id))
