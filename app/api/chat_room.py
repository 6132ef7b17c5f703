from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database.mysql import get_async_session
from app.models.users import User
from app.schemas.chat_room import (
    DirectRoomCreate,
    GroupRoomCreate,
    ChatRoomResponse,
    ChatRoomList,
    ConversationStartResponse,
    ReadReceiptResponse,
)
from app.schemas.room_member import ParticipantAdd, ParticipantList
from app.api.auth import get_current_user
from app.services import chat_service

router = APIRouter(prefix="/chat-rooms", tags=["Chat Rooms"])


@router.post("/direct", response_model=ConversationStartResponse, status_code=status.HTTP_201_CREATED)
async def start_direct_conversation(
    room_data: DirectRoomCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session)
) -> ConversationStartResponse:
    """
    1:1 대화 시작

    - **participant_id**: 상대방 사용자 ID

    두 사용자 간에 이미 채팅방이 있으면 같은 채팅방을 반환합니다 (created=false).
    """
    start = await chat_service.start_conversation(db, current_user.id, room_data.participant_id)
    return ConversationStartResponse(
        room=ChatRoomResponse(**start.room),
        state=start.state.value,
        created=start.created,
        history=[state.value for state in start.history]
    )


@router.post("/group", response_model=ChatRoomResponse, status_code=status.HTTP_201_CREATED)
async def create_group_room(
    room_data: GroupRoomCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session)
) -> ChatRoomResponse:
    """
    그룹 채팅방 생성

    - **name**: 채팅방 이름
    - **member_ids**: 초대할 사용자 ID 목록 (생성자는 자동 포함)
    """
    view = await chat_service.create_group(db, current_user.id, room_data.name, room_data.member_ids)
    return ChatRoomResponse(**view)


@router.get("", response_model=ChatRoomList)
async def get_my_chat_rooms(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session)
) -> ChatRoomList:
    """내 채팅방 목록 (최근 메시지 순)"""
    rooms = await chat_service.list_rooms(db, current_user.id)
    return ChatRoomList(rooms=[ChatRoomResponse(**room) for room in rooms], total=len(rooms))


@router.get("/{room_id}", response_model=ChatRoomResponse)
async def get_chat_room(
    room_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session)
) -> ChatRoomResponse:
    """채팅방 정보 조회 (없는 채팅방과 권한 없는 채팅방은 같은 403 응답)"""
    return ChatRoomResponse(**await chat_service.get_room(db, current_user.id, room_id))


@router.delete("/{room_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_chat_room(
    room_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session)
):
    """채팅방과 모든 메시지 삭제 (1:1은 참여자, 그룹은 관리자)"""
    await chat_service.delete_conversation(db, current_user.id, room_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{room_id}/participants", response_model=ParticipantList)
async def get_participants(
    room_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session)
) -> ParticipantList:
    participants = await chat_service.list_participants(db, current_user.id, room_id)
    return ParticipantList(participants=participants, total=len(participants))


@router.post("/{room_id}/participants", response_model=ParticipantList, status_code=status.HTTP_201_CREATED)
async def add_participant(
    room_id: int,
    member: ParticipantAdd,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session)
) -> ParticipantList:
    """그룹 채팅방에 참여자 추가 (관리자만)"""
    participants = await chat_service.add_member(db, current_user.id, room_id, member.user_id)
    return ParticipantList(participants=participants, total=len(participants))


@router.delete("/{room_id}/participants/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_participant(
    room_id: int,
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session)
):
    """그룹 채팅방 참여자 제거 (관리자 또는 본인)"""
    await chat_service.remove_member(db, current_user.id, room_id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{room_id}/read", response_model=ReadReceiptResponse)
async def mark_room_as_read(
    room_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session)
) -> ReadReceiptResponse:
    """채팅방 읽음 처리"""
    return ReadReceiptResponse(**await chat_service.mark_read(db, current_user.id, room_id))
