import logging
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.websockets.connection_manager import manager
from app.websockets.auth import authenticate_websocket
from app.websockets.handlers import message_handler
from app.api.auth import get_current_user
from app.models.users import User
from app.database.mysql import get_async_session
from app.services.access_policy import RoomAction, can_access
from app.core.errors import access_denied_error
from app.core.logging import log_websocket_event
from app.services.room_member_service import get_participant_ids

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["WebSocket"])


@router.websocket("/chat")
async def websocket_endpoint(websocket: WebSocket):
    """
    채팅 WebSocket 연결 엔드포인트

    하나의 연결로 여러 채팅방을 구독합니다.
    토큰은 Authorization 헤더(Bearer) 또는 token 쿼리 파라미터로 전달합니다.

    클라이언트 프레임: subscribe, unsubscribe, message, typing, reaction, ping
    """
    # 1. WebSocket 인증
    user_id = await authenticate_websocket(websocket)
    if user_id is None:
        return

    # 2. 연결 등록
    session_id = await manager.connect(websocket, user_id)
    try:
        # 3. 연결 환영 메시지
        await websocket.send_json({
            "type": "connection_established",
            "user_id": user_id,
            "session_id": session_id
        })

        # 4. 프레임 수신 루프
        while True:
            try:
                data = await websocket.receive_json()
            except ValueError as e:
                # JSON 파싱 오류
                logger.error(f"Invalid JSON from user {user_id}: {e}")
                await message_handler.send_error(session_id, "invalid_json", "Frame must be a JSON object")
                continue

            if not isinstance(data, dict):
                await message_handler.send_error(session_id, "invalid_json", "Frame must be a JSON object")
                continue

            await message_handler.handle_message(session_id, data)

            # 전송 실패로 브로커가 세션을 끊은 경우
            if session_id not in manager.sessions:
                break

    except WebSocketDisconnect:
        # 정상적인 연결 해제
        logger.info(f"WebSocket disconnected for user {user_id} (session {session_id})")

    except Exception as e:
        logger.error(f"Unexpected error in WebSocket connection for user {user_id}: {e}")

    finally:
        # 5. 연결 해제 처리
        rooms = manager.get_session_rooms(session_id)
        await manager.disconnect(session_id)
        log_websocket_event(logger, "disconnected", user_id, rooms=sorted(rooms))


@router.get("/rooms/{room_id}/status")
async def get_room_status(
    room_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session)
):
    """
    채팅방의 실시간 연결 상태를 조회합니다.
    read-messages 권한이 있어야 접근 가능합니다.
    """
    if not await can_access(db, current_user.id, room_id, RoomAction.READ_MESSAGES):
        raise access_denied_error()

    online_users = manager.get_room_users(room_id)
    participant_ids = await get_participant_ids(db, room_id)
    return {
        "room_id": room_id,
        "online_users": online_users,
        "connected_participants": [uid for uid in participant_ids if manager.is_user_connected(uid)],
        "online_count": len(online_users),
        "is_active": len(online_users) > 0
    }
