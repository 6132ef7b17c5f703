import logging
from typing import Dict, Any, Optional

from app.core.errors import BaseCustomException
from app.services import chat_service
from app.services.typing_service import TypingService
from app.utils.time_utils import utcnow
from app.websockets.connection_manager import manager

logger = logging.getLogger(__name__)


class InvalidFrameError(ValueError):
    """필수 필드가 없거나 형식이 잘못된 클라이언트 프레임"""


def _require_int(data: Dict[str, Any], key: str) -> int:
    try:
        return int(data[key])
    except (KeyError, TypeError, ValueError):
        raise InvalidFrameError(f"'{key}' must be an integer")


class WebSocketMessageHandler:
    """WebSocket 클라이언트 프레임 처리 핸들러"""

    @staticmethod
    async def handle_message(session_id: str, data: Dict[str, Any]):
        """
        WebSocket으로 받은 프레임을 처리합니다.

        Args:
            session_id: 브로커 세션 ID
            data: 클라이언트에서 전송한 프레임
        """
        session = manager.sessions.get(session_id)
        if session is None:
            logger.error("Frame received from unregistered WebSocket session")
            return

        frame_type = data.get("type")
        handler = _HANDLERS.get(frame_type)
        if handler is None:
            logger.warning(f"Unknown frame type: {frame_type} from user {session.user_id}")
            await WebSocketMessageHandler.send_error(session_id, "unknown_type", f"Unknown frame type: {frame_type}")
            return

        try:
            await handler(session_id, session.user_id, data)
        except InvalidFrameError as e:
            await WebSocketMessageHandler.send_error(session_id, "invalid_frame", str(e))
        except BaseCustomException as e:
            await WebSocketMessageHandler.send_error(
                session_id, e.error, e.message, room_id=data.get("room_id")
            )
        except Exception as e:
            logger.error(f"Error handling {frame_type} frame from user {session.user_id}: {e}")
            await WebSocketMessageHandler.send_error(
                session_id, "processing_error", "Failed to process the request"
            )

    @staticmethod
    async def send_error(session_id: str, error_code: str, message: str, room_id: Optional[int] = None):
        frame = {"type": "error", "error_code": error_code, "message": message}
        if room_id is not None:
            frame["room_id"] = room_id
        await manager.send_to_session(session_id, frame)

    @staticmethod
    async def _handle_subscribe(session_id: str, user_id: int, data: Dict[str, Any]):
        """채팅방 구독 (입력 중인 사용자 스냅샷 포함)"""
        room_id = _require_int(data, "room_id")
        if not await manager.subscribe(session_id, room_id):
            await WebSocketMessageHandler.send_error(session_id, "authorization_error", "Access denied", room_id)
            return

        await manager.send_to_session(session_id, {
            "type": "subscribed",
            "room_id": room_id,
            "typing_users": await TypingService.get_typing_users(room_id),
        })

    @staticmethod
    async def _handle_unsubscribe(session_id: str, user_id: int, data: Dict[str, Any]):
        room_id = _require_int(data, "room_id")
        manager.unsubscribe(session_id, room_id)
        await manager.send_to_session(session_id, {"type": "unsubscribed", "room_id": room_id})

    @staticmethod
    async def _handle_chat_message(session_id: str, user_id: int, data: Dict[str, Any]):
        """채팅 메시지 전송 (저장 후 브로커가 구독자에게 전달)"""
        room_id = _require_int(data, "room_id")
        async with manager.session_factory() as db:
            await chat_service.send_message(db, user_id, room_id, data.get("content"))

    @staticmethod
    async def _handle_typing_indicator(session_id: str, user_id: int, data: Dict[str, Any]):
        """타이핑 상태 표시를 처리합니다."""
        room_id = _require_int(data, "room_id")
        async with manager.session_factory() as db:
            await chat_service.set_typing(db, user_id, room_id, bool(data.get("is_typing", False)))

    @staticmethod
    async def _handle_reaction(session_id: str, user_id: int, data: Dict[str, Any]):
        """반응 추가/교체 (kind가 비어 있으면 제거)"""
        message_id = _require_int(data, "message_id")
        kind = data.get("kind")
        async with manager.session_factory() as db:
            if kind:
                await chat_service.react(db, user_id, message_id, kind)
            else:
                await chat_service.remove_reaction(db, user_id, message_id)

    @staticmethod
    async def _handle_ping(session_id: str, user_id: int, data: Dict[str, Any]):
        """Ping 메시지에 대한 Pong 응답"""
        await manager.send_to_session(session_id, {
            "type": "pong",
            "timestamp": utcnow().isoformat()
        })


_HANDLERS = {
    "subscribe": WebSocketMessageHandler._handle_subscribe,
    "unsubscribe": WebSocketMessageHandler._handle_unsubscribe,
    "message": WebSocketMessageHandler._handle_chat_message,
    "typing": WebSocketMessageHandler._handle_typing_indicator,
    "reaction": WebSocketMessageHandler._handle_reaction,
    "ping": WebSocketMessageHandler._handle_ping,
}

# 메시지 핸들러 인스턴스
message_handler = WebSocketMessageHandler()
