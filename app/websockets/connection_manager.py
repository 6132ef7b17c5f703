"""
실시간 브로커 (WebSocket 연결 관리)

세션 단위로 채팅방을 구독하고, 커밋된 이벤트를 구독자에게 전달합니다.
전달 시점마다 read-messages 권한을 다시 확인하므로 참여자에서 제거된 사용자는
제거 이후의 이벤트를 받지 않습니다. 전송 실패는 기록 후 해당 세션을 끊고
재시도하지 않습니다 (클라이언트는 메시지 목록 API로 따라잡는다).
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

from fastapi import WebSocket

from app.core.logging import log_delivery_failure, log_websocket_event
from app.database.mysql import AsyncSessionLocal
from app.domain.events.base import DomainEvent
from app.services.access_policy import RoomAction, can_access

logger = logging.getLogger(__name__)


@dataclass
class ClientSession:
    session_id: str
    user_id: int
    websocket: WebSocket
    rooms: Set[int] = field(default_factory=set)


class ConnectionManager:
    def __init__(self, session_factory: Optional[Callable] = None):
        # 세션별 연결: {session_id: ClientSession}
        self.sessions: Dict[str, ClientSession] = {}
        # 채팅방별 구독 세션: {room_id: {session_id}}
        self.room_sessions: Dict[int, Set[str]] = {}
        self.session_factory = session_factory or AsyncSessionLocal
        self._pending: Set[asyncio.Task] = set()
        # 채팅방별 마지막 전달 작업 (같은 방의 이벤트 순서 유지)
        self._room_tails: Dict[int, asyncio.Task] = {}

    def configure(self, session_factory: Callable):
        """권한 재확인에 사용할 DB 세션 팩토리 지정"""
        self.session_factory = session_factory

    # =========================================================================
    # Session lifecycle
    # =========================================================================

    async def connect(self, websocket: WebSocket, user_id: int, accept: bool = True) -> str:
        """새로운 WebSocket 연결을 등록하고 세션 ID를 반환합니다."""
        if accept:
            await websocket.accept()

        session_id = uuid.uuid4().hex
        self.sessions[session_id] = ClientSession(
            session_id=session_id,
            user_id=user_id,
            websocket=websocket
        )
        log_websocket_event(logger, "connected", user_id, session_id=session_id)
        return session_id

    async def subscribe(self, session_id: str, room_id: int) -> bool:
        """read-messages 권한이 있으면 채팅방을 구독합니다."""
        session = self.sessions.get(session_id)
        if session is None:
            return False

        async with self.session_factory() as db:
            allowed = await can_access(db, session.user_id, room_id, RoomAction.READ_MESSAGES)
        if not allowed:
            return False

        session.rooms.add(room_id)
        self.room_sessions.setdefault(room_id, set()).add(session_id)
        log_websocket_event(logger, "subscribed", session.user_id, room_id, session_id=session_id)
        return True

    def unsubscribe(self, session_id: str, room_id: int):
        """채팅방 구독 해제"""
        session = self.sessions.get(session_id)
        if session is not None:
            session.rooms.discard(room_id)

        subscribers = self.room_sessions.get(room_id)
        if subscribers is not None:
            subscribers.discard(session_id)
            # 구독자가 없으면 방 자체를 제거
            if not subscribers:
                del self.room_sessions[room_id]

    async def disconnect(self, session_id: str, close: bool = False):
        """세션을 모든 채팅방에서 제거합니다."""
        session = self.sessions.pop(session_id, None)
        if session is None:
            return

        for room_id in list(session.rooms):
            self.unsubscribe(session_id, room_id)

        if close:
            try:
                await session.websocket.close()
            except Exception as e:
                logger.debug(f"Error closing websocket for session {session_id}: {e}")

        log_websocket_event(logger, "disconnected", session.user_id, session_id=session_id)

    # =========================================================================
    # Delivery
    # =========================================================================

    async def send_to_session(self, session_id: str, data: dict) -> bool:
        """특정 세션에 JSON을 전송합니다. 실패하면 세션을 끊습니다."""
        session = self.sessions.get(session_id)
        if session is None:
            return False
        try:
            await session.websocket.send_json(data)
            return True
        except Exception as e:
            log_delivery_failure(session_id, session.user_id, data.get("room_id"), e)
            await self.disconnect(session_id, close=True)
            return False

    def publish(self, room_id: int, event: Any, exclude_user: Optional[int] = None) -> asyncio.Task:
        """
        이벤트 전달을 백그라운드 작업으로 예약하고 즉시 반환합니다.

        같은 채팅방의 이벤트는 예약된 순서대로 전달됩니다.
        """
        frame = event.to_frame() if isinstance(event, DomainEvent) else dict(event)
        frame.setdefault("room_id", room_id)

        previous = self._room_tails.get(room_id)
        task = asyncio.create_task(self._deliver_after(previous, room_id, frame, exclude_user))
        self._room_tails[room_id] = task
        self._pending.add(task)
        task.add_done_callback(lambda t: self._on_delivery_done(room_id, t))
        return task

    def _on_delivery_done(self, room_id: int, task: asyncio.Task):
        self._pending.discard(task)
        if self._room_tails.get(room_id) is task:
            del self._room_tails[room_id]

    async def _deliver_after(
        self,
        previous: Optional[asyncio.Task],
        room_id: int,
        frame: dict,
        exclude_user: Optional[int]
    ):
        if previous is not None:
            await asyncio.wait([previous])
        try:
            await self._fan_out(room_id, frame, exclude_user)
        except Exception as e:
            logger.error(f"Fan-out failed for room {room_id}: {e}")

    async def _fan_out(self, room_id: int, frame: dict, exclude_user: Optional[int]):
        targets = [
            self.sessions[session_id]
            for session_id in list(self.room_sessions.get(room_id, ()))
            if session_id in self.sessions
        ]
        if not targets:
            return

        # 사용자당 한 번만 권한 확인
        allowed_users: Dict[int, bool] = {}
        async with self.session_factory() as db:
            for user_id in {s.user_id for s in targets}:
                allowed_users[user_id] = await can_access(db, user_id, room_id, RoomAction.READ_MESSAGES)

        for session in targets:
            if not allowed_users[session.user_id]:
                self.unsubscribe(session.session_id, room_id)
                log_websocket_event(
                    logger, "access_revoked", session.user_id, room_id,
                    session_id=session.session_id
                )
                continue
            if exclude_user is not None and session.user_id == exclude_user:
                continue
            await self.send_to_session(session.session_id, frame)

    def publish_to_users(self, user_ids, event: Any) -> asyncio.Task:
        """
        채팅방 구독과 무관하게 특정 사용자들의 모든 세션에 전달합니다.

        본인의 멤버십 변경(채팅방 생성/삭제, 참여자에서 제거) 알림용이므로
        채팅방 권한을 다시 확인하지 않습니다.
        """
        frame = event.to_frame() if isinstance(event, DomainEvent) else dict(event)
        task = asyncio.create_task(self._send_to_users(set(user_ids), frame))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _send_to_users(self, user_ids: Set[int], frame: dict):
        targets = [s.session_id for s in list(self.sessions.values()) if s.user_id in user_ids]
        for session_id in targets:
            await self.send_to_session(session_id, frame)

    def drop_room(self, room_id: int):
        """삭제된 채팅방의 모든 구독 해제"""
        for session_id in list(self.room_sessions.get(room_id, ())):
            self.unsubscribe(session_id, room_id)

    async def drain(self):
        """진행 중인 모든 전달 작업이 끝날 때까지 대기"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def reset(self):
        """모든 세션과 대기 작업 정리"""
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()
        self._room_tails.clear()
        self.sessions.clear()
        self.room_sessions.clear()

    # =========================================================================
    # Introspection
    # =========================================================================

    def get_room_users(self, room_id: int) -> List[int]:
        """채팅방을 구독 중인 사용자 목록을 반환합니다."""
        return sorted({
            self.sessions[session_id].user_id
            for session_id in self.room_sessions.get(room_id, ())
            if session_id in self.sessions
        })

    def get_session_rooms(self, session_id: str) -> Set[int]:
        session = self.sessions.get(session_id)
        return set(session.rooms) if session else set()

    def is_user_connected(self, user_id: int) -> bool:
        """사용자가 연결되어 있는지 확인합니다."""
        return any(s.user_id == user_id for s in self.sessions.values())


# 전역 연결 매니저 인스턴스
manager = ConnectionManager()
