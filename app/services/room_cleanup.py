"""
격리된 채팅방 정리 서비스

needs_cleanup 플래그가 붙은 채팅방을 주기적으로 삭제합니다.
"""

import asyncio
import logging
from typing import Callable, Optional

from app.core.config import settings
from app.database.mysql import AsyncSessionLocal
from app.services import chat_room_service

logger = logging.getLogger(__name__)


class RoomCleanupMonitor:
    """격리된 채팅방 주기적 삭제"""

    def __init__(self, session_factory: Optional[Callable] = None, interval: Optional[float] = None):
        self.session_factory = session_factory or AsyncSessionLocal
        self.interval = interval if interval is not None else settings.room_cleanup_interval
        self.running = False
        self.task = None

    async def start(self):
        """정리 작업 시작"""
        if self.running:
            logger.warning("Room cleanup monitor is already running")
            return

        self.running = True
        self.task = asyncio.create_task(self._cleanup_loop())
        logger.info(f"Room cleanup monitor started (interval={self.interval}s)")

    async def stop(self):
        """정리 작업 중지"""
        self.running = False
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None
        logger.info("Room cleanup monitor stopped")

    async def run_once(self) -> int:
        """격리된 채팅방을 한 번 정리하고 삭제된 개수를 반환"""
        async with self.session_factory() as db:
            return await chat_room_service.purge_quarantined_rooms(db)

    async def _cleanup_loop(self):
        while self.running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # 다음 주기에 다시 시도
                logger.error(f"Room cleanup failed: {e}")
            await asyncio.sleep(self.interval)


# 싱글톤 인스턴스
_room_cleanup_monitor = None


def get_room_cleanup_monitor() -> RoomCleanupMonitor:
    """RoomCleanupMonitor 싱글톤 인스턴스 반환"""
    global _room_cleanup_monitor
    if _room_cleanup_monitor is None:
        _room_cleanup_monitor = RoomCleanupMonitor()
    return _room_cleanup_monitor
