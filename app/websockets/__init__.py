"""
WebSocket 실시간 채팅 모듈

이 모듈은 FastAPI WebSocket을 사용하여 실시간 채팅 기능을 제공합니다.

주요 구성 요소:
- connection_manager: 세션/구독 관리와 이벤트 전달 (실시간 브로커)
- auth: WebSocket 인증 처리
- handlers: 클라이언트 프레임 처리 핸들러
"""

from .connection_manager import manager, ConnectionManager

__all__ = [
    "manager",
    "ConnectionManager",
]
