"""
구조화된 로깅 시스템

JSON 형식의 구조화된 로그를 제공합니다.
권한 거부, 채팅방 자동 복구, 실시간 전송 실패 같은 진단 이벤트는
`app.diagnostics` 로거로 모아서 기록합니다 (사용자에게는 노출하지 않음).
"""

import json
import logging
import sys
from datetime import datetime
from typing import Optional
from contextvars import ContextVar
from pathlib import Path

from app.core.config import settings

# 컨텍스트 변수로 요청별 추적 정보 저장
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
user_id_var: ContextVar[Optional[int]] = ContextVar('user_id', default=None)

_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'exc_info', 'exc_text', 'stack_info',
    'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'getMessage',
    'message', 'asctime', 'taskName'
}

diagnostics_logger = logging.getLogger("app.diagnostics")


class StructuredFormatter(logging.Formatter):
    """구조화된 JSON 로그 포매터"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        user_id = user_id_var.get()
        if user_id:
            log_data["user_id"] = user_id

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info)
            }

        # 추가 데이터 (extra 필드)
        extra_data = {
            key: value for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and not key.startswith('_')
        }
        if extra_data:
            log_data["extra"] = extra_data

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging():
    """로깅 시스템 초기화"""
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if settings.debug else logging.INFO)

    # 기존 핸들러 제거
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)

    if settings.debug:
        # 개발 환경: 사람이 읽기 쉬운 형식
        console_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
    else:
        # 프로덕션 환경: 구조화된 JSON 형식
        console_handler.setFormatter(StructuredFormatter())

    root_logger.addHandler(console_handler)

    if settings.log_to_file:
        log_dir = Path("logs")
        log_dir.mkdir(exist_ok=True)

        file_handler = logging.FileHandler(log_dir / "app.log", encoding='utf-8')
        file_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(file_handler)

        # 진단 이벤트 전용 파일
        diagnostics_handler = logging.FileHandler(log_dir / "diagnostics.log", encoding='utf-8')
        diagnostics_handler.setFormatter(StructuredFormatter())
        diagnostics_logger.addHandler(diagnostics_handler)

    # 외부 라이브러리 로그 레벨 조정
    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("aiokafka").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """구조화된 로거 인스턴스 반환"""
    return logging.getLogger(name)


def set_request_context(request_id: str, user_id: Optional[int] = None):
    """요청 컨텍스트 설정"""
    request_id_var.set(request_id)
    if user_id:
        user_id_var.set(user_id)


def clear_request_context():
    """요청 컨텍스트 초기화"""
    request_id_var.set(None)
    user_id_var.set(None)


def log_authorization_denial(
    user_id: Optional[int],
    room_id: Optional[int],
    action: str,
    reason: str,
    **extra
):
    """권한 거부 진단 로그"""
    diagnostics_logger.info(
        f"Authorization denied - {action} on room {room_id} for user {user_id}: {reason}",
        extra={
            "event_type": "authorization_denied",
            "user_id": user_id,
            "room_id": room_id,
            "action": action,
            "reason": reason,
            **extra
        }
    )


def log_room_repair(
    room_id: int,
    outcome: str,
    participant_count: int,
    **extra
):
    """불일치 채팅방 복구/격리 진단 로그"""
    diagnostics_logger.warning(
        f"Inconsistent direct room {room_id} ({participant_count} participants) - {outcome}",
        extra={
            "event_type": f"room_{outcome}",
            "room_id": room_id,
            "participant_count": participant_count,
            **extra
        }
    )


def log_websocket_event(
    logger: logging.Logger,
    event: str,
    user_id: int,
    room_id: Optional[int] = None,
    **extra
):
    """WebSocket 이벤트 로그"""
    logger.info(
        f"WebSocket {event} - User {user_id} in Room {room_id}",
        extra={
            "event_type": "websocket",
            "event": event,
            "user_id": user_id,
            "room_id": room_id,
            **extra
        }
    )


def log_delivery_failure(
    session_id: str,
    user_id: int,
    room_id: int,
    error: Exception,
):
    """실시간 전송 실패 진단 로그 (재시도하지 않음)"""
    diagnostics_logger.warning(
        f"Realtime delivery failed - session {session_id} user {user_id} room {room_id}: {error}",
        extra={
            "event_type": "delivery_failed",
            "session_id": session_id,
            "user_id": user_id,
            "room_id": room_id,
            "error": str(error),
        }
    )


def log_api_call(
    logger: logging.Logger,
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    user_id: Optional[int] = None,
    **extra
):
    """API 호출 요약 로그"""
    level = logging.WARNING if status_code >= 500 else logging.INFO
    logger.log(
        level,
        f"{method} {path} - {status_code} ({duration_ms:.2f}ms)",
        extra={
            "event_type": "api_call",
            "method": method,
            "path": path,
            "status_code": status_code,
            "duration_ms": duration_ms,
            "user_id": user_id,
            **extra
        }
    )
