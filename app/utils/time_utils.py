"""
시간 관련 유틸리티 함수
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

# 같은 방에서 연속된 메시지의 created_at을 엄격하게 증가시키는 최소 간격
MONOTONIC_STEP = timedelta(microseconds=1)


def utcnow() -> datetime:
    """naive UTC 현재 시각 (DB 컬럼은 timezone 정보 없이 저장)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def monotonic_after(previous: Optional[datetime]) -> datetime:
    """
    previous 이후의 서버 시각을 반환합니다.

    시계가 뒤로 가거나 같은 마이크로초에 두 메시지가 커밋되어도
    방 안의 created_at 순서가 커밋 순서와 일치하도록 보정합니다.

    Examples:
        >>> t = datetime(2024, 1, 1)
        >>> monotonic_after(t) > t
        True
    """
    now = utcnow()
    if previous is not None and now <= previous:
        return previous + MONOTONIC_STEP
    return now


def isoformat(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None
