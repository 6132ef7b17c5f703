from typing import Optional
from fastapi import WebSocket, status
from app.utils.auth import extract_bearer_token, get_user_id_from_token
import logging

logger = logging.getLogger(__name__)


async def authenticate_websocket(websocket: WebSocket) -> Optional[int]:
    """
    WebSocket 연결에서 JWT 토큰을 검증하고 사용자 ID를 반환합니다.

    토큰은 Authorization 헤더(Bearer) 또는 token 쿼리 파라미터로 받습니다.
    실패하면 연결을 정책 위반 코드로 닫고 None을 반환합니다.

    Args:
        websocket: WebSocket 연결 객체 (아직 accept 전)

    Returns:
        int: 인증된 사용자 ID, 인증 실패 시 None
    """
    try:
        token = extract_bearer_token(websocket.headers.get("Authorization"))
        if token is None:
            token = websocket.query_params.get("token")

        if not token:
            logger.warning("No token provided for WebSocket connection")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return None

        user_id = get_user_id_from_token(token)
        if user_id is None:
            logger.warning("Invalid token provided for WebSocket connection")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return None

        logger.info(f"WebSocket authentication successful for user: {user_id}")
        return user_id

    except Exception as e:
        logger.error(f"WebSocket authentication error: {e}")
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return None
