"""
Chat Core - FastAPI Application

1:1/그룹 채팅방, 메시지, 반응, 타이핑 표시와 WebSocket 실시간 전달을 담당합니다.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from app import api
from app.api import include_routers
from app.core.config import settings
from app.core.logging import setup_logging
from app.database import init_databases, close_databases
from app.infrastructure.kafka.producer import get_event_producer
from app.middleware.error_handler import ErrorHandlerMiddleware, create_http_exception_handler
from app.middleware.logging_middleware import LoggingMiddleware
from app.services.room_cleanup import get_room_cleanup_monitor
from app.websockets.connection_manager import manager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management"""
    # Startup
    setup_logging()
    logger.info(f"{settings.app_name} starting up...")

    await init_databases()

    # Kafka는 선택 사항 (실패해도 서비스는 계속 동작)
    producer = get_event_producer()
    if settings.kafka_enabled:
        try:
            await producer.start()
        except Exception as e:
            logger.error(f"Kafka producer unavailable, events will only reach local sessions: {e}")

    # 격리된 채팅방 주기적 정리
    cleanup_monitor = get_room_cleanup_monitor()
    if settings.room_cleanup_enabled:
        await cleanup_monitor.start()

    yield

    # Shutdown
    logger.info(f"{settings.app_name} shutting down...")

    await cleanup_monitor.stop()

    # 진행 중인 실시간 전달을 마무리
    await manager.drain()
    await producer.stop()
    await close_databases()


app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    lifespan=lifespan
)

# Middleware (나중에 추가한 것이 바깥쪽)
app.add_middleware(ErrorHandlerMiddleware)
app.add_middleware(LoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(StarletteHTTPException, create_http_exception_handler())

# Include routers
include_routers(app, "api", api.__path__)


@app.get("/")
async def root():
    return {
        "service": settings.app_name,
        "version": settings.version,
        "status": "running"
    }
