from typing import AsyncGenerator
import logging
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy import text, DateTime
from sqlalchemy.dialects.mysql import DATETIME as MYSQL_DATETIME
from app.core.config import settings

# Base class for SQLAlchemy models
Base = declarative_base()

# 메시지 순서 비교용 마이크로초 정밀도 (MySQL DATETIME 기본값은 초 단위)
PreciseDateTime = DateTime().with_variant(MYSQL_DATETIME(fsp=6), "mysql")

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> dict:
    """Connection pool options (SQLite pools do not accept sizing arguments)"""
    options = {"echo": settings.debug}
    if not url.startswith("sqlite"):
        options.update(
            pool_size=10,
            max_overflow=20,
            pool_recycle=3600,  # Recycle connections after 1 hour
            pool_pre_ping=True,  # Validate connections before use
        )
    return options


# Database engine with connection pooling
engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))

# Async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception as e:
            await session.rollback()
            logger.error(f"Database session error: {e}")
            raise


async def init_mysql_db():
    """Initialize database schema"""
    try:
        # Import models so that they are registered on Base.metadata
        import app.models  # noqa: F401

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


async def check_mysql_connection() -> bool:
    """Check database connection"""
    try:
        async with engine.connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            return result.fetchone() is not None
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False


async def close_mysql_db():
    """Close database connections"""
    await engine.dispose()
    logger.info("Database connections closed")
