import logging
from .mysql import init_mysql_db, close_mysql_db, check_mysql_connection, get_async_session
from .redis import init_redis, close_redis, check_redis_connection, get_redis

logger = logging.getLogger(__name__)


async def init_databases():
    """Initialize the relational store and Redis"""
    try:
        await init_mysql_db()
        logger.info("Database initialization completed")

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    try:
        await init_redis()
        logger.info("Redis initialization completed")
    except Exception as e:
        # typing indicators degrade to no-ops until Redis is reachable
        logger.warning(f"Redis unavailable at startup, continuing without it: {e}")


async def close_databases():
    """Close all database connections"""
    try:
        await close_mysql_db()
        await close_redis()
        logger.info("All database connections closed")
    except Exception as e:
        logger.error(f"Error closing database connections: {e}")


async def check_database_health():
    """Check health of all database connections"""
    database_status = await check_mysql_connection()
    redis_status = await check_redis_connection()

    return {
        "database": database_status,
        "redis": redis_status,
        # typing indicators are advisory, Redis does not gate readiness
        "overall": database_status
    }

__all__ = [
    "init_databases",
    "close_databases",
    "check_database_health",
    "get_async_session",
    "get_redis"
]
