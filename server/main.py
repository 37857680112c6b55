"""FastAPI server for the Bloker card game."""

import logging
from contextlib import asynccontextmanager

import asyncpg
import redis.asyncio as redis
from fastapi import FastAPI

from config import config
from logging_config import setup_logging
from middleware.request_id import RequestIDMiddleware
from routers.games import router as games_router, set_session_service
from routers.health import router as health_router, set_health_dependencies
from services.chat_service import ChatService
from services.deadline_supervisor import DeadlineSupervisor
from services.session_service import SessionService
from services.stats_service import StatsService
from stores.session_store import MemorySessionStore, SessionStore

# Configure logging based on environment
setup_logging(
    level=config.LOG_LEVEL,
    environment=config.ENVIRONMENT,
)
logger = logging.getLogger(__name__)


# =============================================================================
# Services (initialized in lifespan)
# =============================================================================

_redis_client = None
_db_pool = None
_session_service = None
_supervisor = None


async def _init_store():
    """Redis-backed store when REDIS_URL is set, in-memory otherwise."""
    global _redis_client
    if not config.REDIS_URL:
        logger.warning("REDIS_URL not configured - sessions are kept in memory")
        return MemorySessionStore()

    _redis_client = redis.from_url(config.REDIS_URL, decode_responses=False)
    await _redis_client.ping()
    logger.info("Redis client connected")
    return SessionStore(_redis_client)


async def _init_database_services():
    """Ledger and chat services on a shared PostgreSQL pool."""
    global _db_pool
    if not config.POSTGRES_URL:
        logger.warning("POSTGRES_URL not configured - ledger and chat are only logged")
        return None, None

    _db_pool = await asyncpg.create_pool(config.POSTGRES_URL, min_size=1, max_size=10)
    stats = StatsService(_db_pool)
    chat = ChatService(_db_pool)
    await stats.initialize_schema()
    await chat.initialize_schema()
    logger.info("Stats and chat services initialized")
    return stats, chat


async def _shutdown_services():
    """Gracefully shut down all services."""
    global _redis_client, _db_pool

    if _supervisor:
        await _supervisor.stop()

    set_session_service(None)

    if _db_pool:
        await _db_pool.close()
        _db_pool = None
        logger.info("PostgreSQL pool closed")

    if _redis_client:
        await _redis_client.close()
        _redis_client = None
        logger.info("Redis connection closed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for async service initialization."""
    global _session_service, _supervisor

    store = await _init_store()
    try:
        stats, chat = await _init_database_services()
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}")
        raise

    timings = config.timings
    _session_service = SessionService(
        store,
        stats=stats,
        chat=chat,
        vote_seconds=timings.SETTINGS_VOTE_SECONDS,
        betting_seconds=timings.BETTING_SECONDS,
        finished_ttl_seconds=timings.FINISHED_SESSION_TTL_SECONDS,
    )
    set_session_service(_session_service)

    _supervisor = DeadlineSupervisor(
        _session_service,
        interval_seconds=timings.SWEEP_INTERVAL_SECONDS,
    )
    _supervisor.start()

    set_health_dependencies(
        db_pool=_db_pool,
        redis_client=_redis_client,
        session_store=store,
        supervisor=_supervisor,
    )

    logger.info(f"Bloker server started (environment={config.ENVIRONMENT})")

    yield

    logger.info("Shutdown initiated...")
    await _shutdown_services()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Bloker",
    debug=config.DEBUG,
    version="1.0.0",
    lifespan=lifespan,
)

# Request ID middleware (outermost - generates/propagates request IDs)
app.add_middleware(RequestIDMiddleware)

app.include_router(games_router)
app.include_router(health_router)


def run():
    """Run the server using uvicorn."""
    import uvicorn

    logger.info(f"Starting Bloker server on {config.HOST}:{config.PORT}")

    uvicorn.run(
        "main:app",
        host=config.HOST,
        port=config.PORT,
        reload=config.DEBUG,
        log_level=config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
