"""
Health check endpoints for production deployment.

Provides:
- /health - Basic liveness check (is the app running?)
- /ready - Readiness check (can the app handle requests?)
- /metrics - Session counts for monitoring
"""

import json
import logging
from collections import Counter
from datetime import datetime, timezone

from fastapi import APIRouter, Response

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

# Service references (set during app initialization)
_db_pool = None
_redis_client = None
_session_store = None
_supervisor = None


def set_health_dependencies(
    db_pool=None,
    redis_client=None,
    session_store=None,
    supervisor=None,
):
    """Set dependencies for health checks."""
    global _db_pool, _redis_client, _session_store, _supervisor
    _db_pool = db_pool
    _redis_client = redis_client
    _session_store = session_store
    _supervisor = supervisor


@router.get("/health")
async def health_check():
    """
    Basic liveness check - is the app running?

    Always returns 200 while the process is alive.
    """
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/ready")
async def readiness_check():
    """
    Readiness check - can the app handle requests?

    Checks PostgreSQL, Redis and the deadline supervisor. Returns 503 if
    any configured dependency is unavailable.
    """
    checks = {}
    overall_healthy = True

    if _db_pool is not None:
        try:
            async with _db_pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            checks["database"] = {"status": "ok"}
        except Exception as e:
            logger.warning(f"Database health check failed: {e}")
            checks["database"] = {"status": "error", "message": str(e)}
            overall_healthy = False
    else:
        checks["database"] = {"status": "not_configured"}

    if _redis_client is not None:
        try:
            await _redis_client.ping()
            checks["redis"] = {"status": "ok"}
        except Exception as e:
            logger.warning(f"Redis health check failed: {e}")
            checks["redis"] = {"status": "error", "message": str(e)}
            overall_healthy = False
    else:
        checks["redis"] = {"status": "not_configured"}

    if _supervisor is not None:
        if _supervisor.running:
            checks["deadline_supervisor"] = {"status": "ok"}
        else:
            checks["deadline_supervisor"] = {"status": "error", "message": "not running"}
            overall_healthy = False

    status_code = 200 if overall_healthy else 503
    return Response(
        content=json.dumps({
            "status": "ok" if overall_healthy else "degraded",
            "checks": checks,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }),
        status_code=status_code,
        media_type="application/json",
    )


@router.get("/metrics")
async def metrics():
    """Session counts by phase."""
    metrics_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if _session_store is not None:
        try:
            phases = Counter()
            for session_id in await _session_store.list_session_ids():
                session = await _session_store.load_session(session_id)
                if session is not None:
                    phases[session.phase.value] += 1
            metrics_data.update({
                "total_sessions": sum(phases.values()),
                "sessions_by_phase": dict(phases),
            })
        except Exception as e:
            logger.warning(f"Failed to collect session metrics: {e}")

    return metrics_data
