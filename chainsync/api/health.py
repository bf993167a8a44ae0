"""Liveness and readiness endpoints. Readiness runs a trivial query against the cache database."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.concurrency import run_in_threadpool

from chainsync.db.healthcheck import missing_tables
from chainsync.db.models import utcnow
from chainsync.db.session import get_session
from chainsync.log import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", summary="Health check")
async def health_check():
    """Basic liveness check."""
    return {"status": "healthy", "timestamp": utcnow().isoformat()}


def _database_checks() -> dict:
    checks = {"database": False, "tables": False}
    try:
        with get_session() as session:
            session.execute(text("SELECT 1"))
        checks["database"] = True
        checks["tables"] = not missing_tables()
    except Exception as e:
        logger.warning(f"Readiness check failed: {e}")
    return checks


@router.get("/ready", summary="Readiness check")
async def readiness_check():
    """Verify the database is reachable and the schema is in place."""
    checks = await run_in_threadpool(_database_checks)
    ready = all(checks.values())
    return JSONResponse(
        status_code=200 if ready else 503,
        content={
            "status": "ready" if ready else "degraded",
            "checks": checks,
            "timestamp": utcnow().isoformat(),
        },
    )
