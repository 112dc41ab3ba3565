"""Health check router."""

import asyncio
import logging
import time
from pathlib import Path
from typing import Optional

from alembic.config import Config
from alembic.script import ScriptDirectory
from fastapi import APIRouter, Depends, Request
from sqlalchemy import text

from app.core.config import Settings
from app.core.dependencies import get_app_settings, get_database, get_dispatcher
from app.db.session import Database
from app.services.job_dispatcher import JobDispatcher
from app.utils.time import utc_now_iso

logger = logging.getLogger(__name__)

router = APIRouter()


def _load_alembic_head() -> Optional[str]:
    project_root = Path(__file__).resolve().parents[2]
    cfg_path = project_root / "alembic.ini"
    script_location = project_root / "alembic"
    if not cfg_path.exists() or not script_location.exists():
        return None

    config = Config(str(cfg_path))
    config.set_main_option("script_location", str(script_location))
    script = ScriptDirectory.from_config(config)
    return script.get_current_head()


async def _alembic_current(database: Database) -> Optional[str]:
    try:
        async with database.session() as session:
            result = await session.execute(text("SELECT version_num FROM alembic_version"))
            return result.scalar_one_or_none()
    except Exception:  # noqa: BLE001
        return None


async def _bounded(coro, timeout: float, default, label: str):
    """Await one health check, giving up after `timeout` seconds."""
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Health check: %s timed out after %ss", label, timeout)
        return default


@router.get("/health")
async def health_check(
    request: Request,
    database: Database = Depends(get_database),
    dispatcher: JobDispatcher = Depends(get_dispatcher),
    settings: Settings = Depends(get_app_settings),
):
    """Always 200; `status` is degraded when the database or queue is unavailable."""
    timeout = settings.QUEUE_STATS_TIMEOUT_SECONDS
    db_ok = bool(await _bounded(database.ping(), timeout, False, "database ping"))
    queue_stats = await dispatcher.stats() if db_ok else None

    alembic_current = await _bounded(_alembic_current(database), timeout, None, "alembic version") if db_ok else None
    try:
        alembic_head = _load_alembic_head()
    except Exception:  # noqa: BLE001
        alembic_head = None

    healthy = db_ok and queue_stats is not None
    if not healthy:
        logger.warning("Health degraded (database=%s, queue=%s)", db_ok, queue_stats is not None)

    started_at = getattr(request.app.state, "started_at", None)
    uptime = round(time.monotonic() - started_at, 1) if started_at is not None else None

    return {
        "status": "healthy" if healthy else "degraded",
        "timestamp": utc_now_iso(),
        "uptime": uptime,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "queue": queue_stats.model_dump() if queue_stats else {"error": "Queue unavailable"},
        "checks": {
            "database": "ok" if db_ok else "unavailable",
            "queue": "ok" if queue_stats else "unavailable",
            "alembic_head_ok": bool(alembic_current and alembic_head and alembic_current == alembic_head),
            "alembic_current": alembic_current,
            "alembic_head": alembic_head,
        },
    }


@router.get("/queue/stats")
async def queue_stats(dispatcher: JobDispatcher = Depends(get_dispatcher)):
    """Raw job counts, or null when the queue store is unavailable."""
    stats = await dispatcher.stats()
    return stats.model_dump() if stats else None
