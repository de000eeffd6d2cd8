"""
Maintenance Service — periodic housekeeping as an asyncio background task.

Currently one job: stamp abandoned_at on unpaid pending orders older than
ABANDONED_ORDER_HOURS, every MAINTENANCE_INTERVAL_SECONDS. Started and stopped
from the FastAPI lifespan.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from config import settings
from database import async_session
from services import order_service

logger = logging.getLogger(__name__)

_task: Optional[asyncio.Task] = None
_is_running: bool = False
_errors_count: int = 0
_last_run_at: Optional[str] = None
_last_abandoned: int = 0


async def run_once(session_factory=async_session, hours: Optional[int] = None) -> int:
    """Run every maintenance job once. Returns the number of orders marked abandoned."""
    global _last_run_at, _last_abandoned
    async with session_factory() as db:
        marked = await order_service.mark_abandoned(db, hours or settings.abandoned_order_hours)
    _last_run_at = datetime.now(timezone.utc).isoformat()
    _last_abandoned = marked
    return marked


async def _maintenance_loop():
    global _errors_count
    logger.info(f"Maintenance loop running every {settings.maintenance_interval_seconds}s")
    while _is_running:
        try:
            await run_once()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            _errors_count += 1
            logger.error(f"Maintenance run failed: {e}", exc_info=True)
        await asyncio.sleep(settings.maintenance_interval_seconds)


async def start():
    """Start the maintenance loop as a background asyncio task."""
    global _task, _is_running
    if _task and not _task.done():
        logger.warning("Maintenance loop already running")
        return

    _is_running = True
    _task = asyncio.create_task(_maintenance_loop())
    logger.info("Maintenance task created")


async def stop():
    """Stop the maintenance loop gracefully."""
    global _task, _is_running
    _is_running = False

    if _task and not _task.done():
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass

    _task = None
    logger.info("Maintenance task stopped")


def get_status() -> dict:
    return {
        "running": _is_running,
        "intervalSeconds": settings.maintenance_interval_seconds,
        "abandonedOrderHours": settings.abandoned_order_hours,
        "lastRunAt": _last_run_at,
        "lastAbandonedCount": _last_abandoned,
        "errorsCount": _errors_count,
    }
