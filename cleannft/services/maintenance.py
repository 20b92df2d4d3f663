from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from croniter import croniter

from cleannft.config import settings
from cleannft.db import SessionLocal
from cleannft.services.auth_service import cleanup_expired_sessions


logger = logging.getLogger(__name__)


def compute_next_run_at(*, cron_expr: str, base_utc: datetime) -> datetime:
    if base_utc.tzinfo is None:
        base_utc = base_utc.replace(tzinfo=timezone.utc)
    it = croniter(cron_expr, base_utc)
    return it.get_next(datetime)


def _run_session_cleanup() -> int:
    db = SessionLocal()
    try:
        return cleanup_expired_sessions(db)
    finally:
        db.close()


async def run_session_cleanup_loop(stop_event: asyncio.Event | None = None, *, cron_expr: str | None = None):
    stop_event = stop_event or asyncio.Event()
    cron_expr = cron_expr or settings.session_cleanup_cron

    logger.info("session cleanup scheduler started", extra={"cron": cron_expr})

    while not stop_event.is_set():
        now = datetime.now(timezone.utc)
        next_run = compute_next_run_at(cron_expr=cron_expr, base_utc=now)
        sleep_for = max(1.0, (next_run - now).total_seconds())

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=sleep_for)
            break
        except asyncio.TimeoutError:
            pass

        try:
            await asyncio.to_thread(_run_session_cleanup)
        except Exception:
            logger.exception("session cleanup failed")
