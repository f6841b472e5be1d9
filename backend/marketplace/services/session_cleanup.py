"""Background loop that garbage collects spent refresh tokens."""

from __future__ import annotations

import asyncio
import logging

from marketplace.core.config import settings
from marketplace.core.exceptions import PersistenceError
from marketplace.db.session import SessionLocal
from marketplace.services.session_store import SessionStore

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None


def run_cleanup_once(session_factory=SessionLocal) -> int:
    db = session_factory()
    try:
        removed = SessionStore(db).cleanup_expired()
    except PersistenceError as exc:
        logger.warning("Refresh token cleanup failed: %s", exc.message)
        return 0
    except Exception as exc:  # noqa: BLE001
        logger.warning("Refresh token cleanup failed: %s", exc)
        return 0
    finally:
        db.close()
    logger.info("Refresh token cleanup removed %s rows", removed)
    return removed


async def _loop() -> None:
    startup_delay = max(0, settings.REFRESH_TOKEN_CLEANUP_STARTUP_DELAY_SECONDS)
    interval = max(60, settings.REFRESH_TOKEN_CLEANUP_INTERVAL_SECONDS)
    if startup_delay:
        await asyncio.sleep(startup_delay)
    while True:
        await asyncio.to_thread(run_cleanup_once)
        await asyncio.sleep(interval)


async def start_session_cleanup() -> None:
    global _task
    if _task is not None:
        return
    if not settings.REFRESH_TOKEN_CLEANUP_ENABLED:
        return
    _task = asyncio.create_task(_loop(), name="refresh-token-cleanup")
    logger.info(
        "Refresh token cleanup loop started (every %s seconds)",
        max(60, settings.REFRESH_TOKEN_CLEANUP_INTERVAL_SECONDS),
    )


async def stop_session_cleanup() -> None:
    global _task
    task = _task
    _task = None
    if task is None:
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
