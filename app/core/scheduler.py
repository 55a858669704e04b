"""
Background retention scheduler.
Runs the retention sweep periodically inside the application lifespan.
"""
import asyncio
import contextlib
import logging
from typing import Optional

from app.config import settings

logger = logging.getLogger(__name__)


class RetentionScheduler:
    """Periodic task that hard deletes expired messages and retries media releases."""

    def __init__(self, interval_seconds: Optional[int] = None):
        self.interval_seconds = interval_seconds or settings.retention_sweep_interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the sweep loop (no-op if already running)."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="retention-sweep")
        logger.info(f"Retention scheduler started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        """Cancel the sweep loop and wait for it to finish."""
        if not self._task:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Retention scheduler stopped")

    async def run_once(self) -> dict:
        """Run a single sweep in a fresh database session."""
        from app.core.database import session_scope
        from app.services.retention_service import RetentionService

        async with session_scope() as db:
            return await RetentionService(db).run_sweep()

    async def _run(self) -> None:
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # One failed sweep never stops the scheduler
                logger.error(f"Retention sweep failed: {e}", exc_info=True)
            await asyncio.sleep(self.interval_seconds)


# Global scheduler instance
retention_scheduler = RetentionScheduler()
