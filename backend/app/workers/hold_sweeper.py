"""
Background task that expires elapsed holds.

Started from the application lifespan when HOLD_SWEEP_ENABLED is set.
Every tick opens its own session, expires stale pending holds through
the service (which also notifies guests and refills waitlists), and
logs the outcome. A failed tick is logged and the loop carries on.

Running several API instances is safe: every expiry re-checks the row
under the event lock, so a row another sweeper already expired is
skipped.
"""

import asyncio
import time
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings, get_settings
from app.core.logging import get_logger
from app.core.metrics import sweep_latency, sweep_runs
from app.db.base import utcnow
from app.services.interfaces.notifier import Notifier
from app.services.join_request_service import JoinRequestService

logger = get_logger(__name__)


class HoldExpirationSweeper:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        interval: Optional[float] = None,
        *,
        settings: Optional[Settings] = None,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings or get_settings()
        self.session_factory = session_factory
        self.interval = interval if interval is not None else self.settings.HOLD_SWEEP_INTERVAL_SECONDS
        self.notifier = notifier
        self.clock = clock
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    async def run_once(self) -> int:
        """One sweep. Returns how many holds were expired."""
        start = time.perf_counter()
        try:
            async with self.session_factory() as session:
                service = JoinRequestService(
                    session,
                    settings=self.settings,
                    notifier=self.notifier,
                    clock=self.clock,
                )
                expired = await service.expire_holds()
        finally:
            sweep_latency.observe(time.perf_counter() - start)

        sweep_runs.labels(result="ok").inc()
        if expired:
            logger.info("hold_sweep_completed", expired=expired)
        else:
            logger.debug("hold_sweep_completed", expired=0)
        return expired

    async def run_forever(self) -> None:
        logger.info("hold_sweeper_started", interval_seconds=self.interval)
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                sweep_runs.labels(result="error").inc()
                logger.exception("hold_sweep_failed", error=str(e))

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        logger.info("hold_sweeper_stopped")

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self.run_forever(), name="hold-sweeper")
        return self._task

    async def stop(self) -> None:
        self._stopping.set()
        if self._task is not None:
            await self._task
            self._task = None
