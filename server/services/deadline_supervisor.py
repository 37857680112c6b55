"""
Background sweep for session deadlines.

Players poll rather than hold a connection open, so nobody is around to
notice that a vote or betting window ran out. The supervisor wakes every
few seconds and asks the session service to resolve whatever expired.
Each sweep is idempotent; running one twice changes nothing.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from constants import SWEEP_INTERVAL_SECONDS

logger = logging.getLogger(__name__)


class DeadlineSupervisor:
    """Periodically runs the session service's deadline sweeps."""

    def __init__(self, service, interval_seconds: float = SWEEP_INTERVAL_SECONDS):
        self.service = service
        self.interval = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, now: Optional[datetime] = None) -> dict[str, int]:
        """
        Run every sweep a single time.

        A failing sweep is logged and does not stop the others.

        Returns:
            Count of sessions each sweep changed.
        """
        counts = {}
        sweeps = (
            ("votes", self.service.resolve_expired_votes),
            ("bets", self.service.resolve_expired_bets),
            ("finished", self.service.remove_finished_sessions),
        )
        for name, sweep in sweeps:
            try:
                counts[name] = await sweep(now)
            except Exception as e:
                logger.error(f"Deadline sweep '{name}' failed: {e}")
                counts[name] = 0
        if any(counts.values()):
            logger.debug(f"Deadline sweep: {counts}")
        return counts

    async def _loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.interval)
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Deadline supervisor error: {e}")

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Deadline supervisor started (every {self.interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Deadline supervisor stopped")
