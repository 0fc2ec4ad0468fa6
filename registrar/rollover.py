"""Periodic term completion: runs at midnight on 15 May and 15 December."""

import asyncio
from datetime import datetime
from typing import Callable, Optional

from registrar.app_logger import get_logger
from registrar.database import Store
from registrar.grading import process_term_completion

logger = get_logger("rollover")

# (month, day) of each term's end
TERM_ENDS = ((5, 15), (12, 15))


def next_run(now: datetime) -> datetime:
    """First term-end midnight strictly after ``now``."""
    candidates = [
        datetime(year, month, day, tzinfo=now.tzinfo)
        for year in (now.year, now.year + 1)
        for month, day in TERM_ENDS
    ]
    return min(c for c in candidates if c > now)


class RolloverScheduler:
    def __init__(self, store: Store, clock: Callable[[], datetime] = datetime.now):
        self.store = store
        self.clock = clock
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="term-rollover")
            logger.info("Term rollover scheduled for %s", next_run(self.clock()).isoformat())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def run_once(self) -> dict:
        result = await asyncio.to_thread(process_term_completion, self.store)
        logger.info("Scheduled term completion finished: %s processed, %s failed",
                    result["processed"], len(result["failed"]))
        return result

    async def _run(self) -> None:
        while True:
            now = self.clock()
            await asyncio.sleep((next_run(now) - now).total_seconds())
            try:
                await self.run_once()
            except Exception:
                logger.exception("Scheduled term completion failed")
