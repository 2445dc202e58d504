"""
Hour-boundary ticker.

Background service that polls the wall clock once per interval (a minute by
default) so hour changes are picked up regardless of when the process started.
"""

import asyncio
import logging

from .controller import HeatPumpController

logger = logging.getLogger(__name__)


class ScheduleTicker:
    """Background task calling controller.tick() at a fixed interval."""

    def __init__(self, controller: HeatPumpController, interval_seconds: float = 60.0):
        self.controller = controller
        self.interval_seconds = interval_seconds

        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start the ticker."""
        if self._running:
            logger.warning("Schedule ticker already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"⏱️ Schedule ticker started (interval {self.interval_seconds}s)")

    async def stop(self):
        """Stop the ticker."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("⏱️ Schedule ticker stopped")

    async def _run_loop(self):
        while self._running:
            try:
                if await self.controller.tick():
                    logger.info(f"Hour boundary crossed, now hour {self.controller.state.current_hour}")
            except Exception as e:
                logger.error(f"Error in schedule ticker loop: {e}", exc_info=True)

            await asyncio.sleep(self.interval_seconds)
