import asyncio
import logging
from typing import Optional

from medguard.services.sync_orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


class SweepScheduler:
    """
    Periodic "analyze all" loop. Stopping sets the cancel event, so the
    sweep in flight finishes its running systems and skips the rest.
    """

    def __init__(self, orchestrator: SyncOrchestrator, interval_seconds: int):
        self.orchestrator = orchestrator
        self.interval_seconds = interval_seconds
        self.cancel_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> None:
        result = await self.orchestrator.run_sweep(cancel_event=self.cancel_event)
        logger.info(
            "scheduled sweep finished",
            extra={
                "alerts_generated": len(result.alerts),
                "failed_systems": [s.system_name for s in result.failed_systems]
            }
        )

    async def _loop(self) -> None:
        while not self.cancel_event.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.exception("scheduled sweep failed")
            try:
                await asyncio.wait_for(self.cancel_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    def start(self) -> None:
        if self.running or self.interval_seconds <= 0:
            return
        self.cancel_event.clear()
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        self.cancel_event.set()
        if self._task is not None:
            await self._task
            self._task = None
