import asyncio
import logging

from catalog_workflow.services.tracker import WorkflowTracker

logger = logging.getLogger(__name__)

class StaleWorkflowSweeper:
    """
    Periodically closes workflow rows whose jobs never reported back,
    e.g. because the process restarted and took the queue with it.
    """

    def __init__(self, tracker: WorkflowTracker, interval: float = 60.0, threshold_minutes: int = 5):
        self.tracker = tracker
        self.interval = interval
        self.threshold_minutes = threshold_minutes
        self._running = False
        self._task = None

    async def start(self):
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Stale workflow sweeper started.")

    async def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Stale workflow sweeper stopped.")

    async def sweep(self) -> int:
        return await self.tracker.force_complete_stale_workflows(self.threshold_minutes)

    async def _loop(self):
        while self._running:
            try:
                closed = await self.sweep()
                if closed:
                    logger.warning("Sweeper force-completed %d stale workflow jobs", closed)
            except Exception as e:
                logger.error(f"Error in stale workflow sweep: {e}", exc_info=True)

            await asyncio.sleep(self.interval)
