import asyncio
from typing import Callable

from webshare.config import Config
from webshare.logger_config import setup_logger
from webshare.services.quota import enforce_quota

logger = setup_logger()


class EvictionWorker:
    """Single long-lived consumer of quota enforcement requests.

    At most one request is pending at a time; triggers that arrive while one
    is pending are dropped, so a burst of uploads causes one pass, not many.
    """

    def __init__(self, config: Config, enforcer: Callable[[Config], int] = enforce_quota):
        self.config = config
        self.enforcer = enforcer
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        self.passes = 0

    def trigger(self) -> bool:
        """Request a quota pass. Returns False if one was already pending."""
        try:
            self.queue.put_nowait(None)
        except asyncio.QueueFull:
            logger.debug("Quota pass already pending")
            return False
        return True

    async def run_pending(self):
        """Run one quota pass for the pending request."""
        await self.queue.get()
        try:
            deleted = await asyncio.to_thread(self.enforcer, self.config)
            logger.debug(f"Quota pass removed {deleted} items")
        except Exception as e:
            logger.error(f"Quota pass failed: {e}", exc_info=True)
        finally:
            self.passes += 1
            self.queue.task_done()

    async def run(self):
        logger.info("Eviction worker started")
        while True:
            await self.run_pending()
