"""Periodic cleanup service for the long-running server.

All configuration from Settings (environment variables).
"""
import asyncio
import gc
from typing import Dict, Optional, TYPE_CHECKING

from core.logging import get_logger

if TYPE_CHECKING:
    from core.config import Settings
    from services.message_buffer import MessageBufferService

logger = get_logger(__name__)


class CleanupService:
    """Background sweep that keeps per-chat bookkeeping from piling up.

    Periodically:
    - Drops idle message-buffer lock trackers
    - Re-schedules buffered chats whose debounce timer was lost
    - Forces garbage collection
    """

    def __init__(
        self,
        message_buffer: "MessageBufferService",
        settings: "Settings"
    ):
        self.message_buffer = message_buffer
        self.settings = settings
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the cleanup service background task."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._cleanup_loop())
        logger.info("Cleanup service started", interval=self.settings.cleanup_interval)

    async def stop(self) -> None:
        """Stop the cleanup service gracefully."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Cleanup service stopped")

    async def _cleanup_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.settings.cleanup_interval)
            try:
                await self.run_once()
            except Exception as e:
                logger.error("Cleanup failed", error=str(e))

    async def run_once(self) -> Dict[str, int]:
        """Run one sweep and return what it removed."""
        results = dict(self.message_buffer.sweep_idle())
        results["gc_collected"] = gc.collect()

        if results["stale_locks"] or results["orphaned_buffers"]:
            logger.info("Cleanup completed", **results)
        return results
