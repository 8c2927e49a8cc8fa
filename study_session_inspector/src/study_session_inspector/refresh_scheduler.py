"""
Admin Refresh Scheduler

Keeps inspected sessions fresh without hammering the database:
- change notifications are coalesced over a fixed window (300 ms by default)
  and refreshed as one batch
- an optional periodic poll refreshes everything on an interval

Runs as background asyncio tasks and never blocks request handling.
"""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Iterable, Optional, Set

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.3

RefreshCallback = Callable[[Set[str]], Awaitable[object]]
PollCallback = Callable[[], Awaitable[object]]


class RefreshScheduler:
    """
    Debounced batch refresh plus optional auto-refresh poll.

    The first notification opens a window; every session id named before it
    closes is refreshed in the same batch.
    """

    def __init__(
        self,
        refresh: RefreshCallback,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        poll: Optional[PollCallback] = None,
        poll_interval_seconds: Optional[float] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            refresh: Coroutine called with the coalesced set of session ids
            debounce_seconds: Coalescing window for notifications
            poll: Coroutine called on every poll tick
            poll_interval_seconds: Seconds between polls (None or 0 disables polling)
        """
        self.refresh = refresh
        self.debounce_seconds = debounce_seconds
        self.poll = poll
        self.poll_interval_seconds = poll_interval_seconds
        self.last_refresh: Optional[datetime] = None
        self.batches_flushed = 0
        self.running = False
        self._pending: Set[str] = set()
        self._flush_task: Optional[asyncio.Task] = None
        self._poll_task: Optional[asyncio.Task] = None

    async def start(self):
        """Start the poll loop (if configured)."""
        if self.running:
            logger.warning("⚠️ [RefreshScheduler] Already running")
            return
        self.running = True
        if self.poll and self.poll_interval_seconds:
            logger.info(f"🔄 [RefreshScheduler] Auto-refresh every {self.poll_interval_seconds}s")
            self._poll_task = asyncio.create_task(self._poll_loop())

    async def stop(self):
        """Stop polling and drop any batch that has not fired yet."""
        self.running = False
        for task in (self._poll_task, self._flush_task):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._poll_task = None
        self._flush_task = None
        self._pending.clear()
        logger.info("🛑 [RefreshScheduler] Stopped")

    def notify(self, session_ids: Iterable[str]):
        """Record changed sessions; must be called from the event loop."""
        ids = {sid for sid in session_ids if sid}
        if not ids:
            return
        self._pending.update(ids)
        if self._flush_task is None or self._flush_task.done():
            self._flush_task = asyncio.create_task(self._flush_after_window())

    async def _flush_after_window(self):
        await asyncio.sleep(self.debounce_seconds)
        # Notifications arriving during the refresh open a new window
        self._flush_task = None
        await self.flush()

    async def flush(self):
        """Refresh every pending session now."""
        if not self._pending:
            return
        batch, self._pending = self._pending, set()
        try:
            await self.refresh(batch)
            self.batches_flushed += 1
            self.last_refresh = datetime.now()
            logger.debug(f"🔄 [RefreshScheduler] Refreshed {len(batch)} sessions")
        except Exception as e:
            logger.error(f"❌ [RefreshScheduler] Batch refresh failed: {e}")

    async def _poll_loop(self):
        while self.running:
            try:
                await asyncio.sleep(self.poll_interval_seconds)
                await self.poll()
                self.last_refresh = datetime.now()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"❌ [RefreshScheduler] Auto-refresh failed: {e}")

    def get_status(self) -> dict:
        return {
            "running": self.running,
            "pending_sessions": len(self._pending),
            "batches_flushed": self.batches_flushed,
            "debounce_ms": int(self.debounce_seconds * 1000),
            "poll_interval_seconds": self.poll_interval_seconds,
            "last_refresh": self.last_refresh.isoformat() if self.last_refresh else None,
        }
