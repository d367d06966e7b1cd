"""Background reaper that removes expired sessions on a fixed interval.

The sweep itself (``SessionStore.reap_expired``) is blocking file I/O, so it
is offloaded to a worker thread; the store lock is held only for the sweep.
"""

import asyncio
import logging
from datetime import UTC, datetime

from kat_planner.config import REAP_INTERVAL_SECONDS
from kat_planner.errors import StorageUnavailableError
from kat_planner.session.session_store import SessionStore

logger = logging.getLogger(__name__)


class SessionReaper:
    """Runs ``store.reap_expired()`` every ``interval_seconds``.

    Example:
        reaper = SessionReaper(store, interval_seconds=300)
        await reaper.start()
        ...
        await reaper.stop()
    """

    def __init__(self, store: SessionStore, interval_seconds: float = REAP_INTERVAL_SECONDS):
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got: {interval_seconds}")
        self.store = store
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None
        self._last_run_at: datetime | None = None
        self._last_removed = 0
        self._total_removed = 0
        self._last_error: str | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the reaper loop. Calling start twice is a no-op."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"SessionReaper started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"SessionReaper task had failed: {e}")
        logger.info("SessionReaper stopped")

    async def sweep(self) -> int:
        """Run one sweep now and return the number of sessions removed."""
        removed = await asyncio.to_thread(self.store.reap_expired)
        self._last_run_at = datetime.now(UTC)
        self._last_removed = removed
        self._total_removed += removed
        self._last_error = None
        return removed

    def get_status(self) -> dict:
        """Return current reaper status."""
        return {
            "running": self.running,
            "interval_seconds": self.interval_seconds,
            "last_run_at": self._last_run_at.isoformat() if self._last_run_at else None,
            "last_removed": self._last_removed,
            "total_removed": self._total_removed,
            "last_error": self._last_error,
        }

    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                removed = await self.sweep()
            except StorageUnavailableError as e:
                logger.error(f"Session cleanup could not be persisted: {e}")
                self._last_error = str(e)
                continue
            except Exception as e:
                logger.exception(f"Reaper sweep failed: {e}")
                self._last_error = str(e)
                continue
            if removed:
                logger.debug(f"Reaper sweep removed {removed} session(s)")
