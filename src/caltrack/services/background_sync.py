"""Background trigger that runs the food sync without blocking the app."""

import asyncio
import logging
from dataclasses import dataclass, field

from caltrack.domain.sync import SyncCancelledError, SyncError, SyncProgress
from caltrack.services.sync import SyncOrchestrator

_logger = logging.getLogger(__name__)


@dataclass
class BackgroundSync:
    """Owns the background sync task, its cancel signal and latest progress."""

    orchestrator: SyncOrchestrator
    latest_progress: SyncProgress | None = None
    _task: asyncio.Task[None] | None = field(default=None, init=False, repr=False)
    _cancel_event: asyncio.Event = field(
        default_factory=asyncio.Event, init=False, repr=False
    )
    _auto_started: bool = field(default=False, init=False, repr=False)

    @property
    def is_running(self) -> bool:
        if self.orchestrator.is_running:
            return True
        return self._task is not None and not self._task.done()

    def start_once(self) -> bool:
        """Start the automatic sync at most once for this instance."""
        if self._auto_started:
            return False
        self._auto_started = True
        if not self.orchestrator.needs_sync():
            _logger.debug("Food database up to date, auto sync skipped")
            return False
        return self.start()

    def start(self, force: bool = False) -> bool:
        """Schedule a sync run; returns False if one is already running."""
        if self.is_running:
            _logger.info("Food sync already running, not starting another")
            return False
        self._cancel_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(force))
        return True

    def cancel(self) -> bool:
        """Signal the running sync to stop at its next checkpoint boundary."""
        if not self.is_running:
            return False
        self._cancel_event.set()
        return True

    async def wait(self) -> None:
        """Wait for the current run, if any, to finish."""
        if self._task is not None:
            await asyncio.shield(self._task)

    async def shutdown(self) -> None:
        """Cancel and await the current run."""
        if self.cancel():
            await self.wait()

    def status(self) -> dict[str, object]:
        """Return a snapshot of sync state for status endpoints."""
        store = self.orchestrator.store
        meta = store.read_meta()
        checkpoint = store.read_checkpoint()
        return {
            "running": self.is_running,
            "synced": meta is not None,
            "up_to_date": not self.orchestrator.needs_sync(),
            "meta": meta.as_dict() if meta else None,
            "checkpoint": checkpoint.as_dict() if checkpoint else None,
            "count": store.count(),
            "progress": self.latest_progress.as_dict()
            if self.latest_progress
            else None,
        }

    def _record_progress(self, progress: SyncProgress) -> None:
        self.latest_progress = progress

    async def _run(self, force: bool) -> None:
        try:
            await self.orchestrator.run(
                self._record_progress,
                force=force,
                cancel_event=self._cancel_event,
            )
        except SyncCancelledError:
            _logger.info("Background food sync cancelled")
        except SyncError as exc:
            _logger.warning("Background food sync failed: %s", exc)
        except Exception:
            _logger.exception("Background food sync crashed")
