"""Resumable synchronization of the FDC dataset into the local food store."""

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from functools import partial
from typing import Protocol

from caltrack.api.fdc_models import SearchPage
from caltrack.domain.foods import StoredFood
from caltrack.domain.sync import (
    ResumeCheckpoint,
    SyncAlreadyRunningError,
    SyncCancelledError,
    SyncMeta,
    SyncOutcome,
    SyncPhase,
    SyncProgress,
)
from caltrack.services.food_mapper import map_raw_foods
from caltrack.services.retry import RetryPolicy, raise_if_cancelled

_logger = logging.getLogger(__name__)

ProgressCallback = Callable[[SyncProgress], None]


class FoodSource(Protocol):
    """Paginated source of raw FDC foods."""

    async def fetch_page(
        self, data_type: str, page_number: int, page_size: int
    ) -> SearchPage:
        """Return one page of a partition, pages starting at 1."""


class FoodStore(Protocol):
    """Persistence interface for synced foods and sync state."""

    def upsert_batch(
        self,
        foods: Sequence[StoredFood],
        checkpoint: ResumeCheckpoint | None = None,
    ) -> None:
        """Write foods and the optional checkpoint in one transaction."""

    def search_by_name(self, query: str, limit: int) -> list[StoredFood]:
        """Return up to ``limit`` foods whose name contains ``query``."""

    def count(self) -> int:
        """Return the number of stored foods."""

    def read_meta(self) -> SyncMeta | None:
        """Return the completed-sync marker, if present."""

    def write_meta(self, meta: SyncMeta) -> None:
        """Persist the completed-sync marker."""

    def read_checkpoint(self) -> ResumeCheckpoint | None:
        """Return the resume checkpoint, if present."""

    def write_checkpoint(self, checkpoint: ResumeCheckpoint) -> None:
        """Persist the resume checkpoint."""

    def clear_checkpoint(self) -> None:
        """Remove the resume checkpoint."""

    def clear_all(self) -> None:
        """Remove all foods, meta and checkpoint."""


def _ignore_progress(_progress: SyncProgress) -> None:
    return None


@dataclass
class SyncOrchestrator:
    """Drives a page-by-page sync, persisting a checkpoint after every page."""

    source: FoodSource
    store: FoodStore
    data_types: tuple[str, ...]
    sync_version: int
    page_size: int = 200
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    _running: bool = field(default=False, init=False, repr=False)

    @property
    def is_running(self) -> bool:
        return self._running

    def needs_sync(self) -> bool:
        """Return True when a sync is outstanding or was interrupted."""
        meta = self.store.read_meta()
        if meta is None or meta.version < self.sync_version:
            return True
        return self.store.read_checkpoint() is not None

    async def run(
        self,
        on_progress: ProgressCallback | None = None,
        *,
        force: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> SyncOutcome:
        """Sync every partition into the store, resuming from a checkpoint."""
        if self._running:
            raise SyncAlreadyRunningError("A sync is already running")
        self._running = True
        report = on_progress or _ignore_progress
        try:
            return await self._run(report, force=force, cancel_event=cancel_event)
        except SyncCancelledError:
            _logger.info("Food sync cancelled, checkpoint kept for resume")
            raise
        except Exception as exc:
            checkpoint = self.store.read_checkpoint()
            current = checkpoint.records_stored if checkpoint else 0
            total = checkpoint.grand_total if checkpoint else 0
            report(
                SyncProgress(SyncPhase.ERROR, current, total, f"Sync failed: {exc}")
            )
            raise
        finally:
            self._running = False

    async def _run(
        self,
        report: ProgressCallback,
        *,
        force: bool,
        cancel_event: asyncio.Event | None,
    ) -> SyncOutcome:
        meta = self.store.read_meta()
        checkpoint = self.store.read_checkpoint()
        up_to_date = meta is not None and meta.version >= self.sync_version
        if up_to_date and checkpoint is None and not force:
            _logger.debug("Food database already synced at v%s", meta.version)
            return SyncOutcome(
                skipped=True, records_stored=meta.count, pages_fetched=0
            )

        if checkpoint is not None:
            _logger.info(
                "Resuming food sync at %s page %s (%s stored)",
                self._partition_name(checkpoint.source_index),
                checkpoint.page_number,
                checkpoint.records_stored,
            )
        else:
            if meta is None:
                _logger.info("First sync, downloading food database...")
            else:
                _logger.info(
                    "Outdated food database (v%s -> v%s), re-syncing...",
                    meta.version,
                    self.sync_version,
                )
            grand_total = await self._probe_totals(report, cancel_event)
            checkpoint = ResumeCheckpoint(
                source_index=0,
                page_number=1,
                records_stored=0,
                grand_total=grand_total,
            )
            self.store.write_checkpoint(checkpoint)

        stored = checkpoint.records_stored
        pages_fetched = 0
        for index in range(checkpoint.source_index, len(self.data_types)):
            data_type = self.data_types[index]
            page_number = (
                checkpoint.page_number if index == checkpoint.source_index else 1
            )
            _logger.info("Syncing %s from page %s", data_type, page_number)
            while True:
                page = await self.retry_policy.call(
                    partial(
                        self.source.fetch_page, data_type, page_number, self.page_size
                    ),
                    action=f"{data_type} page {page_number}",
                    cancel_event=cancel_event,
                )
                pages_fetched += 1
                batch = map_raw_foods(page.foods)
                stored += len(batch)
                last_page = page.last_page(self.page_size)
                if last_page is None:
                    is_last_page = not page.foods
                else:
                    is_last_page = page_number >= last_page
                next_checkpoint = ResumeCheckpoint(
                    source_index=index + 1 if is_last_page else index,
                    page_number=1 if is_last_page else page_number + 1,
                    records_stored=stored,
                    grand_total=checkpoint.grand_total,
                )
                raise_if_cancelled(cancel_event)
                self.store.upsert_batch(batch, next_checkpoint)
                report(
                    SyncProgress(
                        SyncPhase.STORING,
                        stored,
                        checkpoint.grand_total,
                        f"Downloading {data_type}... ({stored} foods)",
                    )
                )
                if is_last_page:
                    break
                page_number += 1

        self.store.clear_checkpoint()
        count = self.store.count()
        self.store.write_meta(
            SyncMeta(
                version=self.sync_version,
                count=count,
                synced_at=datetime.now(tz=UTC).isoformat(timespec="seconds"),
            )
        )
        _logger.info("Food sync complete: %s foods stored", count)
        report(
            SyncProgress(
                SyncPhase.DONE, stored, stored, f"Done! {stored:,} foods saved."
            )
        )
        return SyncOutcome(
            skipped=False, records_stored=stored, pages_fetched=pages_fetched
        )

    async def _probe_totals(
        self, report: ProgressCallback, cancel_event: asyncio.Event | None
    ) -> int:
        """Sum partition sizes for progress display."""
        grand_total = 0
        for data_type in self.data_types:
            report(
                SyncProgress(
                    SyncPhase.FETCHING,
                    0,
                    grand_total,
                    f"Checking {data_type} database size...",
                )
            )
            probe = await self.retry_policy.call(
                partial(self.source.fetch_page, data_type, 1, 1),
                action=f"{data_type} size probe",
                cancel_event=cancel_event,
            )
            grand_total += probe.total_hits
        return grand_total

    def _partition_name(self, index: int) -> str:
        if 0 <= index < len(self.data_types):
            return self.data_types[index]
        return f"partition {index}"
