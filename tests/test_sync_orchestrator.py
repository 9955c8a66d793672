"""Tests for the sync orchestrator."""

import asyncio

import pytest

from caltrack.adapters.sqlite_food_store import SqliteFoodStore
from caltrack.api.fdc_models import SearchPage
from caltrack.domain.sync import (
    PermanentRemoteError,
    ResumeCheckpoint,
    SyncAlreadyRunningError,
    SyncCancelledError,
    SyncMeta,
    SyncPhase,
    SyncProgress,
)
from caltrack.services.retry import RetryPolicy
from caltrack.services.sync import SyncOrchestrator
from tests.conftest import FakeFoodSource, http_status_error, raw_food


def _orchestrator(
    source: FakeFoodSource,
    store: SqliteFoodStore,
    retry_policy: RetryPolicy,
    data_types: tuple[str, ...] = ("SR Legacy", "Foundation"),
) -> SyncOrchestrator:
    return SyncOrchestrator(
        source=source,
        store=store,
        data_types=data_types,
        sync_version=3,
        page_size=2,
        retry_policy=retry_policy,
    )


def test_full_sync_stores_all_partitions(
    orchestrator: SyncOrchestrator,
    source: FakeFoodSource,
    store: SqliteFoodStore,
) -> None:
    events: list[SyncProgress] = []

    outcome = asyncio.run(orchestrator.run(events.append))

    assert not outcome.skipped
    assert outcome.records_stored == 8
    assert outcome.pages_fetched == 4
    assert store.count() == 8
    assert source.probe_calls == ["SR Legacy", "Foundation"]
    assert source.page_calls == [
        ("SR Legacy", 1),
        ("SR Legacy", 2),
        ("Foundation", 1),
        ("Foundation", 2),
    ]
    assert store.read_checkpoint() is None
    meta = store.read_meta()
    assert meta is not None
    assert meta.version == 3
    assert meta.count == 8
    assert events[0].phase is SyncPhase.FETCHING
    assert events[0].message == "Checking SR Legacy database size..."
    storing = [event for event in events if event.phase is SyncPhase.STORING]
    assert [event.current for event in storing] == [2, 4, 6, 8]
    assert all(event.total == 8 for event in storing)
    assert storing[0].message == "Downloading SR Legacy... (2 foods)"
    assert events[-1].phase is SyncPhase.DONE
    assert events[-1].message == "Done! 8 foods saved."


def test_zero_calorie_records_are_not_stored(
    store: SqliteFoodStore, retry_policy: RetryPolicy
) -> None:
    source = FakeFoodSource(
        partitions={
            "SR Legacy": [
                [raw_food(1), raw_food(2, calories=0), raw_food(3, calories=0.2)]
            ]
        }
    )
    orchestrator = _orchestrator(source, store, retry_policy, ("SR Legacy",))

    asyncio.run(orchestrator.run())

    assert store.count() == 1
    assert store.get(2) is None
    assert store.get(3) is None


def test_up_to_date_store_is_a_no_op(
    orchestrator: SyncOrchestrator,
    source: FakeFoodSource,
    store: SqliteFoodStore,
) -> None:
    store.write_meta(SyncMeta(version=3, count=8, synced_at="earlier"))

    outcome = asyncio.run(orchestrator.run())

    assert outcome.skipped
    assert outcome.records_stored == 8
    assert source.calls == []


def test_force_resyncs_current_version(
    orchestrator: SyncOrchestrator,
    source: FakeFoodSource,
    store: SqliteFoodStore,
) -> None:
    store.write_meta(SyncMeta(version=3, count=8, synced_at="earlier"))

    outcome = asyncio.run(orchestrator.run(force=True))

    assert not outcome.skipped
    assert len(source.page_calls) == 4


def test_outdated_version_triggers_resync(
    orchestrator: SyncOrchestrator,
    source: FakeFoodSource,
    store: SqliteFoodStore,
) -> None:
    store.write_meta(SyncMeta(version=2, count=5, synced_at="earlier"))
    assert orchestrator.needs_sync()

    asyncio.run(orchestrator.run())

    meta = store.read_meta()
    assert meta is not None
    assert meta.version == 3
    assert len(source.page_calls) == 4
    assert not orchestrator.needs_sync()


def test_resumes_from_checkpoint(
    store: SqliteFoodStore, retry_policy: RetryPolicy
) -> None:
    source = FakeFoodSource.with_pages({"SR Legacy": 3, "Foundation": 6})
    store.write_checkpoint(
        ResumeCheckpoint(
            source_index=1, page_number=5, records_stored=900, grand_total=5000
        )
    )
    orchestrator = _orchestrator(source, store, retry_policy)
    events: list[SyncProgress] = []

    outcome = asyncio.run(orchestrator.run(events.append))

    assert source.probe_calls == []
    assert source.page_calls == [("Foundation", 5), ("Foundation", 6)]
    assert outcome.records_stored == 904
    storing = [event for event in events if event.phase is SyncPhase.STORING]
    assert [event.current for event in storing] == [902, 904]
    assert all(event.total == 5000 for event in storing)
    assert store.read_checkpoint() is None


def test_checkpoint_advances_after_every_page(
    store: SqliteFoodStore, retry_policy: RetryPolicy
) -> None:
    source = FakeFoodSource.with_pages({"SR Legacy": 3, "Foundation": 1})
    orchestrator = _orchestrator(source, store, retry_policy)
    seen: list[ResumeCheckpoint | None] = []

    def on_progress(progress: SyncProgress) -> None:
        if progress.phase is SyncPhase.STORING:
            seen.append(store.read_checkpoint())

    asyncio.run(orchestrator.run(on_progress))

    assert [(cp.source_index, cp.page_number) for cp in seen if cp] == [
        (0, 2),
        (0, 3),
        (1, 1),
        (2, 1),
    ]
    assert [cp.records_stored for cp in seen if cp] == [2, 4, 6, 8]


def test_cancel_mid_partition_then_resume(
    store: SqliteFoodStore, retry_policy: RetryPolicy
) -> None:
    source = FakeFoodSource.with_pages({"Branded": 10})
    orchestrator = _orchestrator(source, store, retry_policy, ("Branded",))
    cancel_event = asyncio.Event()
    stored_pages = 0

    def cancel_after_two_pages(progress: SyncProgress) -> None:
        nonlocal stored_pages
        if progress.phase is SyncPhase.STORING:
            stored_pages += 1
            if stored_pages == 2:
                cancel_event.set()

    with pytest.raises(SyncCancelledError):
        asyncio.run(
            orchestrator.run(cancel_after_two_pages, cancel_event=cancel_event)
        )

    checkpoint = store.read_checkpoint()
    assert checkpoint is not None
    assert checkpoint.page_number == 3
    assert checkpoint.records_stored == 4
    assert store.read_meta() is None
    assert source.page_calls == [("Branded", 1), ("Branded", 2)]

    source.calls.clear()
    asyncio.run(orchestrator.run())

    assert source.page_calls == [("Branded", page) for page in range(3, 11)]
    assert store.count() == 20
    assert store.read_checkpoint() is None


def test_permanent_failure_keeps_checkpoint(
    store: SqliteFoodStore, retry_policy: RetryPolicy
) -> None:
    source = FakeFoodSource.with_pages({"SR Legacy": 3})
    source.failures[("SR Legacy", 2)] = [http_status_error(400)]
    orchestrator = _orchestrator(source, store, retry_policy, ("SR Legacy",))
    events: list[SyncProgress] = []

    with pytest.raises(PermanentRemoteError):
        asyncio.run(orchestrator.run(events.append))

    checkpoint = store.read_checkpoint()
    assert checkpoint is not None
    assert (checkpoint.source_index, checkpoint.page_number) == (0, 2)
    assert events[-1].phase is SyncPhase.ERROR
    assert store.read_meta() is None
    assert not orchestrator.is_running


def test_transient_failure_is_retried_within_sync(
    store: SqliteFoodStore, retry_policy: RetryPolicy
) -> None:
    source = FakeFoodSource.with_pages({"SR Legacy": 2})
    source.failures[("SR Legacy", 2)] = [http_status_error(429)]
    orchestrator = _orchestrator(source, store, retry_policy, ("SR Legacy",))

    asyncio.run(orchestrator.run())

    assert source.page_calls == [
        ("SR Legacy", 1),
        ("SR Legacy", 2),
        ("SR Legacy", 2),
    ]
    assert retry_policy.sleep.delays == [65.0]  # type: ignore[attr-defined]
    assert store.count() == 4


def test_second_concurrent_run_is_rejected(
    store: SqliteFoodStore, retry_policy: RetryPolicy
) -> None:
    release = asyncio.Event()

    class BlockingSource(FakeFoodSource):
        async def fetch_page(
            self, data_type: str, page_number: int, page_size: int
        ) -> SearchPage:
            await release.wait()
            return await super().fetch_page(data_type, page_number, page_size)

    source = BlockingSource.with_pages({"SR Legacy": 1})
    orchestrator = _orchestrator(source, store, retry_policy, ("SR Legacy",))

    async def run() -> None:
        first = asyncio.create_task(orchestrator.run())
        await asyncio.sleep(0)
        assert orchestrator.is_running
        with pytest.raises(SyncAlreadyRunningError):
            await orchestrator.run()
        release.set()
        await first

    asyncio.run(run())

    assert store.count() == 2
    assert not orchestrator.is_running


def test_page_count_derived_from_total_hits(
    store: SqliteFoodStore, retry_policy: RetryPolicy
) -> None:
    source = FakeFoodSource.with_pages({"SR Legacy": 3})
    source.omitted_fields = ("totalPages",)
    orchestrator = _orchestrator(source, store, retry_policy, ("SR Legacy",))

    asyncio.run(orchestrator.run())

    assert source.page_calls == [("SR Legacy", page) for page in (1, 2, 3)]
    assert store.count() == 6


def test_partition_without_totals_ends_on_empty_page(
    store: SqliteFoodStore, retry_policy: RetryPolicy
) -> None:
    source = FakeFoodSource.with_pages({"SR Legacy": 3})
    source.omitted_fields = ("totalPages", "totalHits")
    orchestrator = _orchestrator(source, store, retry_policy, ("SR Legacy",))

    asyncio.run(orchestrator.run())

    assert source.page_calls == [("SR Legacy", page) for page in (1, 2, 3, 4)]
    assert store.count() == 6
    assert store.read_checkpoint() is None
