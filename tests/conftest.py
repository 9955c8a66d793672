"""Shared test fixtures."""

import asyncio
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

import httpx
import pytest

from caltrack.adapters.sqlite_food_store import SqliteFoodStore
from caltrack.api.fdc_models import SearchPage
from caltrack.config import Settings
from caltrack.containers import AppContainer
from caltrack.services.background_sync import BackgroundSync
from caltrack.services.retry import RetryPolicy
from caltrack.services.sync import FoodSource, SyncOrchestrator


def raw_food(  # noqa: PLR0913
    fdc_id: int,
    description: str = "CHICKEN, BREAST, ROASTED",
    calories: float = 165.0,
    protein: float = 31.0,
    fat: float = 3.6,
    carbs: float = 0.0,
    serving_size: float | None = None,
    serving_unit: str | None = None,
    category: str | None = "Poultry Products",
) -> dict[str, object]:
    """Build a raw search result in FDC's wire shape."""
    food: dict[str, object] = {
        "fdcId": fdc_id,
        "description": description,
        "dataType": "SR Legacy",
        "foodNutrients": [
            {"nutrientId": 1008, "nutrientName": "Energy", "value": calories},
            {"nutrientId": 1003, "nutrientName": "Protein", "value": protein},
            {"nutrientId": 1004, "nutrientName": "Total lipid (fat)", "value": fat},
            {"nutrientId": 1005, "nutrientName": "Carbohydrate", "value": carbs},
        ],
    }
    if serving_size is not None:
        food["servingSize"] = serving_size
    if serving_unit is not None:
        food["servingSizeUnit"] = serving_unit
    if category is not None:
        food["foodCategory"] = category
    return food


def http_status_error(status_code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://api.test/foods/search")
    response = httpx.Response(status_code, request=request)
    return httpx.HTTPStatusError(
        f"HTTP {status_code}", request=request, response=response
    )


@dataclass
class FakeFoodSource(FoodSource):
    """Serves scripted pages per partition and records every request."""

    partitions: dict[str, list[list[dict[str, object]]]] = field(default_factory=dict)
    failures: dict[tuple[str, int], list[Exception]] = field(default_factory=dict)
    calls: list[tuple[str, int, int]] = field(default_factory=list)
    omitted_fields: tuple[str, ...] = ()

    @classmethod
    def with_pages(
        cls, pages_per_partition: dict[str, int], foods_per_page: int = 2
    ) -> "FakeFoodSource":
        """Create a source whose partitions hold distinct, valid foods."""
        partitions: dict[str, list[list[dict[str, object]]]] = {}
        next_id = 1
        for data_type, page_count in pages_per_partition.items():
            pages = []
            for _ in range(page_count):
                page = []
                for _ in range(foods_per_page):
                    page.append(raw_food(next_id, description=f"Food {next_id}"))
                    next_id += 1
                pages.append(page)
            partitions[data_type] = pages
        return cls(partitions=partitions)

    @property
    def page_calls(self) -> list[tuple[str, int]]:
        """Requests made for data pages, excluding size probes."""
        return [(data_type, page) for data_type, page, size in self.calls if size > 1]

    @property
    def probe_calls(self) -> list[str]:
        return [data_type for data_type, _page, size in self.calls if size == 1]

    async def fetch_page(
        self, data_type: str, page_number: int, page_size: int
    ) -> SearchPage:
        self.calls.append((data_type, page_number, page_size))
        pending = self.failures.get((data_type, page_number))
        if pending:
            raise pending.pop(0)
        pages = self.partitions.get(data_type, [])
        total_hits = sum(len(page) for page in pages)
        if page_size == 1:
            foods = pages[0][:1] if pages else []
        elif 1 <= page_number <= len(pages):
            foods = pages[page_number - 1]
        else:
            foods = []
        payload: dict[str, object] = {
            "foods": foods,
            "totalHits": total_hits,
            "totalPages": len(pages),
            "currentPage": page_number,
        }
        for name in self.omitted_fields:
            payload.pop(name, None)
        return SearchPage.model_validate(payload)


@dataclass
class RecordingSleeper:
    """Replaces the retry sleep and records requested delays."""

    delays: list[float] = field(default_factory=list)

    async def __call__(
        self, seconds: float, cancel_event: asyncio.Event | None = None
    ) -> None:
        self.delays.append(seconds)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        admin_token="admin-token",
        fdc_api_key="fdc-key",
        store_path=str(tmp_path / "foods.sqlite3"),
        auto_sync_on_startup=False,
    )


@pytest.fixture
def store(tmp_path: Path) -> Iterator[SqliteFoodStore]:
    food_store = SqliteFoodStore.open(tmp_path / "store.sqlite3")
    yield food_store
    food_store.close()


@pytest.fixture
def sleeper() -> RecordingSleeper:
    return RecordingSleeper()


@pytest.fixture
def retry_policy(sleeper: RecordingSleeper) -> RetryPolicy:
    return RetryPolicy(
        max_retries=3,
        initial_backoff_seconds=1.0,
        rate_limit_wait_seconds=65.0,
        sleep=sleeper,
    )


@pytest.fixture
def source() -> FakeFoodSource:
    return FakeFoodSource.with_pages({"SR Legacy": 2, "Foundation": 2})


@pytest.fixture
def orchestrator(
    source: FakeFoodSource, store: SqliteFoodStore, retry_policy: RetryPolicy
) -> SyncOrchestrator:
    return SyncOrchestrator(
        source=source,
        store=store,
        data_types=("SR Legacy", "Foundation"),
        sync_version=3,
        page_size=2,
        retry_policy=retry_policy,
    )


@pytest.fixture
def container(
    settings: Settings,
    store: SqliteFoodStore,
    orchestrator: SyncOrchestrator,
) -> AppContainer:
    async def close_resources() -> None:
        return None

    return AppContainer(
        settings=settings,
        food_store=store,
        sync_orchestrator=orchestrator,
        background_sync=BackgroundSync(orchestrator),
        close_resources=close_resources,
    )
