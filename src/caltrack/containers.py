"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from caltrack.adapters.fdc_client import HttpxFdcClient
from caltrack.adapters.sqlite_food_store import SqliteFoodStore
from caltrack.config import Settings, parse_data_types
from caltrack.services.background_sync import BackgroundSync
from caltrack.services.retry import RetryPolicy
from caltrack.services.sync import FoodStore, SyncOrchestrator


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    food_store: FoodStore
    sync_orchestrator: SyncOrchestrator
    background_sync: BackgroundSync
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    food_store = SqliteFoodStore.open(resolved_settings.store_path)
    fdc_client = HttpxFdcClient.create(
        api_key=resolved_settings.fdc_api_key,
        base_url=resolved_settings.fdc_base_url,
        timeout_seconds=resolved_settings.fdc_timeout_seconds,
    )
    retry_policy = RetryPolicy(
        max_retries=resolved_settings.sync_max_retries,
        initial_backoff_seconds=resolved_settings.sync_initial_backoff_seconds,
        rate_limit_wait_seconds=resolved_settings.sync_rate_limit_wait_seconds,
    )
    sync_orchestrator = SyncOrchestrator(
        source=fdc_client,
        store=food_store,
        data_types=parse_data_types(resolved_settings.fdc_data_types),
        sync_version=resolved_settings.sync_version,
        page_size=resolved_settings.fdc_page_size,
        retry_policy=retry_policy,
    )
    background_sync = BackgroundSync(sync_orchestrator)

    async def close_resources() -> None:
        await fdc_client.close()
        food_store.close()

    return AppContainer(
        settings=resolved_settings,
        food_store=food_store,
        sync_orchestrator=sync_orchestrator,
        background_sync=background_sync,
        close_resources=close_resources,
    )
