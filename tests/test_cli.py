"""Tests for the command-line tool."""

from pathlib import Path

import pytest

from caltrack.adapters.sqlite_food_store import SqliteFoodStore
from caltrack.cli import main
from caltrack.domain.sync import ResumeCheckpoint
from caltrack.services.food_mapper import MacroValues, build_food


@pytest.fixture
def store_path(tmp_path: Path) -> str:
    path = tmp_path / "cli.sqlite3"
    store = SqliteFoodStore.open(path)
    food = build_food(1, "CHICKEN, BREAST, ROASTED", MacroValues(165, 31, 3.6, 0))
    assert food is not None
    store.upsert_batch(
        [food],
        ResumeCheckpoint(
            source_index=0, page_number=2, records_stored=1, grand_total=10
        ),
    )
    store.close()
    return str(path)


def test_main_without_command_prints_help(capsys) -> None:
    assert main([]) == 1
    assert "usage" in capsys.readouterr().out


def test_status_reports_interrupted_sync(store_path: str, capsys) -> None:
    assert main(["--store-path", store_path, "status"]) == 0

    out = capsys.readouterr().out
    assert "Foods: 1" in out
    assert "Synced: no" in out
    assert "Interrupted sync: partition 0, page 2, 1 stored" in out


def test_search_prints_matches(store_path: str, capsys) -> None:
    assert main(["--store-path", store_path, "search", "chicken"]) == 0

    out = capsys.readouterr().out
    assert "Chicken Breast Roasted" in out
    assert "165 kcal / 100g" in out


def test_reset_with_confirmation_flag(store_path: str, capsys) -> None:
    assert main(["--store-path", store_path, "reset", "--yes"]) == 0

    store = SqliteFoodStore.open(Path(store_path))
    assert store.count() == 0
    assert store.read_checkpoint() is None
    store.close()
