"""SQLite implementation of the local food store."""

import json
import sqlite3
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from caltrack.domain.foods import FoodCategory, StoredFood
from caltrack.domain.sync import ResumeCheckpoint, SyncMeta
from caltrack.services.sync import FoodStore

MIN_QUERY_LENGTH = 2

_META_KEY = "syncInfo"
_CHECKPOINT_KEY = "checkpoint"

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS foods (
    external_id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    search_key TEXT NOT NULL,
    calories INTEGER NOT NULL,
    protein REAL NOT NULL,
    carbs REAL NOT NULL,
    fat REAL NOT NULL,
    serving_label TEXT NOT NULL,
    serving_grams INTEGER NOT NULL,
    category TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_foods_search_key ON foods(search_key);

CREATE TABLE IF NOT EXISTS meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

_UPSERT_SQL = """
INSERT INTO foods (
    external_id, name, search_key, calories, protein, carbs, fat,
    serving_label, serving_grams, category
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(external_id) DO UPDATE SET
    name = excluded.name,
    search_key = excluded.search_key,
    calories = excluded.calories,
    protein = excluded.protein,
    carbs = excluded.carbs,
    fat = excluded.fat,
    serving_label = excluded.serving_label,
    serving_grams = excluded.serving_grams,
    category = excluded.category
"""

_PUT_META_SQL = (
    "INSERT INTO meta (key, value) VALUES (?, ?) "
    "ON CONFLICT(key) DO UPDATE SET value = excluded.value"
)


@dataclass
class SqliteFoodStore(FoodStore):
    """SQLite-backed store keyed by FDC id.

    Runs in WAL mode so search queries keep working while a sync writes.
    """

    connection: sqlite3.Connection
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @classmethod
    def open(cls, path: str | Path) -> "SqliteFoodStore":
        """Open (and create if needed) a store at ``path``."""
        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        connection = sqlite3.connect(str(path), check_same_thread=False)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA journal_mode=WAL")
        connection.executescript(SCHEMA_SQL)
        return cls(connection=connection)

    def upsert_batch(
        self,
        foods: Sequence[StoredFood],
        checkpoint: ResumeCheckpoint | None = None,
    ) -> None:
        """Write foods and the optional checkpoint atomically."""
        rows = [_food_row(food) for food in foods]
        with self._lock, self.connection:
            self.connection.executemany(_UPSERT_SQL, rows)
            if checkpoint is not None:
                self._put(_CHECKPOINT_KEY, checkpoint.as_dict())

    def search_by_name(self, query: str, limit: int) -> list[StoredFood]:
        """Case-insensitive substring search, stopping at ``limit`` matches."""
        needle = query.strip().lower()
        if len(needle) < MIN_QUERY_LENGTH or limit <= 0:
            return []
        with self._lock:
            cursor = self.connection.execute(
                "SELECT * FROM foods WHERE instr(search_key, ?) > 0 LIMIT ?",
                (needle, limit),
            )
            return [_parse_food(row) for row in cursor.fetchall()]

    def get(self, external_id: int) -> StoredFood | None:
        """Return a stored food by FDC id, if present."""
        with self._lock:
            row = self.connection.execute(
                "SELECT * FROM foods WHERE external_id = ?", (external_id,)
            ).fetchone()
        return _parse_food(row) if row is not None else None

    def count(self) -> int:
        with self._lock:
            row = self.connection.execute("SELECT COUNT(*) FROM foods").fetchone()
        return int(row[0])

    def read_meta(self) -> SyncMeta | None:
        data = self._get(_META_KEY)
        if data is None:
            return None
        return SyncMeta(
            version=int(data.get("version", 0)),
            count=int(data.get("count", 0)),
            synced_at=str(data.get("synced_at", "")),
        )

    def write_meta(self, meta: SyncMeta) -> None:
        with self._lock, self.connection:
            self._put(_META_KEY, meta.as_dict())

    def read_checkpoint(self) -> ResumeCheckpoint | None:
        data = self._get(_CHECKPOINT_KEY)
        if data is None:
            return None
        return ResumeCheckpoint(
            source_index=int(data.get("source_index", 0)),
            page_number=max(1, int(data.get("page_number", 1))),
            records_stored=int(data.get("records_stored", 0)),
            grand_total=int(data.get("grand_total", 0)),
        )

    def write_checkpoint(self, checkpoint: ResumeCheckpoint) -> None:
        with self._lock, self.connection:
            self._put(_CHECKPOINT_KEY, checkpoint.as_dict())

    def clear_checkpoint(self) -> None:
        with self._lock, self.connection:
            self.connection.execute(
                "DELETE FROM meta WHERE key = ?", (_CHECKPOINT_KEY,)
            )

    def clear_all(self) -> None:
        """Wipe foods, sync meta and checkpoint."""
        with self._lock, self.connection:
            self.connection.execute("DELETE FROM foods")
            self.connection.execute("DELETE FROM meta")

    def close(self) -> None:
        with self._lock:
            self.connection.close()

    def _get(self, key: str) -> dict[str, object] | None:
        with self._lock:
            row = self.connection.execute(
                "SELECT value FROM meta WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            return None
        value = json.loads(row["value"])
        return value if isinstance(value, dict) else None

    def _put(self, key: str, value: dict[str, object]) -> None:
        self.connection.execute(_PUT_META_SQL, (key, json.dumps(value)))


def _food_row(food: StoredFood) -> tuple[object, ...]:
    return (
        food.external_id,
        food.name,
        food.search_key,
        food.calories,
        food.protein,
        food.carbs,
        food.fat,
        food.serving_label,
        food.serving_grams,
        food.category.value,
    )


def _parse_food(row: sqlite3.Row) -> StoredFood:
    """Parse a foods row into a domain model."""
    try:
        category = FoodCategory(row["category"])
    except ValueError:
        category = FoodCategory.USDA
    return StoredFood(
        external_id=int(row["external_id"]),
        name=str(row["name"]),
        search_key=str(row["search_key"]),
        calories=int(row["calories"]),
        protein=float(row["protein"]),
        carbs=float(row["carbs"]),
        fat=float(row["fat"]),
        serving_label=str(row["serving_label"]),
        serving_grams=int(row["serving_grams"]),
        category=category,
    )
