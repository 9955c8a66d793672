"""Build the compact static food artifact from FDC bulk CSV archives.

Each partition is downloaded, extracted, consumed and deleted before the next
one starts, and output rows are written as they are produced, so neither disk
nor memory ever holds more than one partition's worth of data.

Usage:
    caltrack-build-foods [--output PATH] [--temp-dir PATH]
"""

import argparse
import contextlib
import csv
import json
import logging
import shutil
import sys
import tempfile
import time
import zipfile
from array import array
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from types import TracebackType
from typing import TextIO

import httpx

from caltrack.app_logging import configure_logging
from caltrack.config import Settings
from caltrack.domain.foods import CATEGORY_CODES, StoredFood
from caltrack.etl.downloads import (
    DATASETS,
    BulkDataset,
    download_and_extract,
    find_file,
)
from caltrack.services.food_mapper import (
    NUTRIENT_CARBS,
    NUTRIENT_ENERGY,
    NUTRIENT_FAT,
    NUTRIENT_IDS,
    NUTRIENT_PROTEIN,
    MacroValues,
    build_food,
)

ARTIFACT_VERSION = 3

_logger = logging.getLogger(__name__)

_SLOTS = (NUTRIENT_ENERGY, NUTRIENT_PROTEIN, NUTRIENT_FAT, NUTRIENT_CARBS)
_SLOT_INDEX = {nutrient_id: slot for slot, nutrient_id in enumerate(_SLOTS)}
_NUTRIENT_ID_TEXT = frozenset(str(nutrient_id) for nutrient_id in NUTRIENT_IDS)


class BulkBuildError(Exception):
    """Raised when a bulk build step cannot complete."""


@dataclass(frozen=True)
class Serving:
    """Serving size and branded category for one branded food.

    ``size`` and ``unit`` are None when the row carries no positive serving.
    """

    size: float | None
    unit: str | None
    category: str | None


class NutrientTable:
    """Four float slots per food, packed into one flat array."""

    def __init__(self) -> None:
        self._index: dict[int, int] = {}
        self._values = array("d")

    def __len__(self) -> int:
        return len(self._index)

    def set(self, fdc_id: int, nutrient_id: int, amount: float) -> None:
        slot = _SLOT_INDEX.get(nutrient_id)
        if slot is None:
            return
        offset = self._index.get(fdc_id)
        if offset is None:
            offset = len(self._values)
            self._index[fdc_id] = offset
            self._values.extend((0.0, 0.0, 0.0, 0.0))
        self._values[offset + slot] = amount

    def get(self, fdc_id: int) -> MacroValues | None:
        offset = self._index.get(fdc_id)
        if offset is None:
            return None
        return MacroValues(*self._values[offset : offset + 4])


@dataclass
class PartitionReport:
    name: str
    foods_read: int = 0
    foods_written: int = 0
    skipped_no_nutrients: int = 0
    skipped_no_calories: int = 0


@dataclass
class BuildReport:
    output_path: Path
    partitions: list[PartitionReport] = field(default_factory=list)

    @property
    def foods_written(self) -> int:
        return sum(partition.foods_written for partition in self.partitions)


def read_csv(path: Path) -> Iterator[dict[str, str]]:
    """Stream rows of a CSV file with a header row."""
    with path.open(newline="", encoding="utf-8-sig") as handle:
        for row in csv.DictReader(handle):
            yield {key.strip(): (value or "") for key, value in row.items() if key}


def filter_nutrient_file(source: Path, destination: Path) -> int:
    """Copy only rows for the tracked nutrients, line by line.

    Columns before ``nutrient_id`` are numeric ids, so splitting on commas up
    to that column is safe without a full CSV parse.
    """
    kept = 0
    with (
        source.open(encoding="utf-8-sig") as reader,
        destination.open("w", encoding="utf-8") as writer,
    ):
        header = reader.readline()
        columns = [column.strip().strip('"') for column in header.split(",")]
        try:
            position = columns.index("nutrient_id")
        except ValueError as exc:
            raise BulkBuildError(f"{source.name} has no nutrient_id column") from exc
        writer.write(header)
        for line in reader:
            fields = line.split(",", position + 1)
            if len(fields) <= position:
                continue
            if fields[position].strip().strip('"') in _NUTRIENT_ID_TEXT:
                writer.write(line)
                kept += 1
    return kept


def load_categories(path: Path | None) -> dict[str, str]:
    """Load ``food_category.csv`` into an id to description lookup."""
    if path is None:
        return {}
    return {row["id"]: row.get("description", "") for row in read_csv(path)}


def load_servings(path: Path | None) -> dict[int, Serving]:
    """Load serving sizes and branded categories from ``branded_food.csv``."""
    servings: dict[int, Serving] = {}
    if path is None:
        return servings
    for row in read_csv(path):
        fdc_id = _parse_int(row.get("fdc_id"))
        if fdc_id is None:
            continue
        size = _parse_float(row.get("serving_size"))
        category = row.get("branded_food_category") or None
        if size is None or size <= 0:
            if category is not None:
                servings[fdc_id] = Serving(size=None, unit=None, category=category)
            continue
        servings[fdc_id] = Serving(
            size=size,
            unit=(row.get("serving_size_unit") or "g").lower(),
            category=category,
        )
    return servings


def load_nutrients(path: Path) -> NutrientTable:
    """Load the pre-filtered nutrient file into a packed table."""
    table = NutrientTable()
    for row in read_csv(path):
        fdc_id = _parse_int(row.get("fdc_id"))
        nutrient_id = _parse_int(row.get("nutrient_id"))
        if fdc_id is None or nutrient_id is None:
            continue
        table.set(fdc_id, nutrient_id, _parse_float(row.get("amount")) or 0.0)
    return table


class FoodArrayWriter:
    """Writes the artifact as a streaming JSON array.

    Output goes to a temporary sibling that replaces the target only when the
    writer exits without an exception.
    """

    def __init__(self, output_path: Path) -> None:
        self.output_path = output_path
        self._temp_path = output_path.with_name(output_path.name + ".partial")
        self._handle: TextIO | None = None
        self._count = 0

    def __enter__(self) -> "FoodArrayWriter":
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        self._handle = self._temp_path.open("w", encoding="utf-8")
        category_map = {
            code: category.value for category, code in CATEGORY_CODES.items()
        }
        header = json.dumps(
            {"v": ARTIFACT_VERSION, "categoryMap": category_map},
            separators=(",", ":"),
        )
        self._handle.write(header[:-1] + ',"foods":[')
        return self

    def write(self, food: StoredFood) -> None:
        if self._handle is None:
            raise RuntimeError("FoodArrayWriter used outside its context")
        if self._count:
            self._handle.write(",")
        self._handle.write(json.dumps(food_tuple(food), separators=(",", ":")))
        self._count += 1

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        if self._handle is None:
            return
        if exc_type is None:
            self._handle.write("]}")
            self._handle.close()
            self._temp_path.replace(self.output_path)
        else:
            self._handle.close()
            self._temp_path.unlink(missing_ok=True)
        self._handle = None


def food_tuple(food: StoredFood) -> list[object]:
    """Fixed-order artifact row for one food."""
    return [
        food.external_id,
        food.name,
        food.calories,
        food.protein,
        food.carbs,
        food.fat,
        food.serving_label,
        food.serving_grams,
        CATEGORY_CODES[food.category],
    ]


def process_partition(
    dataset: BulkDataset, csv_root: Path, writer: FoodArrayWriter
) -> PartitionReport:
    """Join one extracted partition and stream its foods into ``writer``."""
    report = PartitionReport(name=dataset.name)
    food_csv = find_file(csv_root, "food.csv")
    if food_csv is None:
        raise BulkBuildError(f"food.csv not found for {dataset.name}")
    csv_dir = food_csv.parent

    nutrient_csv = find_file(csv_dir, "food_nutrient.csv")
    if nutrient_csv is None:
        raise BulkBuildError(f"food_nutrient.csv not found for {dataset.name}")
    filtered_csv = csv_dir / "food_nutrient.filtered.csv"
    kept = filter_nutrient_file(nutrient_csv, filtered_csv)
    nutrient_csv.unlink()
    _logger.info("  %s nutrient rows kept after filtering", f"{kept:,}")

    categories = load_categories(find_file(csv_dir, "food_category.csv"))
    servings = load_servings(find_file(csv_dir, "branded_food.csv"))
    nutrients = load_nutrients(filtered_csv)
    _logger.info(
        "  %s categories, %s serving sizes, %s foods with nutrients",
        len(categories),
        len(servings),
        len(nutrients),
    )

    for row in read_csv(food_csv):
        fdc_id = _parse_int(row.get("fdc_id"))
        if fdc_id is None:
            continue
        report.foods_read += 1
        per_100 = nutrients.get(fdc_id)
        if per_100 is None:
            report.skipped_no_nutrients += 1
            continue
        serving = servings.get(fdc_id)
        category_label = categories.get(row.get("food_category_id", ""))
        if not category_label and serving is not None:
            category_label = serving.category
        food = build_food(
            external_id=fdc_id,
            description=row.get("description", ""),
            per_100=per_100,
            serving_size=serving.size if serving else None,
            serving_unit=serving.unit if serving else None,
            category_label=category_label,
        )
        if food is None:
            report.skipped_no_calories += 1
            continue
        writer.write(food)
        report.foods_written += 1
    return report


def build_artifact(
    output_path: Path,
    temp_dir: Path,
    base_url: str,
    http_client: httpx.Client,
    datasets: tuple[BulkDataset, ...] = DATASETS,
) -> BuildReport:
    """Run the whole bulk build inside a fresh directory under ``temp_dir``.

    Only the working directory created here is removed afterwards; existing
    content of ``temp_dir`` is left alone.
    """
    report = BuildReport(output_path=output_path)
    created_temp_dir = not temp_dir.exists()
    temp_dir.mkdir(parents=True, exist_ok=True)
    work_dir = Path(tempfile.mkdtemp(prefix="build-", dir=temp_dir))
    try:
        with FoodArrayWriter(output_path) as writer:
            for dataset in datasets:
                _logger.info("=== %s ===", dataset.name)
                try:
                    extract_dir = download_and_extract(
                        http_client, base_url, dataset, work_dir
                    )
                except (httpx.HTTPError, zipfile.BadZipFile, OSError) as exc:
                    raise BulkBuildError(
                        f"Failed to fetch {dataset.name}: {exc}"
                    ) from exc
                partition = process_partition(dataset, extract_dir, writer)
                report.partitions.append(partition)
                _logger.info(
                    "  Added %s foods (%s total)",
                    f"{partition.foods_written:,}",
                    f"{report.foods_written:,}",
                )
                shutil.rmtree(extract_dir, ignore_errors=True)
    finally:
        shutil.rmtree(work_dir, ignore_errors=True)
        if created_temp_dir:
            with contextlib.suppress(OSError):
                temp_dir.rmdir()
    return report


def _parse_int(raw: str | None) -> int | None:
    if not raw:
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


def _parse_float(raw: str | None) -> float | None:
    if not raw:
        return None
    try:
        return float(raw.strip())
    except ValueError:
        return None


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Build the compact USDA food artifact from bulk CSV exports",
    )
    parser.add_argument(
        "--output",
        default=settings.bulk_output_path,
        help=f"Artifact path (default: {settings.bulk_output_path})",
    )
    parser.add_argument(
        "--temp-dir",
        default=settings.bulk_temp_dir,
        help=f"Working directory (default: {settings.bulk_temp_dir})",
    )
    parser.add_argument(
        "--base-url",
        default=settings.bulk_base_url,
        help="Root URL of the bulk dataset archives",
    )
    return parser


def run_build(
    output: str,
    temp_dir: str,
    base_url: str,
    http_client: httpx.Client | None = None,
) -> int:
    """Run the bulk build and translate failures into an exit status."""
    started = time.monotonic()
    owned_client = None
    if http_client is None:
        owned_client = http_client = httpx.Client()
    try:
        report = build_artifact(Path(output), Path(temp_dir), base_url, http_client)
    except (BulkBuildError, httpx.HTTPError, OSError) as exc:
        _logger.error("Bulk build failed: %s", exc)
        return 1
    finally:
        if owned_client is not None:
            owned_client.close()
    elapsed = (time.monotonic() - started) / 60
    size_mb = report.output_path.stat().st_size / 1024 / 1024
    _logger.info(
        "Wrote %s foods to %s (%.1f MB) in %.1f minutes",
        f"{report.foods_written:,}",
        report.output_path,
        size_mb,
        elapsed,
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    settings = Settings()
    args = build_parser(settings).parse_args(argv)
    return run_build(args.output, args.temp_dir, args.base_url)


if __name__ == "__main__":
    sys.exit(main())
