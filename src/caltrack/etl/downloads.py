"""Download and extraction helpers for FDC bulk CSV archives."""

import logging
import zipfile
from dataclasses import dataclass
from pathlib import Path

import httpx

_logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class BulkDataset:
    """One FDC bulk CSV archive."""

    name: str
    file: str
    data_type: str


DATASETS = (
    BulkDataset(
        name="SR Legacy",
        file="FoodData_Central_sr_legacy_food_csv_2018-04.zip",
        data_type="sr_legacy_food",
    ),
    BulkDataset(
        name="Foundation",
        file="FoodData_Central_foundation_food_csv_2024-10-31.zip",
        data_type="foundation_food",
    ),
    BulkDataset(
        name="Branded",
        file="FoodData_Central_branded_food_csv_2024-10-31.zip",
        data_type="branded_food",
    ),
)


def download_file(
    http_client: httpx.Client, url: str, out_path: Path, timeout_seconds: float = 600
) -> Path:
    """Stream ``url`` to ``out_path`` without buffering it in memory."""
    out_path.parent.mkdir(parents=True, exist_ok=True)
    _logger.info("Downloading %s", url)
    with http_client.stream(
        "GET", url, timeout=timeout_seconds, follow_redirects=True
    ) as response:
        response.raise_for_status()
        with out_path.open("wb") as handle:
            for chunk in response.iter_bytes(_CHUNK_SIZE):
                handle.write(chunk)
    size_mb = out_path.stat().st_size / 1024 / 1024
    _logger.info("Downloaded %s (%.1f MB)", out_path.name, size_mb)
    return out_path


def extract_zip(zip_path: Path, extract_dir: Path) -> Path:
    """Extract an archive into ``extract_dir``."""
    extract_dir.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(zip_path) as archive:
        archive.extractall(extract_dir)
    return extract_dir


def download_and_extract(
    http_client: httpx.Client, base_url: str, dataset: BulkDataset, temp_dir: Path
) -> Path:
    """Download a dataset archive, extract it and delete the zip."""
    zip_path = download_file(
        http_client, f"{base_url}/{dataset.file}", temp_dir / dataset.file
    )
    extract_dir = extract_zip(zip_path, temp_dir / dataset.data_type)
    zip_path.unlink(missing_ok=True)
    return extract_dir


def find_file(root: Path, name: str) -> Path | None:
    """Find ``name`` anywhere below ``root``."""
    return next((path for path in sorted(root.rglob(name)) if path.is_file()), None)
