"""
Command-line tool for the local USDA food database.

Usage:
    caltrack sync [--force]
    caltrack search <query> [--limit N]
    caltrack status
    caltrack reset [--yes]
    caltrack build-bulk [--output PATH] [--temp-dir PATH]
"""

import argparse
import asyncio
import sys

from caltrack.app_logging import configure_logging
from caltrack.config import Settings
from caltrack.containers import AppContainer, build_container
from caltrack.domain.sync import SyncCancelledError, SyncError, SyncProgress
from caltrack.etl.bulk_build import run_build


def _print_progress(progress: SyncProgress) -> None:
    if progress.total:
        print(
            f"[{progress.phase.value}] {progress.current}/{progress.total} "
            f"{progress.message}"
        )
    else:
        print(f"[{progress.phase.value}] {progress.message}")


async def _sync(container: AppContainer, force: bool) -> int:
    try:
        outcome = await container.sync_orchestrator.run(_print_progress, force=force)
    except SyncCancelledError:
        print("Sync cancelled; run again to resume.")
        return 130
    except SyncError as exc:
        print(f"Error: {exc}")
        print("Progress is kept; run again to resume.")
        return 1
    finally:
        await container.close_resources()
    if outcome.skipped:
        print(f"Already up to date ({outcome.records_stored} foods).")
    return 0


def cmd_sync(args: argparse.Namespace, settings: Settings) -> int:
    """Download the FDC dataset into the local store."""
    return asyncio.run(_sync(build_container(settings), args.force))


def cmd_search(args: argparse.Namespace, settings: Settings) -> int:
    """Search the local store."""
    container = build_container(settings)
    query = " ".join(args.query)
    foods = container.food_store.search_by_name(query, args.limit)
    asyncio.run(container.close_resources())
    if not foods:
        print("No matching foods.")
        return 0
    for food in foods:
        print(
            f"{food.external_id:>8}  {food.name}  {food.calories} kcal / "
            f"{food.serving_label}  P {food.protein} C {food.carbs} F {food.fat}"
        )
    return 0


def cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    """Show sync state."""
    container = build_container(settings)
    store = container.food_store
    meta = store.read_meta()
    checkpoint = store.read_checkpoint()
    print(f"Store: {settings.store_path}")
    print(f"Foods: {store.count()}")
    if meta is None:
        print("Synced: no")
    else:
        print(f"Synced: v{meta.version} at {meta.synced_at} ({meta.count} foods)")
    print(f"Current version: v{settings.sync_version}")
    if checkpoint is not None:
        print(
            f"Interrupted sync: partition {checkpoint.source_index}, "
            f"page {checkpoint.page_number}, {checkpoint.records_stored} stored"
        )
    asyncio.run(container.close_resources())
    return 0


def cmd_reset(args: argparse.Namespace, settings: Settings) -> int:
    """Clear the local store."""
    if not args.yes:
        confirm = input("Delete all synced foods and sync state? [y/N] ")
        if confirm.lower() != "y":
            print("Cancelled.")
            return 0
    container = build_container(settings)
    container.food_store.clear_all()
    asyncio.run(container.close_resources())
    print("Food store cleared.")
    return 0


def cmd_build_bulk(args: argparse.Namespace, settings: Settings) -> int:
    """Build the static artifact from bulk CSV exports."""
    return run_build(
        args.output or settings.bulk_output_path,
        args.temp_dir or settings.bulk_temp_dir,
        settings.bulk_base_url,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="USDA food database sync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--store-path", help="SQLite store path")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    sync_parser = subparsers.add_parser("sync", help="Sync the FDC database")
    sync_parser.add_argument(
        "--force", action="store_true", help="Sync even if already up to date"
    )

    search_parser = subparsers.add_parser("search", help="Search stored foods")
    search_parser.add_argument("query", nargs="+", help="Name substring")
    search_parser.add_argument(
        "--limit", type=int, default=10, help="Number of results (default: 10)"
    )

    subparsers.add_parser("status", help="Show sync state")

    reset_parser = subparsers.add_parser("reset", help="Clear the food store")
    reset_parser.add_argument("--yes", "-y", action="store_true", help="Skip prompt")

    bulk_parser = subparsers.add_parser(
        "build-bulk", help="Build the static artifact from bulk CSVs"
    )
    bulk_parser.add_argument("--output", help="Artifact path")
    bulk_parser.add_argument("--temp-dir", help="Working directory")

    return parser


_COMMANDS = {
    "sync": cmd_sync,
    "search": cmd_search,
    "status": cmd_status,
    "reset": cmd_reset,
    "build-bulk": cmd_build_bulk,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    configure_logging()
    settings = Settings()
    if args.store_path:
        settings = settings.model_copy(update={"store_path": args.store_path})
    return _COMMANDS[args.command](args, settings)


if __name__ == "__main__":
    sys.exit(main())
