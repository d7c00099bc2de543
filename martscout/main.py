"""Command-line interface entry point for the martscout deal scanner."""

from __future__ import annotations

import argparse
import asyncio
import re
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from dotenv import load_dotenv
from playwright.async_api import async_playwright

from martscout.alerts.notifier import DEFAULT_TIMEOUT, TelegramNotifier
from martscout.config import (
    Category,
    Location,
    ScanSettings,
    load_categories,
    load_config,
    load_credentials,
    load_locations,
    load_scan_settings,
)
from martscout.errors import LocationScanError, MissingCredentialsError
from martscout.logging_config import get_logger
from martscout.playwright_env import apply_stealth
from martscout.reporter import DealReporter
from martscout.retailers.instamart import ScanResult, scan_location
from martscout.storage.sent_posts import SentPostStore

LOGGER = get_logger(__name__)


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the application."""

    parser = argparse.ArgumentParser(
        description="Scan Instamart for discounted products and post new deals to Telegram."
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single scan session instead of scanning continuously.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to the YAML configuration (default: martscout/config.yml).",
    )
    parser.add_argument(
        "--locations",
        dest="locations",
        type=str,
        help="Comma-separated location names overriding the enabled locations.",
    )
    parser.add_argument(
        "--categories",
        dest="categories_filter",
        type=str,
        help="Regex/substring filter applied to category names (case-insensitive).",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=1,
        help="Number of locations to scan in parallel (default: 1).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Scan and log deals without sending or recording them.",
    )

    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.concurrency is None or args.concurrency <= 0:
        parser.error("--concurrency must be a positive integer")

    location_arg = args.locations or ""
    args.locations = [name.strip() for name in location_arg.split(",") if name.strip()]

    pattern_text = (args.categories_filter or "").strip()
    if pattern_text:
        try:
            args.categories_pattern = re.compile(pattern_text, re.IGNORECASE)
        except re.error as exc:
            parser.error(f"Invalid --categories pattern: {exc}")
    else:
        args.categories_pattern = None

    args.categories_filter = None
    return args


def _select_locations(config: dict[str, Any], names: list[str]) -> list[Location]:
    if not names:
        return load_locations(config)
    wanted = {name.lower() for name in names}
    selected = [
        location
        for location in load_locations(config, include_disabled=True)
        if location.name.lower() in wanted
    ]
    unknown = wanted - {location.name.lower() for location in selected}
    if unknown:
        LOGGER.warning("Unknown locations ignored: %s", ", ".join(sorted(unknown)))
    return selected


def _filter_categories(
    categories: list[Category], pattern: re.Pattern[str] | None
) -> list[Category]:
    if pattern is None:
        return categories
    return [category for category in categories if pattern.search(category.name)]


def _schedule_seconds(config: dict[str, Any], key: str, default: int) -> int:
    try:
        value = int((config.get("schedule") or {}).get(key, default))
    except (TypeError, ValueError):
        return default
    return value if value >= 0 else default


def _retention(config: dict[str, Any]) -> timedelta | None:
    try:
        hours = float((config.get("storage") or {}).get("retention_hours") or 0)
    except (TypeError, ValueError):
        hours = 0
    return timedelta(hours=hours) if hours > 0 else None


def _log_results(results: list[ScanResult], duration: float) -> None:
    found = sum(result.products_found for result in results)
    sent = sum(result.messages_sent for result in results)
    for result in results:
        if result.errors:
            LOGGER.error(
                "Errors encountered | location=%s | category=%s | %s",
                result.location,
                result.category,
                "; ".join(result.errors),
            )
    LOGGER.info(
        "Scan session complete | categories=%d | found=%d | sent=%d | duration=%.1fs",
        len(results),
        found,
        sent,
        duration,
    )


async def run_scan_session(
    locations: list[Location],
    categories: list[Category],
    *,
    settings: ScanSettings,
    reporter: DealReporter,
    concurrency: int = 1,
) -> list[ScanResult]:
    """Scan every location once; storage and browser failures propagate.

    When one location fails fatally the others are cancelled before the
    Playwright driver shuts down.
    """

    start = time.monotonic()
    LOGGER.info(
        "=== Starting new scan session | locations=%d | categories=%d ===",
        len(locations),
        len(categories),
    )
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async with async_playwright() as playwright:
        apply_stealth(playwright)

        async def _scan(location: Location) -> list[ScanResult]:
            async with semaphore:
                LOGGER.info("Processing location: %s", location.name)
                try:
                    return await scan_location(
                        playwright,
                        location,
                        categories,
                        settings=settings,
                        reporter=reporter,
                    )
                except LocationScanError as exc:
                    LOGGER.error("Error processing location %s: %s", location.name, exc)
                    return [
                        ScanResult(location=location.name, category=category.name, errors=[str(exc)])
                        for category in categories
                    ]

        tasks = [asyncio.create_task(_scan(location)) for location in locations]
        try:
            batches = await asyncio.gather(*tasks)
        except BaseException:
            # no scan may outlive the playwright driver
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    results = [result for batch in batches for result in batch]
    _log_results(results, time.monotonic() - start)
    return results


def _prune_store(store: SentPostStore, retention: timedelta | None) -> None:
    if retention is None:
        return
    removed = store.prune(retention)
    LOGGER.info(
        "Sent-post cleanup completed | removed=%d | retention_hours=%.1f",
        removed,
        retention.total_seconds() / 3600,
    )


async def _async_main(argv: Iterable[str] | None = None) -> None:
    args = parse_args(argv)
    load_dotenv()

    config = load_config(args.config)
    notifier: TelegramNotifier | None = None
    if not args.dry_run:
        credentials = load_credentials()
        timeout = float((config.get("telegram") or {}).get("timeout_seconds") or DEFAULT_TIMEOUT)
        notifier = TelegramNotifier(credentials, timeout=timeout)

    locations = _select_locations(config, args.locations)
    categories = _filter_categories(load_categories(config), args.categories_pattern)
    if not locations:
        raise RuntimeError("No enabled locations configured.")
    if not categories:
        raise RuntimeError("No categories matched the provided filter.")

    settings = load_scan_settings(config)
    store = SentPostStore((config.get("storage") or {}).get("path") or "db.json")
    store.initialize()
    reporter = DealReporter(store, notifier, dry_run=args.dry_run)
    retention = _retention(config)

    async def cycle() -> None:
        await run_scan_session(
            locations,
            categories,
            settings=settings,
            reporter=reporter,
            concurrency=args.concurrency,
        )
        _prune_store(store, retention)

    try:
        if args.once:
            await cycle()
            return

        interval = _schedule_seconds(config, "interval_seconds", 60)
        backoff = _schedule_seconds(config, "error_backoff_seconds", 30)
        scheduler = AsyncIOScheduler()

        async def scheduled_cycle() -> None:
            delay = interval
            try:
                await cycle()
                LOGGER.info("=== Scan complete. Waiting %ss before next scan ===", interval)
            except Exception:
                LOGGER.exception("Scan session failed; restarting in %ss", backoff)
                delay = backoff
            scheduler.add_job(
                scheduled_cycle,
                "date",
                run_date=datetime.now(timezone.utc) + timedelta(seconds=delay),
            )

        scheduler.add_job(scheduled_cycle, "date", run_date=datetime.now(timezone.utc))
        scheduler.start()
        LOGGER.info("Scheduler started | interval=%ss | error_backoff=%ss", interval, backoff)

        try:
            await asyncio.Event().wait()
        except (KeyboardInterrupt, SystemExit):
            LOGGER.info("Shutdown signal received; stopping scheduler")
        finally:
            scheduler.shutdown(wait=False)
    finally:
        store.close()


def main() -> None:
    try:
        asyncio.run(_async_main())
    except MissingCredentialsError as exc:
        LOGGER.error("%s. Set TELEGRAM_BOT_TOKEN and TELEGRAM_CHANNEL_ID in .env", exc)
        raise SystemExit(1) from exc
    except KeyboardInterrupt:  # pragma: no cover - interactive safety
        LOGGER.info("Interrupted by user")


if __name__ == "__main__":
    main()
