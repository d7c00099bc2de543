"""Dedupe-then-deliver step between the scanner and Telegram."""

from __future__ import annotations

import asyncio
from pathlib import Path

from martscout.alerts.notifier import TelegramNotifier, format_caption
from martscout.config import Location
from martscout.logging_config import get_logger
from martscout.parser import ProductRecord
from martscout.storage.sent_posts import SentPostStore

LOGGER = get_logger(__name__)


def _delete_screenshot(path: Path) -> None:
    try:
        path.unlink()
        LOGGER.debug("Deleted screenshot %s", path)
    except FileNotFoundError:
        return
    except OSError as exc:
        LOGGER.error("Failed to delete screenshot %s: %s", path, exc)


class DealReporter:
    """Forward a deal unless the same identity went out recently.

    The check, the delivery and the record for one identity run under a
    per-identity lock, so concurrent location scans cannot double report.
    A lock is dropped as soon as no report for its identity is in flight.
    Store and Telegram calls block, so they run in worker threads.
    """

    def __init__(
        self,
        store: SentPostStore,
        notifier: TelegramNotifier | None,
        *,
        dry_run: bool = False,
    ) -> None:
        if notifier is None and not dry_run:
            raise ValueError("A notifier is required unless dry_run is set")
        self._store = store
        self._notifier = notifier
        self._dry_run = dry_run
        self._identity_locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    async def report(
        self,
        location: Location,
        category: str,
        product: ProductRecord,
        screenshot_path: str | Path,
    ) -> bool:
        """Deliver ``product``; return False when it was suppressed.

        A suppressed attempt refreshes the stored timestamp, so a deal that
        stays listed keeps being suppressed. ``DeliveryError`` and
        ``StorageError`` propagate to the caller.
        """

        post_id = self._store.identity_of(str(screenshot_path))
        lock = self._identity_locks.setdefault(post_id, asyncio.Lock())
        self._lock_users[post_id] = self._lock_users.get(post_id, 0) + 1
        try:
            async with lock:
                return await self._report_locked(
                    post_id, location, category, product, Path(screenshot_path)
                )
        finally:
            self._lock_users[post_id] -= 1
            if not self._lock_users[post_id]:
                del self._lock_users[post_id]
                del self._identity_locks[post_id]

    async def _report_locked(
        self,
        post_id: str,
        location: Location,
        category: str,
        product: ProductRecord,
        path: Path,
    ) -> bool:
        caption = format_caption(location, product)

        if await asyncio.to_thread(self._store.was_reported_recently, post_id):
            LOGGER.info(
                "Skipping duplicate post | location=%s | category=%s | product=%s",
                location.name,
                category,
                product.name,
            )
            if not self._dry_run:
                await self._record(post_id, location, category, product)
            _delete_screenshot(path)
            return False

        notifier = self._notifier
        if self._dry_run or notifier is None:
            LOGGER.info(
                "Dry run, not sending | location=%s | screenshot=%s\n%s",
                location.name,
                path,
                caption,
            )
            return True

        if path.exists():
            await asyncio.to_thread(notifier.send_photo, path, caption)
        else:
            LOGGER.warning("Screenshot %s missing; sending text only", path)
            await asyncio.to_thread(notifier.send_message, caption)

        await self._record(post_id, location, category, product)
        _delete_screenshot(path)
        return True

    async def _record(
        self, post_id: str, location: Location, category: str, product: ProductRecord
    ) -> None:
        await asyncio.to_thread(
            self._store.record_reported, post_id, location.name, category, product.name
        )
