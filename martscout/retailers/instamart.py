"""Swiggy Instamart storefront scanning."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from playwright.async_api import Error as PlaywrightError

import martscout.selectors as selectors
from martscout.config import Category, Location, ScanSettings
from martscout.dom_utils import (
    inner_text_safe,
    pause,
    safe_click,
    safe_wait_for_load,
    scroll_height,
    scroll_to_bottom,
)
from martscout.errors import CategoryNavigationError, DeliveryError, LocationScanError, StorageError
from martscout.logging_config import get_logger
from martscout.parser import ProductRecord, Rejected, flatten_inner_text, leading_int, parse
from martscout.playwright_env import close_browser, launch_browser
from martscout.reporter import DealReporter

LOGGER = get_logger(__name__)

GOTO_TIMEOUT_MS = 60000
CATEGORY_SETTLE_MS = 2000
SORT_SETTLE_MS = 500
SCREENSHOT_TIMEOUT_MS = 10000

_UNSAFE_NAME_CHARS = re.compile(r"[^a-z0-9]", re.IGNORECASE)


@dataclass
class ScanResult:
    location: str
    category: str
    products_found: int = 0
    messages_sent: int = 0
    errors: list[str] = field(default_factory=list)


def sanitize_name(name: str) -> str:
    return _UNSAFE_NAME_CHARS.sub("_", name).lower()


def screenshot_path(
    screenshot_dir: Path, location: Location, product: ProductRecord, discount: int
) -> Path:
    """Return the screenshot file for a product; also the dedupe key."""

    return Path(screenshot_dir) / (
        f"{location.name.lower()}_{sanitize_name(product.name)}_{discount}off.png"
    )


async def handle_try_again(page: Any) -> bool:
    """Click the storefront's "Try Again" error button when it is showing."""

    button = page.get_by_text(selectors.TRY_AGAIN_TEXT).first
    try:
        visible = await button.is_visible()
    except PlaywrightError as exc:
        LOGGER.debug("Try Again visibility check failed: %s", exc)
        return False
    if not visible:
        return False

    LOGGER.info('Found "Try Again" button, clicking')
    clicked = await safe_click(button, timeout=3000, label="Try Again")
    await safe_wait_for_load(page)
    return clicked


async def apply_sorting(page: Any) -> bool:
    """Sort the current listing by discount, high to low."""

    if not await safe_click(page.locator(selectors.SORT_CHIP), timeout=3000, label="Sort By"):
        return False

    option = page.get_by_text(selectors.SORT_OPTION_TEXT)
    try:
        await option.wait_for(state="attached", timeout=5000)
        await page.evaluate(
            """(selector) => {
                const element = document.querySelector(selector);
                if (element) element.scrollIntoView({ behavior: 'smooth', block: 'center' });
            }""",
            selectors.SORT_OPTION_INPUT,
        )
        await pause(SORT_SETTLE_MS)
        await option.wait_for(state="visible", timeout=5000)
        await option.click(timeout=5000)
    except PlaywrightError as exc:
        LOGGER.error("Error applying sorting: %s", exc)
        return False

    await safe_wait_for_load(page)
    return True


async def _list_subcategories(page: Any) -> list[str]:
    try:
        texts = await page.locator(selectors.SUBCATEGORY_ITEMS).all_inner_texts()
    except PlaywrightError as exc:
        LOGGER.debug("Sub-category lookup failed: %s", exc)
        return []
    return [text.strip() for text in texts if text and text.strip()]


async def _capture_and_report(
    card: Any,
    product: ProductRecord,
    discount: int,
    *,
    location: Location,
    category: Category,
    settings: ScanSettings,
    reporter: DealReporter,
) -> bool:
    path = screenshot_path(settings.screenshot_dir, location, product, discount)
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        await card.screenshot(path=str(path), timeout=SCREENSHOT_TIMEOUT_MS)
    except PlaywrightError as exc:
        LOGGER.warning(
            "Screenshot failed | location=%s | category=%s | product=%s | error=%s",
            location.name,
            category.name,
            product.name,
            exc,
        )

    try:
        return await reporter.report(location, category.name, product, path)
    except DeliveryError as exc:
        LOGGER.error(
            "Failed to send product update | location=%s | category=%s | product=%s | error=%s",
            location.name,
            category.name,
            product.name,
            exc,
        )
        return False


async def scan_products_in_view(
    page: Any,
    processed: set[str],
    *,
    location: Location,
    category: Category,
    settings: ScanSettings,
    reporter: DealReporter,
) -> tuple[int, int]:
    """Report qualifying cards currently rendered; return (new, sent)."""

    new_products = 0
    sent = 0
    try:
        labels = await page.locator(selectors.DISCOUNT_LABEL).all()
    except PlaywrightError as exc:
        LOGGER.warning("Discount labels unavailable | category=%s | error=%s", category.name, exc)
        return 0, 0

    for label in labels:
        try:
            label_text = await label.text_content(timeout=3000)
        except PlaywrightError as exc:
            LOGGER.debug("Discount label vanished: %s", exc)
            continue

        discount = leading_int(label_text)
        if discount is None or discount < settings.min_discount_percentage:
            continue

        # ancestor:: returns document order, so the nearest card is last
        card = label.locator(selectors.PRODUCT_CARD_ANCESTOR).last
        raw_text = await inner_text_safe(card)
        if not raw_text:
            LOGGER.warning(
                "Empty product card | location=%s | category=%s | discount=%s",
                location.name,
                category.name,
                discount,
            )
            continue

        result = parse(flatten_inner_text(raw_text))
        if isinstance(result, Rejected):
            LOGGER.info(
                "Card rejected (%s) | location=%s | category=%s",
                result.reason.value,
                location.name,
                category.name,
            )
            continue

        key = sanitize_name(result.name)
        if key in processed:
            continue
        processed.add(key)
        new_products += 1
        LOGGER.info("Found product with %s%% discount: %s", discount, result.name)

        if await _capture_and_report(
            card,
            result,
            discount,
            location=location,
            category=category,
            settings=settings,
            reporter=reporter,
        ):
            sent += 1

    return new_products, sent


async def collect_discounted_products(
    page: Any,
    *,
    location: Location,
    category: Category,
    settings: ScanSettings,
    reporter: DealReporter,
    go_back: bool = True,
) -> tuple[int, int]:
    """Scroll the listing, reporting deals until a stop condition; return (found, sent)."""

    total = 0
    sent = 0
    previous_height: int | None = None
    idle_rounds = 0
    processed: set[str] = set()

    while total < settings.max_products_per_category and idle_rounds < settings.max_scroll_attempts:
        new_products, new_sent = await scan_products_in_view(
            page,
            processed,
            location=location,
            category=category,
            settings=settings,
            reporter=reporter,
        )
        total += new_products
        sent += new_sent
        idle_rounds = idle_rounds + 1 if new_products == 0 else 0

        current_height = await scroll_height(page)
        if current_height == previous_height:
            idle_rounds += 1
        previous_height = current_height

        await scroll_to_bottom(page)
        await pause(settings.scroll_wait_ms)

    LOGGER.info(
        "Category scan done | location=%s | category=%s | found=%d | sent=%d",
        location.name,
        category.name,
        total,
        sent,
    )

    if go_back:
        await safe_click(page.locator(selectors.BACK_BUTTON), timeout=5000, label="back")
        await handle_try_again(page)
        await safe_wait_for_load(page)
    return total, sent


async def navigate_to_category(
    page: Any,
    *,
    location: Location,
    category: Category,
    settings: ScanSettings,
    reporter: DealReporter,
) -> tuple[int, int]:
    """Open ``category`` and sort it; walks sub-categories when enabled.

    Returns (found, sent) for deals reported from sub-category listings.
    """

    button = page.locator(selectors.CATEGORY_BUTTON.format(name=category.name))
    if not await safe_click(button, timeout=5000, label=f"category {category.name}"):
        raise CategoryNavigationError(
            "Category button not found", location=location.name, category=category.name
        )
    await safe_wait_for_load(page)
    await pause(CATEGORY_SETTLE_MS)

    subcategories = await _list_subcategories(page) if settings.scan_subcategories else []
    if not subcategories:
        await apply_sorting(page)
        return 0, 0

    found = 0
    sent = 0
    for subcategory in subcategories:
        LOGGER.info("Processing sub-category: %s", subcategory)
        try:
            item = page.locator(selectors.SUBCATEGORY_ITEM.format(name=subcategory)).first
            if not await safe_click(item, timeout=5000, label=f"sub-category {subcategory}"):
                continue
            await safe_wait_for_load(page)
            await apply_sorting(page)
            sub_found, sub_sent = await collect_discounted_products(
                page,
                location=location,
                category=category,
                settings=settings,
                reporter=reporter,
                go_back=False,
            )
        except PlaywrightError as exc:
            LOGGER.error(
                "Error processing sub-category | location=%s | category=%s | sub=%s | error=%s",
                location.name,
                category.name,
                subcategory,
                exc,
            )
            continue
        found += sub_found
        sent += sub_sent
    return found, sent


async def _open_storefront(page: Any, location: Location) -> None:
    try:
        await page.goto(selectors.STOREFRONT_URL, wait_until="domcontentloaded", timeout=GOTO_TIMEOUT_MS)
    except PlaywrightError as exc:
        raise LocationScanError(f"Storefront did not load: {exc}", location=location.name) from exc

    await safe_wait_for_load(page)
    await handle_try_again(page)

    if not await safe_click(
        page.locator(selectors.SET_GPS_BUTTON), timeout=5000, force=True, label="GPS button"
    ):
        await handle_try_again(page)
    await safe_wait_for_load(page)


async def scan_location(
    playwright: Any,
    location: Location,
    categories: list[Category],
    *,
    settings: ScanSettings,
    reporter: DealReporter,
) -> list[ScanResult]:
    """Scan every category for ``location`` in its own geolocated browser."""

    results: list[ScanResult] = []
    browser, context, page = await launch_browser(playwright, location)
    try:
        await _open_storefront(page, location)

        for category in categories:
            result = ScanResult(location=location.name, category=category.name)
            LOGGER.info("Starting category=%s location=%s", category.name, location.name)
            try:
                sub_found, sub_sent = await navigate_to_category(
                    page,
                    location=location,
                    category=category,
                    settings=settings,
                    reporter=reporter,
                )
                await handle_try_again(page)
                await pause(CATEGORY_SETTLE_MS)
                found, sent = await collect_discounted_products(
                    page,
                    location=location,
                    category=category,
                    settings=settings,
                    reporter=reporter,
                )
                result.products_found = sub_found + found
                result.messages_sent = sub_sent + sent
            except StorageError:
                raise
            except Exception as exc:
                if page.is_closed():
                    raise
                LOGGER.error(
                    "Error processing category | location=%s | category=%s | error=%s",
                    location.name,
                    category.name,
                    exc,
                )
                result.errors.append(str(exc))
                await handle_try_again(page)
            results.append(result)
    finally:
        await close_browser(browser, context)

    return results
