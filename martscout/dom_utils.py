"""Helper utilities for safely interacting with storefront DOM content."""

from __future__ import annotations

import asyncio
from typing import Any

from playwright.async_api import Error as PlaywrightError

from martscout.logging_config import get_logger

LOGGER = get_logger(__name__)


async def pause(ms: int) -> None:
    """Sleep for ``ms`` milliseconds."""

    if ms > 0:
        await asyncio.sleep(ms / 1000)


async def safe_wait_for_load(page: Any, state: str = "networkidle", *, timeout: int = 15000) -> bool:
    """Wait for ``state``; a timeout is logged and treated as non-fatal."""

    try:
        await page.wait_for_load_state(state, timeout=timeout)
        return True
    except PlaywrightError as exc:
        LOGGER.debug("wait_for_load_state(%s) gave up: %s", state, exc)
        return False


async def safe_click(locator: Any, *, timeout: int = 5000, force: bool = False, label: str = "") -> bool:
    """Click ``locator``; a missing element is logged and reported as False."""

    try:
        await locator.click(timeout=timeout, force=force)
        return True
    except PlaywrightError as exc:
        LOGGER.warning("Could not click %s: %s", label or locator, exc)
        return False


async def inner_text_safe(locator: Any, timeout: int = 3000) -> str | None:
    """Return the inner text for ``locator`` while ignoring DOM failures."""

    if locator is None:
        return None

    try:
        result = await locator.inner_text(timeout=timeout)
    except PlaywrightError as exc:
        LOGGER.debug("inner_text failed: %s", exc)
        return None

    return result


async def scroll_height(page: Any) -> int | None:
    try:
        value = await page.evaluate("() => document.documentElement.scrollHeight")
    except PlaywrightError as exc:
        LOGGER.debug("scrollHeight unavailable: %s", exc)
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


async def scroll_to_bottom(page: Any) -> None:
    try:
        await page.evaluate("() => window.scrollTo(0, document.documentElement.scrollHeight)")
    except PlaywrightError as exc:
        LOGGER.debug("Scroll failed: %s", exc)
