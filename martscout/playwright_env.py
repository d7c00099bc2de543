"""Centralised helpers for Playwright launch + geolocated store sessions."""

from __future__ import annotations

import os
import shlex
from functools import lru_cache
from typing import Any
from urllib.parse import urlparse

from playwright.async_api import Browser, BrowserContext, Page, Playwright
from playwright_stealth import Stealth

from martscout.config import Location
from martscout.logging_config import get_logger

LOGGER = get_logger(__name__)

_FALSE_VALUES = {"0", "false", "no", "off"}
DEFAULT_DEVICE = "iPad Mini"
DEFAULT_ACTION_TIMEOUT_MS = 15000
DEFAULT_NAVIGATION_TIMEOUT_MS = 60000


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in _FALSE_VALUES


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


@lru_cache(maxsize=1)
def headless_enabled() -> bool:
    """Return True if Playwright should run in headless mode."""

    return _as_bool(os.getenv("MARTSCOUT_HEADLESS"), True)


def stealth_enabled() -> bool:
    """Return True when stealth evasion scripts should be applied."""

    return _as_bool(os.getenv("MARTSCOUT_STEALTH"), True)


@lru_cache(maxsize=1)
def _stealth_instance() -> Stealth | None:
    if not stealth_enabled():
        return None

    lang_env = os.getenv("MARTSCOUT_LANGS") or "en-IN,en"
    langs = tuple(
        entry.strip()
        for entry in lang_env.split(",")
        if entry.strip()
    ) or ("en-IN", "en")

    return Stealth(navigator_languages_override=langs[:2])


def apply_stealth(playwright: Playwright) -> None:
    """Hook the provided Playwright object with stealth evasions when enabled."""

    instance = _stealth_instance()
    if instance is None:
        return
    try:
        instance.hook_playwright_context(playwright)
    except Exception as exc:
        LOGGER.warning("Stealth hooks not applied: %s", exc)


def _proxy_config() -> dict[str, str] | None:
    raw = os.getenv("MARTSCOUT_PROXY")
    if not raw:
        return None
    parsed = urlparse(raw)
    if not parsed.scheme:
        return {"server": f"http://{raw}"}
    return {"server": raw}


def slow_mo_ms() -> int | None:
    value = _env_int("MARTSCOUT_SLOW_MO_MS", 0)
    return value if value > 0 else None


def device_name() -> str:
    return (os.getenv("MARTSCOUT_DEVICE") or DEFAULT_DEVICE).strip() or DEFAULT_DEVICE


def launch_kwargs() -> dict[str, Any]:
    """Return kwargs passed to chromium.launch."""

    args = [
        "--disable-blink-features=AutomationControlled",
        "--disable-dev-shm-usage",
        "--disable-infobars",
        "--no-default-browser-check",
    ]
    extra_args = os.getenv("MARTSCOUT_CHROMIUM_ARGS")
    if extra_args:
        args.extend(shlex.split(extra_args))

    kwargs: dict[str, Any] = {
        "headless": headless_enabled(),
        "args": args,
    }

    channel = os.getenv("MARTSCOUT_BROWSER_CHANNEL")
    if channel:
        kwargs["channel"] = channel

    proxy = _proxy_config()
    if proxy:
        kwargs["proxy"] = proxy

    slow_mo = slow_mo_ms()
    if slow_mo:
        kwargs["slow_mo"] = slow_mo

    return kwargs


def context_kwargs(playwright: Playwright, location: Location) -> dict[str, Any]:
    """Return new_context kwargs placing the session at ``location``."""

    kwargs: dict[str, Any] = {}
    name = device_name()
    descriptor = playwright.devices.get(name)
    if descriptor:
        kwargs.update(descriptor)
    else:
        LOGGER.warning("Unknown Playwright device %r; using desktop defaults", name)

    kwargs["permissions"] = ["geolocation"]
    kwargs["geolocation"] = {
        "latitude": location.latitude,
        "longitude": location.longitude,
    }
    return kwargs


async def launch_browser(
    playwright: Playwright, location: Location
) -> tuple[Browser, BrowserContext, Page]:
    """Launch Chromium with a context geolocated at ``location``."""

    browser = await playwright.chromium.launch(**launch_kwargs())
    try:
        context = await browser.new_context(**context_kwargs(playwright, location))
        context.set_default_timeout(_env_int("MARTSCOUT_ACTION_TIMEOUT_MS", DEFAULT_ACTION_TIMEOUT_MS))
        context.set_default_navigation_timeout(
            _env_int("MARTSCOUT_NAVIGATION_TIMEOUT_MS", DEFAULT_NAVIGATION_TIMEOUT_MS)
        )
        page = await context.new_page()
    except Exception:
        await browser.close()
        raise
    return browser, context, page


async def close_browser(browser: Browser | None, context: BrowserContext | None) -> None:
    """Close the provided browser/context pair without raising."""

    if context is not None:
        try:
            await context.close()
        except Exception as exc:
            LOGGER.warning("Failed to close browser context: %s", exc)

    if browser is not None:
        try:
            await browser.close()
        except Exception as exc:
            LOGGER.warning("Failed to close browser: %s", exc)
