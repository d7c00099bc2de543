"""Configuration loading for the martscout scanner."""

from __future__ import annotations

import os
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from martscout.errors import MissingCredentialsError
from martscout.logging_config import get_logger

LOGGER = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("martscout/config.yml")

DEFAULT_CONFIG: dict[str, Any] = {
    "min_discount_percentage": 50,
    "max_products_per_category": 20,
    "max_scroll_attempts": 3,
    "scroll_wait_ms": 2000,
    "scan_subcategories": False,
    "locations": [],
    "categories": [],
    "output": {"screenshot_dir": "screenshots"},
    "storage": {"path": "db.json", "retention_hours": 0},
    "schedule": {"interval_seconds": 60, "error_backoff_seconds": 30},
    "telegram": {"timeout_seconds": 30},
}


@dataclass(frozen=True)
class Location:
    name: str
    latitude: float
    longitude: float
    enabled: bool = True


@dataclass(frozen=True)
class Category:
    name: str
    enabled: bool = True


@dataclass(frozen=True)
class ScanSettings:
    """Knobs that shape a single category scan."""

    min_discount_percentage: int = 50
    max_products_per_category: int = 20
    max_scroll_attempts: int = 3
    scroll_wait_ms: int = 2000
    scan_subcategories: bool = False
    screenshot_dir: Path = Path("screenshots")


@dataclass(frozen=True)
class TelegramCredentials:
    bot_token: str
    channel_id: str


def _deep_merge(default: Any, override: Any) -> Any:
    if not isinstance(default, dict) or not isinstance(override, dict):
        return deepcopy(override)

    merged: dict[str, Any] = deepcopy(default)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = deepcopy(value)
    return merged


def load_config(path: Path | None = None) -> dict[str, Any]:
    """Read the YAML config at ``path`` merged over ``DEFAULT_CONFIG``."""

    path = path or DEFAULT_CONFIG_PATH
    if path.exists():
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    else:
        LOGGER.warning("Configuration file %s not found; using defaults", path)
        data = {}

    return _deep_merge(DEFAULT_CONFIG, data) if data else deepcopy(DEFAULT_CONFIG)


def _as_int(value: Any, default: int, *, minimum: int = 0) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number >= minimum else default


def load_locations(config: dict[str, Any], *, include_disabled: bool = False) -> list[Location]:
    locations: list[Location] = []
    for entry in config.get("locations") or []:
        entry = entry or {}
        name = str(entry.get("name", "")).strip()
        try:
            latitude = float(entry["latitude"])
            longitude = float(entry["longitude"])
        except (KeyError, TypeError, ValueError):
            LOGGER.warning("Skipping location %r: invalid coordinates", name or entry)
            continue
        if not name:
            LOGGER.warning("Skipping location without a name: %r", entry)
            continue
        location = Location(
            name=name,
            latitude=latitude,
            longitude=longitude,
            enabled=bool(entry.get("enabled", True)),
        )
        if location.enabled or include_disabled:
            locations.append(location)
    return locations


def load_categories(config: dict[str, Any], *, include_disabled: bool = False) -> list[Category]:
    categories: list[Category] = []
    for entry in config.get("categories") or []:
        if isinstance(entry, str):
            entry = {"name": entry}
        name = str((entry or {}).get("name", "")).strip()
        if not name:
            continue
        category = Category(name=name, enabled=bool(entry.get("enabled", True)))
        if category.enabled or include_disabled:
            categories.append(category)
    return categories


def load_scan_settings(config: dict[str, Any]) -> ScanSettings:
    defaults = ScanSettings()
    discount = _as_int(config.get("min_discount_percentage"), defaults.min_discount_percentage)
    return ScanSettings(
        min_discount_percentage=min(discount, 100),
        max_products_per_category=_as_int(
            config.get("max_products_per_category"), defaults.max_products_per_category, minimum=1
        ),
        max_scroll_attempts=_as_int(
            config.get("max_scroll_attempts"), defaults.max_scroll_attempts, minimum=1
        ),
        scroll_wait_ms=_as_int(config.get("scroll_wait_ms"), defaults.scroll_wait_ms),
        scan_subcategories=bool(config.get("scan_subcategories", False)),
        screenshot_dir=Path(
            (config.get("output") or {}).get("screenshot_dir") or defaults.screenshot_dir
        ),
    )


def load_credentials() -> TelegramCredentials:
    """Return Telegram credentials from the environment or raise."""

    token = (os.getenv("TELEGRAM_BOT_TOKEN") or "").strip()
    channel = (os.getenv("TELEGRAM_CHANNEL_ID") or "").strip()
    missing = [
        name
        for name, value in (("TELEGRAM_BOT_TOKEN", token), ("TELEGRAM_CHANNEL_ID", channel))
        if not value
    ]
    if missing:
        raise MissingCredentialsError(
            "Missing required Telegram configuration: " + ", ".join(missing)
        )
    return TelegramCredentials(bot_token=token, channel_id=channel)


__all__ = [
    "Category",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_PATH",
    "Location",
    "ScanSettings",
    "TelegramCredentials",
    "load_categories",
    "load_config",
    "load_credentials",
    "load_locations",
    "load_scan_settings",
]
