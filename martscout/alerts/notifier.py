"""Telegram delivery for deal alerts."""

from __future__ import annotations

import re
import time
from pathlib import Path
from typing import Any

import requests
from tenacity import retry, stop_after_attempt, wait_exponential

from martscout.config import Location, TelegramCredentials
from martscout.errors import DeliveryError
from martscout.logging_config import get_logger
from martscout.parser import ProductRecord

LOGGER = get_logger(__name__)

TELEGRAM_API = "https://api.telegram.org"
DEFAULT_TIMEOUT = 30.0

_MARKDOWN_SPECIAL = re.compile(r"([_*`\[])")


def escape_markdown(value: str) -> str:
    """Escape legacy-Markdown metacharacters in scraped text."""

    return _MARKDOWN_SPECIAL.sub(r"\\\1", value)


def format_caption(location: Location, product: ProductRecord) -> str:
    """Render the Markdown caption for a deal card."""

    lines = [
        f"🛒 *New Deal Alert in {escape_markdown(location.name)}!*",
        "",
        f"*{escape_markdown(product.name)}*",
        f"📝 {escape_markdown(product.description)}",
        f"💰 MRP: ₹{product.mrp}",
        f"🏷️ *{product.discount_percentage}% OFF*",
        f"✨ *Deal Price: ₹{product.discounted_price}*",
    ]
    if product.unit:
        lines.append(f"📦 Unit: {escape_markdown(product.unit)}")
    if product.origin:
        lines.append(f"🏠 Origin: {escape_markdown(product.origin)}")
    return "\n".join(lines) + "\n"


class TelegramNotifier:
    """Send photos and messages to a single Telegram channel."""

    def __init__(
        self,
        credentials: TelegramCredentials,
        *,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        if not credentials.bot_token:
            raise ValueError("Bot token is required")
        if not credentials.channel_id:
            raise ValueError("Channel ID is required")
        self._token = credentials.bot_token
        self._channel = credentials.channel_id
        self._timeout = timeout
        self._last_send = 0.0

    def send_photo(self, photo_path: str | Path, caption: str) -> None:
        """Upload ``photo_path`` with ``caption``."""

        path = Path(photo_path)
        data = {"chat_id": self._channel, "caption": caption, "parse_mode": "Markdown"}
        try:
            with path.open("rb") as handle:
                self._post("sendPhoto", data=data, files={"photo": (path.name, handle, "image/png")})
        except requests.RequestException as exc:
            raise DeliveryError(f"sendPhoto failed: {exc}") from exc
        except OSError as exc:
            raise DeliveryError(f"Cannot read screenshot {path}: {exc}") from exc
        LOGGER.info("Sent photo %s to channel %s", path.name, self._channel)

    def send_message(self, text: str) -> None:
        payload = {
            "chat_id": self._channel,
            "text": text,
            "parse_mode": "Markdown",
            "disable_web_page_preview": True,
        }
        try:
            self._post("sendMessage", data=payload)
        except requests.RequestException as exc:
            raise DeliveryError(f"sendMessage failed: {exc}") from exc
        LOGGER.info("Sent text message to channel %s", self._channel)

    def _throttle(self) -> None:
        elapsed = time.monotonic() - self._last_send
        if elapsed < 1:
            time.sleep(1 - elapsed)
        self._last_send = time.monotonic()

    @retry(wait=wait_exponential(multiplier=0.5, max=10), stop=stop_after_attempt(5), reraise=True)
    def _post(self, method: str, *, data: dict[str, Any], files: dict[str, Any] | None = None) -> None:
        self._throttle()
        if files:
            for _, handle, _ in files.values():
                handle.seek(0)
        url = f"{TELEGRAM_API}/bot{self._token}/{method}"
        response = requests.post(url, data=data, files=files, timeout=self._timeout)
        if response.status_code >= 400:
            raise DeliveryError(f"Telegram {method} returned HTTP {response.status_code}: {response.text[:200]}")
