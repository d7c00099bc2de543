"""Durable record of deals already forwarded to Telegram."""

from __future__ import annotations

import hashlib
import json
import os
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any, Callable

from martscout.errors import StorageError
from martscout.logging_config import get_logger

LOGGER = get_logger(__name__)

SUPPRESSION_WINDOW = timedelta(hours=3)
DOCUMENT_KEY = "sentPosts"


@dataclass
class SentPost:
    id: str
    timestamp: int
    location_name: str
    category_name: str
    product_name: str

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "locationName": self.location_name,
            "categoryName": self.category_name,
            "productName": self.product_name,
        }

    @classmethod
    def from_document(cls, entry: dict[str, Any]) -> "SentPost":
        return cls(
            id=str(entry["id"]),
            timestamp=int(entry["timestamp"]),
            location_name=str(entry.get("locationName", "")),
            category_name=str(entry.get("categoryName", "")),
            product_name=str(entry.get("productName", "")),
        )


class SentPostStore:
    """JSON-file backed set of ``SentPost`` entries.

    Every read-modify-write cycle runs under one lock and the document is
    replaced atomically, so readers never observe a partial write.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        clock: Callable[[], float] = time.time,
        window: timedelta = SUPPRESSION_WINDOW,
    ) -> None:
        self.path = Path(path)
        self._clock = clock
        self._window_ms = int(window.total_seconds() * 1000)
        self._lock = threading.Lock()
        self._posts: list[SentPost] = []
        self._initialized = False
        self._closed = False

    def __enter__(self) -> "SentPostStore":
        self.initialize()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def posts(self) -> list[SentPost]:
        """Snapshot of the entries loaded by the last read."""

        with self._lock:
            return list(self._posts)

    def initialize(self) -> None:
        """Create the backing document when missing and load it."""

        with self._lock:
            self._ensure_open()
            if not self.path.exists():
                try:
                    self.path.parent.mkdir(parents=True, exist_ok=True)
                except OSError as exc:
                    raise StorageError(f"Cannot create {self.path.parent}: {exc}") from exc
                self._write([])
                LOGGER.info("Created sent-post store at %s", self.path)
            self._posts = self._read()
            if not self._initialized:
                LOGGER.info("Loaded %d sent posts from %s", len(self._posts), self.path)
            self._initialized = True

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._posts = []

    @staticmethod
    def identity_of(key: str) -> str:
        """Return the sha256 hex digest used as a post identity."""

        return hashlib.sha256(key.encode("utf-8")).hexdigest()

    def was_reported_recently(self, post_id: str) -> bool:
        with self._lock:
            self._ensure_ready()
            self._posts = self._read()
            cutoff = self._now_ms() - self._window_ms
            return any(
                post.id == post_id and post.timestamp > cutoff for post in self._posts
            )

    def record_reported(
        self,
        post_id: str,
        location_name: str,
        category_name: str,
        product_name: str,
    ) -> SentPost:
        """Upsert ``post_id`` with the current time and persist the store."""

        with self._lock:
            self._ensure_ready()
            posts = self._read()
            now_ms = self._now_ms()
            existing = next((post for post in posts if post.id == post_id), None)
            if existing is not None:
                posts = [post for post in posts if post.id != post_id]
                existing.timestamp = now_ms
                record = existing
                LOGGER.debug("Refreshed sent post %s (%s)", post_id, existing.product_name)
            else:
                record = SentPost(
                    id=post_id,
                    timestamp=now_ms,
                    location_name=location_name,
                    category_name=category_name,
                    product_name=product_name,
                )
            posts.append(record)
            self._write(posts)
            self._posts = posts
            return record

    def prune(self, max_age: timedelta) -> int:
        """Drop entries older than ``max_age``; return how many were removed."""

        with self._lock:
            self._ensure_ready()
            posts = self._read()
            cutoff = self._now_ms() - int(max_age.total_seconds() * 1000)
            kept = [post for post in posts if post.timestamp >= cutoff]
            removed = len(posts) - len(kept)
            if removed:
                self._write(kept)
            self._posts = kept
            return removed

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _ensure_open(self) -> None:
        if self._closed:
            raise StorageError(f"Sent-post store {self.path} is closed")

    def _ensure_ready(self) -> None:
        self._ensure_open()
        if not self._initialized:
            raise StorageError("SentPostStore.initialize() must be called before use")

    def _read(self) -> list[SentPost]:
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle) or {}
            return [SentPost.from_document(entry) for entry in data.get(DOCUMENT_KEY, [])]
        except OSError as exc:
            raise StorageError(f"Cannot read {self.path}: {exc}") from exc
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise StorageError(f"Corrupt sent-post document {self.path}: {exc}") from exc

    def _write(self, posts: list[SentPost]) -> None:
        payload = {DOCUMENT_KEY: [post.to_document() for post in posts]}
        tmp_name = None
        try:
            with NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                dir=str(self.path.parent),
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                tmp_name = handle.name
                json.dump(payload, handle, ensure_ascii=False, indent=2)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
        except OSError as exc:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StorageError(f"Cannot write {self.path}: {exc}") from exc


__all__ = ["SUPPRESSION_WINDOW", "SentPost", "SentPostStore"]
