"""Custom exception types for martscout."""

from __future__ import annotations

from typing import Optional


class ScanError(Exception):
    """Base class for failures tied to a location/category scan."""

    default_message = "Scan failed."

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        location: Optional[str] = None,
        category: Optional[str] = None,
    ) -> None:
        self.message = message or self.default_message
        self.location = location
        self.category = category
        super().__init__(self.message)

    def __str__(self) -> str:
        context_parts: list[str] = []
        if self.location:
            context_parts.append(f"location={self.location}")
        if self.category:
            context_parts.append(f"category={self.category}")
        context = ", ".join(context_parts)
        return f"{self.message} ({context})" if context else self.message


class CategoryNavigationError(ScanError):
    """Raised when a category page cannot be opened or sorted."""

    default_message = "Unable to open category."


class LocationScanError(ScanError):
    """Raised when the storefront cannot be prepared for a location."""

    default_message = "Unable to scan location."


class DeliveryError(RuntimeError):
    """Raised when a Telegram delivery fails after all retries."""


class StorageError(RuntimeError):
    """Raised when the sent-post document cannot be read or written."""


class MissingCredentialsError(RuntimeError):
    """Raised when Telegram credentials are absent at startup."""
