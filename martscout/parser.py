"""Parse flattened Instamart product cards into structured records.

A card's ``innerText`` is flattened by replacing line breaks with
``FIELD_SEPARATOR``. The leading discount banner and the trailing
price/cart controls are fixed by the page template, while the unit section in
the middle varies per product, so fields are anchored from both ends.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Union

from martscout.logging_config import get_logger

LOGGER = get_logger(__name__)

FIELD_SEPARATOR = " ➡️ "
SOLD_OUT_MARKER = "Sold Out"
ORIGIN_PREFIX = "From "

_SPLIT_TOKEN = FIELD_SEPARATOR.strip()
_DISCOUNT_PATTERN = re.compile(r"^(\d+)\s*%\s*OFF$", re.IGNORECASE)
_LEADING_INT_PATTERN = re.compile(r"^\s*([+-]?\d+)")


@dataclass(frozen=True)
class FieldLayout:
    """Field offsets of a product card.

    ``first_price_from_end`` is counted from the end of the field list; the
    second price immediately follows the first one.
    """

    min_fields: int = 10
    discount_index: int = 0
    name_index: int = 2
    first_price_from_end: int = 6

    @property
    def description_index(self) -> int:
        return self.name_index + 1

    @property
    def unit_start_index(self) -> int:
        return self.name_index + 2

    def price_indices(self, field_count: int) -> tuple[int, int]:
        first = field_count - self.first_price_from_end
        return first, first + 1


DEFAULT_LAYOUT = FieldLayout()


class RejectReason(str, Enum):
    """Why a product card could not be turned into a record."""

    SOLD_OUT = "SoldOut"
    TOO_FEW_FIELDS = "TooFewFields"
    INVALID_PRICE = "InvalidPrice"
    INVALID_DISCOUNT_FORMAT = "InvalidDiscountFormat"
    INTERNAL_ERROR = "InternalError"


@dataclass(frozen=True)
class ProductRecord:
    name: str
    description: str
    discount_percentage: int
    mrp: int
    discounted_price: int
    unit: str
    origin: str | None = None


@dataclass(frozen=True)
class Rejected:
    reason: RejectReason
    detail: str = ""


ParseResult = Union[ProductRecord, Rejected]


def flatten_inner_text(text: str) -> str:
    """Join the lines of a card's inner text with the field separator."""

    return text.replace("\r\n", "\n").replace("\n", FIELD_SEPARATOR)


def split_fields(text: str) -> list[str]:
    return [part.strip() for part in text.split(_SPLIT_TOKEN)]


def leading_int(text: str | None) -> int | None:
    """Read the integer at the start of ``text`` (``"45% OFF"`` -> 45)."""

    if not text:
        return None
    match = _LEADING_INT_PATTERN.match(text)
    if not match:
        return None
    return int(match.group(1))


def _reject(reason: RejectReason, detail: str, text: str) -> Rejected:
    LOGGER.warning("Skipping product card (%s): %s | raw=%r", reason.value, detail, text)
    return Rejected(reason=reason, detail=detail)


def parse(text: str, layout: FieldLayout = DEFAULT_LAYOUT) -> ParseResult:
    """Turn one flattened product card into a ``ProductRecord``.

    Returns ``Rejected`` instead of raising; callers skip rejected cards.
    """

    try:
        if SOLD_OUT_MARKER in text:
            return _reject(RejectReason.SOLD_OUT, "product is sold out", text)

        fields = split_fields(text)
        count = len(fields)
        if count < layout.min_fields:
            return _reject(
                RejectReason.TOO_FEW_FIELDS,
                f"expected at least {layout.min_fields} fields, got {count}",
                text,
            )

        first_idx, second_idx = layout.price_indices(count)
        first_price = leading_int(fields[first_idx])
        second_price = leading_int(fields[second_idx])
        if first_price is None or second_price is None:
            return _reject(
                RejectReason.INVALID_PRICE,
                f"invalid prices {fields[first_idx]!r}, {fields[second_idx]!r}",
                text,
            )

        banner = fields[layout.discount_index]
        discount_match = _DISCOUNT_PATTERN.match(banner)
        if not discount_match:
            return _reject(
                RejectReason.INVALID_DISCOUNT_FORMAT,
                f"invalid discount banner {banner!r}",
                text,
            )
        discount = int(discount_match.group(1))

        name = fields[layout.name_index]
        description = fields[layout.description_index]

        origin = None
        for field_value in fields[layout.discount_index + 1 : layout.name_index]:
            if field_value.startswith(ORIGIN_PREFIX):
                origin = field_value[len(ORIGIN_PREFIX) :].strip()
                break

        unit = " ".join(fields[layout.unit_start_index : first_idx]).strip()
        if not unit:
            LOGGER.warning("Extracted empty unit string for %r", name)

        return ProductRecord(
            name=name,
            description=description,
            discount_percentage=discount,
            mrp=max(first_price, second_price),
            discounted_price=min(first_price, second_price),
            unit=unit,
            origin=origin or None,
        )
    except Exception as exc:
        LOGGER.exception("Unexpected error parsing product card: %r", text)
        return Rejected(reason=RejectReason.INTERNAL_ERROR, detail=str(exc))


__all__ = [
    "DEFAULT_LAYOUT",
    "FIELD_SEPARATOR",
    "FieldLayout",
    "ParseResult",
    "ProductRecord",
    "RejectReason",
    "Rejected",
    "flatten_inner_text",
    "leading_int",
    "parse",
    "split_fields",
]
