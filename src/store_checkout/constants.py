"""Constants shared across the store checkout modules.

Sheet names, column layouts, and membership defaults live here so the data
access layer, the settlement engine, and the command-line front-end agree on
a single source of truth.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Mapping, Sequence


# Schema version the workbook declared in ``config.ini`` must match.
EXPECTED_SCHEMA_VERSION = "1.0.0"

DEFAULT_MEMBERSHIP_RATE = Decimal("0.30")
DEFAULT_MEMBERSHIP_CAP = 8000

# Literal used by the flat-file product table for "no promotion".
NO_PROMOTION_MARKER = "null"

PRODUCTS_FLAT_FILE = "products.md"
PROMOTIONS_FLAT_FILE = "promotions.md"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names read by the data layer."""

    PRODUCTS = "Products"
    PROMOTIONS = "Promotions"


SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.PRODUCTS.value: ["name", "price", "quantity", "promotion"],
    SheetName.PROMOTIONS.value: ["name", "buy", "get", "start_date", "end_date"],
}


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_MEMBERSHIP_RATE",
    "DEFAULT_MEMBERSHIP_CAP",
    "NO_PROMOTION_MARKER",
    "PRODUCTS_FLAT_FILE",
    "PROMOTIONS_FLAT_FILE",
    "SheetName",
    "SHEET_COLUMNS",
]
