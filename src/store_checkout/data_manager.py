"""Data access layer for the store checkout.

This module reads the product and promotion tables the settlement engine
works on. Business rules belong elsewhere.

The public API covers three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook access: opening the Excel file and streaming typed rows from the
   ``Products`` and ``Promotions`` sheets.
3. Flat files: reading the comma-separated ``products.md`` and
   ``promotions.md`` tables, where the literal ``null`` marks a product row
   without a promotion.
"""


from __future__ import annotations

import configparser
import csv
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    DEFAULT_MEMBERSHIP_CAP,
    DEFAULT_MEMBERSHIP_RATE,
    NO_PROMOTION_MARKER,
    PRODUCTS_FLAT_FILE,
    PROMOTIONS_FLAT_FILE,
    SheetName,
)
from .models import Product, Promotion


CONFIG_FILE_NAME = "config.ini"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
PROMOTIONS_SHEET = SheetName.PROMOTIONS.value


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    store_name: str
    schema_version: str
    membership_rate: Decimal = DEFAULT_MEMBERSHIP_RATE
    membership_cap: int = DEFAULT_MEMBERSHIP_CAP


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file.

    An explicit path wins without verification. Otherwise the search walks up
    from the current working directory and returns the first
    ``CONFIG_FILE_NAME`` that exists.

    Args:
        explicit_path (Path | None): Optional path to use instead of searching.

    Returns:
        Path: The supplied or discovered configuration path.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` into a ``ConfigParser``.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into :class:`ConfigSettings`.

    The ``[System]`` section is mandatory. ``[Membership]`` is optional and
    falls back to a 30% rate capped at 8000. Relative ``DataFile`` entries are
    anchored at ``base_path`` (or the working directory).

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory that relative data paths hang off.

    Returns:
        ConfigSettings: Immutable settings with a resolved data path.

    Raises:
        KeyError: If a required ``[System]`` option is missing.
        ValueError: If a ``[Membership]`` value is not a number.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        store_name = parser.get("System", "StoreName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    rate_raw = parser.get("Membership", "DiscountRate", fallback=str(DEFAULT_MEMBERSHIP_RATE))
    cap_raw = parser.get("Membership", "MaxDiscount", fallback=str(DEFAULT_MEMBERSHIP_CAP))
    try:
        membership_rate = Decimal(rate_raw.strip())
        membership_cap = int(cap_raw.strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Invalid membership configuration: rate={rate_raw!r} cap={cap_raw!r}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        store_name=store_name,
        schema_version=schema_version,
        membership_rate=membership_rate,
        membership_cap=membership_cap,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the store workbook read-only.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file, read_only=True, data_only=True)


def iter_products(workbook: Workbook) -> Iterable[Product]:
    """Yield a :class:`Product` for each populated row of the ``Products`` sheet."""

    sheet = workbook[PRODUCTS_SHEET]
    for raw in sheet.iter_rows(min_row=2, max_col=4, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield deserialize_product(_pad(raw, 4))


def iter_promotions(workbook: Workbook) -> Iterable[Promotion]:
    """Yield a :class:`Promotion` for each populated row of the ``Promotions`` sheet."""

    sheet = workbook[PROMOTIONS_SHEET]
    for raw in sheet.iter_rows(min_row=2, max_col=5, values_only=True):
        if any(cell is not None for cell in raw):
            yield deserialize_promotion(_pad(raw, 5))


def read_flat_table(path: Path) -> List[List[str]]:
    """Read a comma-separated table, dropping the header and blank lines.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
    """

    path = Path(path).expanduser().resolve()
    if not path.exists():
        raise FileNotFoundError(f"Data file not found: {path}")

    with path.open(encoding="utf-8", newline="") as handle:
        rows = [row for row in csv.reader(handle) if any(cell.strip() for cell in row)]
    return rows[1:]


def read_flat_products(path: Path) -> List[Product]:
    return [deserialize_product(row) for row in read_flat_table(path)]


def read_flat_promotions(path: Path) -> List[Promotion]:
    return [deserialize_promotion(row) for row in read_flat_table(path)]


def load_tables(data_file: Path) -> Tuple[List[Product], List[Promotion]]:
    """Load products and promotions from a workbook or a flat-file directory.

    A directory is read as the ``products.md`` / ``promotions.md`` pair;
    anything else is opened as an Excel workbook.

    Args:
        data_file (Path): Workbook path or directory holding the flat files.

    Returns:
        tuple[list[Product], list[Promotion]]: Rows in file order.

    Raises:
        FileNotFoundError: If the workbook or one of the flat files is missing.
        ValueError: If a row cannot be converted.
    """

    data_file = Path(data_file).expanduser().resolve()
    if data_file.is_dir():
        products = read_flat_products(data_file / PRODUCTS_FLAT_FILE)
        promotions = read_flat_promotions(data_file / PROMOTIONS_FLAT_FILE)
    else:
        workbook = open_workbook(data_file)
        try:
            products = list(iter_products(workbook))
            promotions = list(iter_promotions(workbook))
        finally:
            workbook.close()

    log.info(
        "Loaded %d product rows and %d promotions from '%s'",
        len(products),
        len(promotions),
        data_file,
    )
    return products, promotions


def serialize_product(record: Product) -> list[object]:
    """Arrange a product as ``[name, price, quantity, promotion]``."""

    return [record.name, record.price, record.quantity, record.promotion_name]


def serialize_promotion(record: Promotion) -> list[object]:
    """Arrange a promotion as ``[name, buy, get, start_date, end_date]``."""

    return [
        record.name,
        record.buy_count,
        record.get_count,
        record.start_date.isoformat(),
        record.end_date.isoformat(),
    ]


def deserialize_product(raw_row: Sequence[object]) -> Product:
    """Convert a raw sheet or CSV row into a :class:`Product`.

    Blank cells and the ``null`` marker in the promotion column both mean the
    row carries no promotion.

    Raises:
        ValueError: If the row is short or a numeric column does not parse.
    """

    if len(raw_row) < 4:
        raise ValueError(f"Product row must have 4 columns: {list(raw_row)!r}")

    name, price_raw, quantity_raw, promotion_raw = raw_row[:4]
    return Product(
        name=_to_text(name),
        price=_to_int(price_raw, "price"),
        quantity=_to_int(quantity_raw, "quantity"),
        promotion_name=_to_promotion_name(promotion_raw),
    )


def deserialize_promotion(raw_row: Sequence[object]) -> Promotion:
    """Convert a raw sheet or CSV row into a :class:`Promotion`.

    Raises:
        ValueError: If the row is short, a count does not parse, or a date is
            not ISO formatted.
    """

    if len(raw_row) < 5:
        raise ValueError(f"Promotion row must have 5 columns: {list(raw_row)!r}")

    name, buy_raw, get_raw, start_raw, end_raw = raw_row[:5]
    return Promotion(
        name=_to_text(name),
        buy_count=_to_int(buy_raw, "buy"),
        get_count=_to_int(get_raw, "get"),
        start_date=_to_date(start_raw, "start_date"),
        end_date=_to_date(end_raw, "end_date"),
    )


def _pad(raw_row: Sequence[object], width: int) -> Tuple[object, ...]:
    # trailing blank cells are not always materialized by openpyxl
    return tuple(raw_row) + (None,) * (width - len(raw_row))


def _to_text(value: object) -> str:
    return str(value).strip() if value is not None else ""


def _to_int(value: object, field_name: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"Invalid {field_name}: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    try:
        return int(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid {field_name}: {value!r}") from exc


def _to_date(value: object, field_name: str) -> date:
    # openpyxl hands back datetimes for date-formatted cells
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as exc:
        raise ValueError(f"Invalid {field_name}: {value!r}") from exc


def _to_promotion_name(value: object) -> Optional[str]:
    text = _to_text(value)
    if not text or text == NO_PROMOTION_MARKER:
        return None
    return text
