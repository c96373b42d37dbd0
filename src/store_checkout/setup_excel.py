"""Utility for initializing the store checkout workbook.

The module doubles as a script (``python -m store_checkout.setup_excel``) and
as a library used by the CLI ``init`` command and by tests. The workbook can
be seeded from the flat ``products.md`` / ``promotions.md`` tables or from the
bundled sample assortment.
"""

from __future__ import annotations

import argparse
import sys
from datetime import date
from pathlib import Path
from typing import Iterable, Mapping, Optional, Sequence, Tuple

import openpyxl
from openpyxl.styles import Font

from . import data_manager, log
from .constants import (
    EXPECTED_SCHEMA_VERSION,
    PRODUCTS_FLAT_FILE,
    PROMOTIONS_FLAT_FILE,
    SHEET_COLUMNS,
    SheetName,
)
from .models import Product, Promotion


SAMPLE_PROMOTIONS: Sequence[Promotion] = (
    Promotion("Soda 2+1", 2, 1, date(2026, 1, 1), date(2026, 12, 31)),
    Promotion("MD Pick", 1, 1, date(2026, 1, 1), date(2026, 12, 31)),
    Promotion("Flash Sale", 1, 1, date(2026, 11, 1), date(2026, 11, 30)),
)

SAMPLE_PRODUCTS: Sequence[Product] = (
    Product("Cola", 1000, 10, "Soda 2+1"),
    Product("Cola", 1000, 10),
    Product("Cider", 1000, 8, "Soda 2+1"),
    Product("Cider", 1000, 7),
    Product("Orange Juice", 1800, 9, "MD Pick"),
    Product("Sparkling Water", 1200, 5, "Soda 2+1"),
    Product("Water", 500, 10),
    Product("Vitamin Water", 1500, 6),
    Product("Potato Chips", 1500, 5, "Flash Sale"),
    Product("Potato Chips", 1500, 5),
    Product("Chocolate Bar", 1200, 5, "MD Pick"),
    Product("Chocolate Bar", 1200, 5),
    Product("Energy Bar", 2000, 5),
    Product("Lunch Box", 6400, 8),
    Product("Cup Noodles", 1700, 1, "MD Pick"),
    Product("Cup Noodles", 1700, 10),
)

CONFIG_FILE = "config.ini"
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "StoreName = {store_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Membership]\n"
    "DiscountRate = 0.30\n"
    "MaxDiscount = 8000\n"
)


def create_store_workbook(
    destination: Path,
    *,
    products: Iterable[Product] = SAMPLE_PRODUCTS,
    promotions: Iterable[Promotion] = SAMPLE_PROMOTIONS,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Create the store workbook at ``destination``.

    When ``overwrite`` is ``False`` (the default) this function raises
    ``FileExistsError`` if the target already exists.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing workbook: {destination}")

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)

    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    for promotion in promotions:
        workbook[SheetName.PROMOTIONS.value].append(data_manager.serialize_promotion(promotion))
    for product in products:
        workbook[SheetName.PRODUCTS.value].append(data_manager.serialize_product(product))

    workbook.save(destination)
    log.info("Created store workbook at '%s'", destination)
    return destination


def create_from_flat_files(destination: Path, source_dir: Path, *, overwrite: bool = False) -> Path:
    """Build the workbook from ``products.md`` and ``promotions.md`` in ``source_dir``."""

    products = data_manager.read_flat_products(source_dir / PRODUCTS_FLAT_FILE)
    promotions = data_manager.read_flat_promotions(source_dir / PROMOTIONS_FLAT_FILE)
    return create_store_workbook(
        destination,
        products=products,
        promotions=promotions,
        overwrite=overwrite,
    )


def write_config(
    config_path: Path,
    *,
    data_file: str,
    store_name: str = "W Convenience Store",
    overwrite: bool = False,
) -> Path:
    """Write a ``config.ini`` pointing at ``data_file``."""

    config_path = config_path.expanduser().resolve()
    if config_path.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing configuration: {config_path}")
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(
        _CONFIG_TEMPLATE.format(
            data_file=data_file,
            store_name=store_name,
            schema_version=EXPECTED_SCHEMA_VERSION,
        ),
        encoding="utf-8",
    )
    return config_path


def create_store_files(
    directory: Path,
    *,
    workbook: str = "store_data.xlsx",
    store_name: str = "W Convenience Store",
    source_dir: Optional[Path] = None,
    overwrite: bool = False,
) -> Tuple[Path, Path]:
    """Create the workbook and a matching ``config.ini`` inside ``directory``.

    Both targets are checked before anything is written, so a refusal leaves
    the directory as it was.

    Returns:
        tuple[Path, Path]: Workbook path and configuration path.

    Raises:
        FileExistsError: If either file exists and ``overwrite`` is ``False``.
    """

    directory = Path(directory).expanduser().resolve()
    workbook_path = directory / workbook
    config_path = directory / CONFIG_FILE
    if not overwrite:
        for target in (workbook_path, config_path):
            if target.exists():
                raise FileExistsError(f"Refusing to overwrite existing file: {target}")

    if source_dir is not None:
        create_from_flat_files(workbook_path, source_dir, overwrite=overwrite)
    else:
        create_store_workbook(workbook_path, overwrite=overwrite)
    write_config(config_path, data_file=workbook, store_name=store_name, overwrite=overwrite)
    return workbook_path, config_path


def run_from_config(config_path: Path, *, source_dir: Optional[Path] = None, overwrite: bool = False) -> Path:
    """Create the workbook named by ``config.ini``, seeded from ``source_dir`` if given."""

    parser = data_manager.read_config(config_path)
    settings = data_manager.parse_settings(parser, base_path=config_path.expanduser().resolve().parent)
    if source_dir is not None:
        return create_from_flat_files(settings.data_file, source_dir, overwrite=overwrite)
    return create_store_workbook(settings.data_file, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the store checkout workbook")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--source-dir",
        type=Path,
        default=None,
        help="Directory holding products.md and promotions.md to seed from.",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, source_dir=args.source_dir, overwrite=args.force)
    except (FileNotFoundError, KeyError, ValueError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created store workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
