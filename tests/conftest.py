"""Shared pytest fixtures and utilities for the store checkout tests."""

from __future__ import annotations

import sys
import uuid
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from store_checkout import constants, core_logic, data_manager  # noqa: E402
from store_checkout.catalog import Catalog  # noqa: E402
from store_checkout.models import Product, Promotion  # noqa: E402
from store_checkout.setup_excel import create_store_workbook  # noqa: E402

TODAY = date(2026, 6, 15)
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "StoreName = {store_name}\n"
    "SchemaVersion = {schema_version}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    store_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture(scope="session")
def project_data_dir() -> Path:
    """Directory holding the bundled ``products.md`` and ``promotions.md``."""

    return PROJECT_ROOT / "data"


@pytest.fixture
def today() -> date:
    """Reference date inside every active test promotion."""

    return TODAY


@pytest.fixture
def soda_promotion() -> Promotion:
    """Buy two, get one, valid for the whole of 2026."""

    return Promotion("Soda 2+1", 2, 1, date(2026, 1, 1), date(2026, 12, 31))


@pytest.fixture
def pick_promotion() -> Promotion:
    """Buy one, get one, valid for the whole of 2026."""

    return Promotion("MD Pick", 1, 1, date(2026, 1, 1), date(2026, 12, 31))


@pytest.fixture
def expired_promotion() -> Promotion:
    return Promotion("Winter Sale", 1, 1, date(2025, 12, 1), date(2025, 12, 31))


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "store_data.xlsx",
        store_name="Test Store",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
    )


@pytest.fixture
def context_factory(
    settings: data_manager.ConfigSettings,
    soda_promotion: Promotion,
    pick_promotion: Promotion,
    expired_promotion: Promotion,
) -> Callable[..., core_logic.RuntimeContext]:
    """Build a runtime context over an in-memory catalog."""

    def _create(
        products: Iterable[Product],
        promotions: Optional[Iterable[Promotion]] = None,
    ) -> core_logic.RuntimeContext:
        if promotions is None:
            promotions = [soda_promotion, pick_promotion, expired_promotion]
        return core_logic.RuntimeContext(settings=settings, catalog=Catalog(products, promotions))

    return _create


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates a sample store workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        filename: str = "store_data.xlsx",
        **kwargs,
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_store_workbook(workbook_path, overwrite=True, **kwargs)
        return workbook_path

    return _create_workbook


@pytest.fixture
def store_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh sample workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        store_name: str = "Test Store",
        schema_version: str = constants.EXPECTED_SCHEMA_VERSION,
    ) -> ConfigBundle:
        bundle_dir = tmp_path / f"bundle_{uuid.uuid4().hex}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=bundle_dir.name)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                store_name=store_name,
                schema_version=schema_version,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            store_name=store_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context
