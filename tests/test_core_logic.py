"""Unit tests for the settlement engine."""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime
from unittest.mock import Mock

import pytest

from store_checkout import constants, core_logic, data_manager
from store_checkout.models import (
    DataIntegrityError,
    InsufficientStockError,
    InvalidRequestError,
    Product,
    ProductView,
    PurchaseLineRequest,
    SettledLine,
    UnknownProductError,
)


def _requests(*pairs):
    return [PurchaseLineRequest(name, quantity) for name, quantity in pairs]


@pytest.fixture
def context(context_factory):
    return context_factory(
        [
            Product("Cola", 1000, 10, "Soda 2+1"),
            Product("Cola", 1000, 10),
            Product("Cider", 1000, 2, "Soda 2+1"),
            Product("Cider", 1000, 10),
            Product("Water", 1000, 5),
            Product("Lunch Box", 6400, 8),
            Product("Chips", 1500, 5, "MD Pick"),
        ]
    )


@pytest.fixture
def set_fixed_datetime(monkeypatch):
    """Patch core_logic.datetime.now to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply


# ---------------------------------------------------------------------------
# Runtime/context management
# ---------------------------------------------------------------------------


def test_load_runtime_context_returns_context(monkeypatch, tmp_path, soda_promotion):
    """load_runtime_context should assemble settings and catalog into a context."""

    config_path = tmp_path / "config.ini"
    parser = Mock(name="parser")
    parsed_settings = data_manager.ConfigSettings(
        data_file=tmp_path / "store.xlsx",
        store_name="Store",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
    )
    rows = [Product("Cola", 1000, 3, "Soda 2+1")]

    find_config_file = Mock(return_value=config_path)
    read_config = Mock(return_value=parser)
    parse_settings = Mock(return_value=parsed_settings)
    load_tables = Mock(return_value=(rows, [soda_promotion]))

    monkeypatch.setattr(data_manager, "find_config_file", find_config_file)
    monkeypatch.setattr(data_manager, "read_config", read_config)
    monkeypatch.setattr(data_manager, "parse_settings", parse_settings)
    monkeypatch.setattr(data_manager, "load_tables", load_tables)

    context = core_logic.load_runtime_context(config_path)

    assert context.settings is parsed_settings
    assert context.catalog.list_all() == rows
    find_config_file.assert_called_once_with(config_path)
    read_config.assert_called_once_with(config_path.resolve())
    parse_settings.assert_called_once_with(parser, base_path=config_path.resolve().parent)
    load_tables.assert_called_once_with(parsed_settings.data_file)


def test_ensure_schema_version_rejects_mismatch(context):
    """Schema mismatches should surface a RuntimeError with clear messaging."""

    bad_context = core_logic.RuntimeContext(
        settings=replace(context.settings, schema_version="0.9"),
        catalog=context.catalog,
    )
    with pytest.raises(RuntimeError):
        core_logic.ensure_schema_version(bad_context)


def test_membership_policy_follows_settings(context):
    custom = core_logic.RuntimeContext(
        settings=replace(context.settings, membership_cap=100),
        catalog=context.catalog,
    )

    assert custom.membership_policy.cap == 100
    assert context.membership_policy.cap == 8000


def test_default_timestamp_uses_current_time(set_fixed_datetime, context):
    """Without an explicit moment the engine consults datetime.now."""

    set_fixed_datetime(datetime(2027, 2, 1, 12, 0))

    receipt = core_logic.settle(context, _requests(("Cola", 3)), False)

    # The promotion has expired, so no free units are granted.
    assert receipt.free_lines == ()
    assert context.catalog.find_normal_row("Cola").quantity == 7


# ---------------------------------------------------------------------------
# Settlement scenarios
# ---------------------------------------------------------------------------


def test_promotion_scenario_without_membership(context, today):
    receipt = core_logic.settle(context, _requests(("Cola", 9)), False, now=today)

    assert receipt.lines == (SettledLine("Cola", 9, 1000, is_promotion_line=True),)
    assert [(free.product_name, free.free_quantity) for free in receipt.free_lines] == [("Cola", 3)]
    assert receipt.total_amount == 9000
    assert receipt.promotion_discount_amount == 3000
    assert receipt.membership_discount_amount == 0
    assert receipt.final_amount == 6000


def test_normal_scenario_with_membership(context, today):
    receipt = core_logic.settle(context, _requests(("Water", 5)), True, now=today)

    assert receipt.total_amount == 5000
    assert receipt.promotion_discount_amount == 0
    assert receipt.membership_discount_amount == 1500
    assert receipt.final_amount == 3500


def test_short_promotion_stock_spills_over(context, today):
    receipt = core_logic.settle(context, _requests(("Cider", 5)), False, now=today)

    assert sum(line.paid_quantity for line in receipt.lines) == 5
    assert receipt.free_lines == ()
    assert receipt.total_amount == 5000
    assert receipt.promotion_discount_amount == 0
    assert context.catalog.find_promotion_row_any("Cider").quantity == 0
    assert context.catalog.find_normal_row("Cider").quantity == 7


def test_membership_is_capped(context, today):
    receipt = core_logic.settle(context, _requests(("Lunch Box", 8)), True, now=today)

    assert receipt.membership_discount_amount == 8000
    assert receipt.final_amount == 51200 - 8000


def test_membership_skips_promotion_lines(context, today):
    receipt = core_logic.settle(context, _requests(("Cola", 3), ("Water", 2)), True, now=today)

    assert receipt.total_amount == 5000
    assert receipt.promotion_discount_amount == 1000
    assert receipt.membership_discount_amount == 600
    assert receipt.final_amount == 3400


def test_lines_follow_request_order(context, today):
    receipt = core_logic.settle(context, _requests(("Water", 1), ("Cola", 2), ("Chips", 2)), False, now=today)

    assert [line.product_name for line in receipt.lines] == ["Water", "Cola", "Chips"]
    assert [free.product_name for free in receipt.free_lines] == ["Chips"]


def test_repeated_product_lines_share_stock(context, today):
    receipt = core_logic.settle(context, _requests(("Cola", 6), ("Cola", 6)), False, now=today)

    assert sum(line.paid_quantity for line in receipt.lines) == 12
    assert context.catalog.find_promotion_row_any("Cola").quantity == 0
    assert context.catalog.find_normal_row("Cola").quantity == 8


@pytest.mark.parametrize("quantity", [1, 4, 9, 12, 20])
def test_final_amount_identity(context, today, quantity):
    receipt = core_logic.settle(context, _requests(("Cola", quantity), ("Water", 1)), True, now=today)

    assert receipt.final_amount == (
        receipt.total_amount - receipt.promotion_discount_amount - receipt.membership_discount_amount
    )
    assert receipt.membership_discount_amount <= 8000


# ---------------------------------------------------------------------------
# Rejections
# ---------------------------------------------------------------------------


def test_insufficient_stock_leaves_catalog_unchanged(context, today):
    before = context.catalog.snapshot()

    with pytest.raises(InsufficientStockError):
        core_logic.settle(context, _requests(("Water", 2), ("Cola", 21)), False, now=today)

    assert context.catalog.snapshot() == before


def test_repeated_lines_exceeding_stock_are_rejected_up_front(context, today):
    before = context.catalog.snapshot()

    with pytest.raises(InsufficientStockError):
        core_logic.settle(context, _requests(("Cola", 15), ("Cola", 6)), False, now=today)

    assert context.catalog.snapshot() == before


def test_expired_promotion_stock_is_not_available(context_factory, today):
    context = context_factory([Product("Gum", 800, 5, "Winter Sale"), Product("Gum", 800, 1)])

    with pytest.raises(InsufficientStockError):
        core_logic.settle(context, _requests(("Gum", 2)), False, now=today)


@pytest.mark.parametrize("requests", [[], None])
def test_empty_requests_are_invalid(context, today, requests):
    with pytest.raises(InvalidRequestError):
        core_logic.settle(context, requests, False, now=today)


@pytest.mark.parametrize("quantity", [0, -3, "2", 1.5])
def test_invalid_quantities_are_rejected(context, today, quantity):
    with pytest.raises(InvalidRequestError):
        core_logic.settle(context, [PurchaseLineRequest("Cola", quantity)], False, now=today)


def test_unknown_product_is_rejected(context, today):
    with pytest.raises(UnknownProductError):
        core_logic.settle(context, _requests(("Cola", 1), ("Ramen", 1)), False, now=today)

    assert context.catalog.find_promotion_row_any("Cola").quantity == 10


def test_missing_promotion_is_a_data_integrity_error(context_factory, today):
    context = context_factory([Product("Juice", 1800, 4, "Ghost Deal"), Product("Juice", 1800, 4)])

    with pytest.raises(DataIntegrityError):
        core_logic.settle(context, _requests(("Juice", 1)), False, now=today)

    assert context.catalog.find_normal_row("Juice").quantity == 4


# ---------------------------------------------------------------------------
# Console support
# ---------------------------------------------------------------------------


def test_list_products_adds_sold_out_normal_row(context, today):
    views = core_logic.list_products(context, now=today)

    chips = [view for view in views if view.name == "Chips"]
    assert chips == [
        ProductView("Chips", 1500, 5, "MD Pick"),
        ProductView("Chips", 1500, 0, None),
    ]
    assert [view.name for view in views[:2]] == ["Cola", "Cola"]


def test_list_products_shows_inactive_promotion_stock_as_sold_out(context_factory, today):
    context = context_factory(
        [
            Product("Gum", 800, 5, "Winter Sale"),
            Product("Mints", 600, 3, "Winter Sale"),
            Product("Mints", 600, 2),
        ]
    )

    views = core_logic.list_products(context, now=today)

    assert views == [
        ProductView("Gum", 800, 0, "Winter Sale"),
        ProductView("Mints", 600, 0, "Winter Sale"),
        ProductView("Mints", 600, 2, None),
    ]
    assert core_logic.available_stock(context, "Gum", now=today) == 0


def test_list_products_reflects_settled_stock(context, today):
    core_logic.settle(context, _requests(("Water", 5)), False, now=today)

    water = next(view for view in core_logic.list_products(context, now=today) if view.name == "Water")
    assert water.quantity == 0
    assert not water.in_stock


def test_check_promotion_top_up(context, today):
    assert core_logic.check_promotion_top_up(context, "Cola", 2, now=today) == 1
    assert core_logic.check_promotion_top_up(context, "Water", 2, now=today) is None


def test_warnable_non_promotable_units(context, today):
    assert core_logic.warnable_non_promotable_units(context, "Cola", 12, now=today) == 3
    assert core_logic.warnable_non_promotable_units(context, "Water", 5, now=today) == 0


def test_available_stock(context, today):
    assert core_logic.available_stock(context, "Cola", now=today) == 20
    assert core_logic.available_stock(context, "Cola", now=date(2027, 1, 1)) == 10
