"""Settlement engine for the store checkout.

This module orchestrates a purchase: it validates every requested line
against the catalog, allocates stock line by line, marks the lines that
earned free units, and hands the result to the receipt calculator. The data
access layer is only used to build the :class:`RuntimeContext`; after that
the engine works purely on the in-memory :class:`~store_checkout.catalog.Catalog`.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from . import data_manager, log
from .allocation import allocate
from .catalog import Catalog
from .constants import EXPECTED_SCHEMA_VERSION
from .models import (
    FreeLine,
    InsufficientStockError,
    InvalidRequestError,
    Moment,
    ProductView,
    PurchaseLineRequest,
    Receipt,
    SettledLine,
    UnknownProductError,
)
from .promotions import non_promotable_units, suggested_top_up
from .receipt import MembershipPolicy, build_receipt, mark_promotion_lines


@dataclass(frozen=True)
class RuntimeContext:
    """Configuration plus the catalog a shopping session settles against."""

    settings: data_manager.ConfigSettings
    catalog: Catalog

    @property
    def membership_policy(self) -> MembershipPolicy:
        return MembershipPolicy(
            rate=self.settings.membership_rate,
            cap=self.settings.membership_cap,
        )


def _resolve_timestamp(candidate: Optional[Moment]) -> Moment:
    """Return ``candidate`` or, when it is ``None``, the current local time.

    Promotions run on store-local calendar dates, so the fallback is a naive
    local :func:`datetime.now` rather than a UTC instant.
    """

    return candidate if candidate is not None else datetime.now()


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration and catalog data into a :class:`RuntimeContext`.

    Args:
        config_path (Path | None): Optional override path for ``config.ini``.
            When omitted the data layer searches upwards from the working
            directory.

    Returns:
        RuntimeContext: Context owning a freshly loaded catalog.

    Raises:
        FileNotFoundError: If the configuration or data files are missing.
        KeyError: When mandatory configuration options are missing.
        ValueError: If a product or promotion row is malformed.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    products, promotions = data_manager.load_tables(settings.data_file)
    log.info("Loaded runtime context for '%s' from '%s'", settings.store_name, settings.data_file)
    return RuntimeContext(settings=settings, catalog=Catalog(products, promotions))


def ensure_schema_version(context: RuntimeContext) -> None:
    """Reject data files declared with a schema this code does not understand.

    Raises:
        RuntimeError: If ``SchemaVersion`` differs from ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Data schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Data schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def list_products(context: RuntimeContext, *, now: Optional[Moment] = None) -> List[ProductView]:
    """Return display rows for every catalog entry in load order.

    A product stocked only under an active promotion is followed by a
    synthetic normal row with zero quantity, so the listing shows that the
    regular-price pool is sold out rather than leaving it out. Promotional
    rows whose promotion is not running at ``now`` cannot be sold and are
    listed with zero quantity.

    Args:
        context (RuntimeContext): Session context.
        now (date | datetime | None): Reference instant for promotion
            validity. Defaults to the current local time.

    Returns:
        list[ProductView]: Rows ready for presentation.
    """
    moment = _resolve_timestamp(now)
    catalog = context.catalog
    views: List[ProductView] = []
    for row in catalog.list_all():
        active = row.is_promotional and catalog.find_promotion_row(row.name, moment) is not None
        sellable = active or not row.is_promotional
        views.append(
            ProductView(
                name=row.name,
                price=row.price,
                quantity=row.quantity if sellable else 0,
                promotion_name=row.promotion_name,
            )
        )
        if active and catalog.find_normal_row(row.name) is None:
            views.append(ProductView(name=row.name, price=row.price, quantity=0, promotion_name=None))
    return views


def check_promotion_top_up(
    context: RuntimeContext,
    product_name: str,
    quantity: int,
    *,
    now: Optional[Moment] = None,
) -> Optional[int]:
    """Suggest extra free units the shopper could still claim for a line.

    Returns:
        int | None: Number of units to add, or ``None`` when no suggestion
            applies.
    """
    suggestion = suggested_top_up(context.catalog, product_name, quantity, _resolve_timestamp(now))
    if suggestion is not None:
        log.debug("Top-up of %d suggested for '%s' (quantity=%d)", suggestion, product_name, quantity)
    return suggestion


def warnable_non_promotable_units(
    context: RuntimeContext,
    product_name: str,
    quantity: int,
    *,
    now: Optional[Moment] = None,
) -> int:
    """Units of a line that will be billed without any promotion benefit."""
    return non_promotable_units(context.catalog, product_name, quantity, _resolve_timestamp(now))


def require_positive_quantity(quantity: object) -> int:
    """Validate that a requested quantity is a strictly positive integer.

    Raises:
        InvalidRequestError: If ``quantity`` is not an ``int`` or is not
            greater than zero.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        log.error("Quantity validation failed: %r", quantity)
        raise InvalidRequestError(f"Quantity must be a whole number, got {quantity!r}")
    if quantity <= 0:
        log.error("Quantity validation failed: %s", quantity)
        raise InvalidRequestError("Quantity must be greater than zero")
    return quantity


def available_stock(context: RuntimeContext, product_name: str, *, now: Optional[Moment] = None) -> int:
    """Units sellable for ``product_name``: active promotional plus normal stock."""
    moment = _resolve_timestamp(now)
    catalog = context.catalog
    promotion_row = catalog.find_promotion_row(product_name, moment)
    normal_row = catalog.find_normal_row(product_name)
    total = 0
    if promotion_row is not None:
        total += promotion_row.quantity
    if normal_row is not None:
        total += normal_row.quantity
    return total


def validate_requests(
    context: RuntimeContext,
    requests: Optional[Sequence[PurchaseLineRequest]],
    *,
    now: Optional[Moment] = None,
) -> None:
    """Check that every line of a purchase can be satisfied.

    Lines naming the same product are summed before comparing against stock,
    so a purchase that would only run dry halfway through the mutation pass
    is rejected up front.

    Args:
        context (RuntimeContext): Session context.
        requests (Sequence[PurchaseLineRequest] | None): Lines to settle.
        now (date | datetime | None): Reference instant for promotions.

    Raises:
        InvalidRequestError: If the list is empty or a quantity is invalid.
        UnknownProductError: If a product name is not in the catalog.
        DataIntegrityError: If a promotional row names a missing promotion.
        InsufficientStockError: If combined stock cannot cover a product.
    """
    if not requests:
        log.warning("Rejected purchase with no line items")
        raise InvalidRequestError("No items to purchase")

    moment = _resolve_timestamp(now)
    demanded: Dict[str, int] = OrderedDict()
    for request in requests:
        require_positive_quantity(request.quantity)
        if not context.catalog.has_product(request.product_name):
            log.warning("Rejected purchase of unknown product '%s'", request.product_name)
            raise UnknownProductError(f"Unknown product: {request.product_name}")
        demanded[request.product_name] = demanded.get(request.product_name, 0) + request.quantity

    for product_name, quantity in demanded.items():
        available = available_stock(context, product_name, now=moment)
        if available < quantity:
            log.warning(
                "Rejected purchase of '%s': requested %d, available %d",
                product_name,
                quantity,
                available,
            )
            raise InsufficientStockError(
                f"Not enough stock for '{product_name}': requested {quantity}, available {available}"
            )


def settle(
    context: RuntimeContext,
    requests: Sequence[PurchaseLineRequest],
    apply_membership: bool,
    *,
    now: Optional[Moment] = None,
) -> Receipt:
    """Settle a purchase and return its receipt.

    The call runs ``validate -> allocate -> mark promotion lines -> compute
    receipt``. Validation covers every line before any stock is debited, so a
    rejected purchase leaves the catalog untouched. Allocation then debits
    stock line by line in request order, promotional stock first.

    Args:
        context (RuntimeContext): Session context whose catalog is debited.
        requests (Sequence[PurchaseLineRequest]): Lines in shopper order.
        apply_membership (bool): Whether to grant the membership discount.
        now (date | datetime | None): Reference instant for promotion
            validity. Defaults to the current local time.

    Returns:
        Receipt: Settled lines, free lines and the derived amounts.

    Raises:
        InvalidRequestError: For empty requests, bad quantities or unknown
            products.
        InsufficientStockError: If any product lacks combined stock.
        DataIntegrityError: If a product references a missing promotion.
    """
    moment = _resolve_timestamp(now)
    validate_requests(context, requests, now=moment)

    lines: List[SettledLine] = []
    free_lines: List[FreeLine] = []
    for request in requests:
        allocation = allocate(context.catalog, request.product_name, request.quantity, moment)
        lines.extend(allocation.settled_lines())
        free_line = allocation.free_line()
        if free_line is not None:
            free_lines.append(free_line)

    marked = mark_promotion_lines(lines, free_lines)
    receipt = build_receipt(marked, free_lines, apply_membership, context.membership_policy)
    log.info(
        "Settled purchase of %d lines (total=%d, promotion=%d, membership=%d, final=%d)",
        len(requests),
        receipt.total_amount,
        receipt.promotion_discount_amount,
        receipt.membership_discount_amount,
        receipt.final_amount,
    )
    return receipt
