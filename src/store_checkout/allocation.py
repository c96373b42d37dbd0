"""Allocation of a requested quantity across promotional and normal stock.

Promotional stock is always drained first: it is the scarcer pool and
expires with its promotion. Whatever it cannot cover is billed from the
normal row. Planning is separated from debiting so that a shortfall in the
normal row is detected before the promotional row is touched.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

from . import log
from .catalog import Catalog
from .models import FreeLine, InsufficientStockError, Moment, Product, SettledLine
from .promotions import free_units_for_allocation


@dataclass(frozen=True)
class Allocation:
    """How one request is split between the two stock pools."""

    product_name: str
    promotion_row: Optional[Product]
    promotion_quantity: int
    normal_row: Optional[Product]
    normal_quantity: int
    free_quantity: int

    @property
    def requested_quantity(self) -> int:
        return self.promotion_quantity + self.normal_quantity

    def settled_lines(self) -> List[SettledLine]:
        """Paid lines, merged when both pools share a price.

        The promotional portion always comes first so receipt lookups by
        product name see the promotional price.
        """

        portions: List[Tuple[int, int]] = []
        if self.promotion_quantity > 0 and self.promotion_row is not None:
            portions.append((self.promotion_quantity, self.promotion_row.price))
        if self.normal_quantity > 0 and self.normal_row is not None:
            portions.append((self.normal_quantity, self.normal_row.price))

        if len(portions) == 2 and portions[0][1] == portions[1][1]:
            portions = [(portions[0][0] + portions[1][0], portions[0][1])]

        return [
            SettledLine(product_name=self.product_name, paid_quantity=quantity, unit_price=price)
            for quantity, price in portions
        ]

    def free_line(self) -> Optional[FreeLine]:
        if self.free_quantity <= 0:
            return None
        return FreeLine(product_name=self.product_name, free_quantity=self.free_quantity)


def plan_allocation(catalog: Catalog, product_name: str, quantity: int, now: Moment) -> Allocation:
    """Work out the split for ``quantity`` units without touching stock.

    Args:
        catalog (Catalog): Catalog holding the current rows.
        product_name (str): Exact product name.
        quantity (int): Units requested, already validated as positive.
        now (date | datetime): Reference instant for promotion validity.

    Returns:
        Allocation: Promotional, normal and free quantities for the request.

    Raises:
        InsufficientStockError: If the normal row is missing or short for the
            remainder left after promotional stock.
        DataIntegrityError: If the promotional row names an unknown promotion.
    """

    promotion_row = catalog.find_promotion_row(product_name, now)
    covered = 0
    free = 0
    if promotion_row is not None:
        promotion = catalog.find_promotion(promotion_row.promotion_name)
        covered = min(quantity, promotion_row.quantity)
        free = free_units_for_allocation(promotion, covered)

    remainder = quantity - covered
    normal_row = catalog.find_normal_row(product_name)
    if remainder > 0 and (normal_row is None or not normal_row.has_enough_stock(remainder)):
        available = normal_row.quantity if normal_row is not None else 0
        log.warning(
            "Normal stock short for '%s': need %d, available %d",
            product_name,
            remainder,
            available,
        )
        raise InsufficientStockError(
            f"Not enough stock for '{product_name}': requested {quantity}, "
            f"available {covered + available}"
        )

    return Allocation(
        product_name=product_name,
        promotion_row=promotion_row,
        promotion_quantity=covered,
        normal_row=normal_row if remainder > 0 else None,
        normal_quantity=remainder,
        free_quantity=free,
    )


def apply_allocation(catalog: Catalog, allocation: Allocation) -> None:
    """Debit both pools according to ``allocation``."""

    if allocation.promotion_quantity > 0 and allocation.promotion_row is not None:
        catalog.save(allocation.promotion_row.remove_stock(allocation.promotion_quantity))
    if allocation.normal_quantity > 0 and allocation.normal_row is not None:
        catalog.save(allocation.normal_row.remove_stock(allocation.normal_quantity))


def allocate(catalog: Catalog, product_name: str, quantity: int, now: Moment) -> Allocation:
    """Plan and immediately apply the allocation for one request."""

    allocation = plan_allocation(catalog, product_name, quantity, now)
    apply_allocation(catalog, allocation)
    log.debug(
        "Allocated '%s': promotion=%d normal=%d free=%d",
        product_name,
        allocation.promotion_quantity,
        allocation.normal_quantity,
        allocation.free_quantity,
    )
    return allocation
