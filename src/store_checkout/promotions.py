"""Promotion eligibility rules.

These helpers answer three questions for the console and the allocation
resolver: is a promotion running, how many free units does a quantity earn,
and how much of a request falls outside full promotion sets.
"""

from __future__ import annotations

from typing import Optional

from . import log
from .catalog import Catalog
from .models import Moment, Promotion


def is_promotion_active(promotion: Promotion, now: Moment) -> bool:
    """Return ``True`` when ``now`` lies inside the inclusive promotion window."""

    return promotion.is_valid_on(now)


def promotion_set_size(promotion: Promotion) -> int:
    """Units of promotional stock consumed per batch of free units."""

    return promotion.buy_count + promotion.get_count


def max_free_units(promotion: Promotion, promotion_quantity: int, now: Moment) -> int:
    """Free units earned by buying ``promotion_quantity`` units.

    Counts complete ``buy_count`` blocks; returns zero outside the window.
    """

    if not is_promotion_active(promotion, now):
        return 0
    return (promotion_quantity // promotion.buy_count) * promotion.get_count


def free_units_for_allocation(promotion: Promotion, covered: int) -> int:
    """Free units granted for ``covered`` units drawn from promotional stock.

    Only complete ``buy_count + get_count`` sets qualify, because the free
    units themselves come out of the same stock.
    """

    return (covered // promotion_set_size(promotion)) * promotion.get_count


def suggested_top_up(catalog: Catalog, product_name: str, requested_qty: int, now: Moment) -> Optional[int]:
    """Extra units the shopper may add to receive them free, or ``None``.

    A suggestion is made only when ``requested_qty`` equals the promotion's
    ``buy_count`` and the promotional row still holds enough units for the
    whole set.
    """

    row = catalog.find_promotion_row(product_name, now)
    if row is None:
        return None
    promotion = catalog.find_promotion(row.promotion_name)
    if requested_qty != promotion.buy_count:
        return None
    if not row.has_enough_stock(requested_qty + promotion.get_count):
        log.debug(
            "No top-up for '%s': promotional stock %d below one full set",
            product_name,
            row.quantity,
        )
        return None
    return promotion.get_count


def non_promotable_units(catalog: Catalog, product_name: str, requested_qty: int, now: Moment) -> int:
    """Units of a request that will not be part of any full promotion set.

    The figure is ``requested_qty`` minus the largest multiple of the set
    size that current promotional stock can supply, never below zero. Products
    without an active promotion return zero; there is nothing to warn about.
    """

    row = catalog.find_promotion_row(product_name, now)
    if row is None:
        return 0
    promotion = catalog.find_promotion(row.promotion_name)
    set_size = promotion_set_size(promotion)
    promotable = (row.quantity // set_size) * set_size
    return max(0, requested_qty - promotable)
