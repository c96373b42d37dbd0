"""Receipt amounts derived from settled lines.

All amounts are integers in the smallest currency unit. The membership
discount is computed with :class:`~decimal.Decimal` and truncated toward
zero so that a 30% rate never rounds a discount up.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import ROUND_DOWN, Decimal
from typing import Iterable, List, Sequence

from . import log
from .constants import DEFAULT_MEMBERSHIP_CAP, DEFAULT_MEMBERSHIP_RATE
from .models import FreeLine, Receipt, SettledLine, SettlementError


@dataclass(frozen=True)
class MembershipPolicy:
    """Membership discount rate and the absolute cap applied to it."""

    rate: Decimal = DEFAULT_MEMBERSHIP_RATE
    cap: int = DEFAULT_MEMBERSHIP_CAP

    def __post_init__(self) -> None:
        if not Decimal("0") <= self.rate <= Decimal("1"):
            raise ValueError(f"Membership rate must be between 0 and 1, got {self.rate}")
        if self.cap < 0:
            raise ValueError(f"Membership cap must not be negative, got {self.cap}")


def mark_promotion_lines(lines: Iterable[SettledLine], free_lines: Iterable[FreeLine]) -> List[SettledLine]:
    """Flag every line whose product also received free units."""

    promoted = {free.product_name for free in free_lines}
    return [
        replace(line, is_promotion_line=True) if line.product_name in promoted else line
        for line in lines
    ]


def calculate_total_amount(lines: Sequence[SettledLine]) -> int:
    return sum(line.amount for line in lines)


def calculate_promotion_discount(lines: Sequence[SettledLine], free_lines: Sequence[FreeLine]) -> int:
    """Value of the free units, priced at the first matching paid line."""

    discount = 0
    for free in free_lines:
        unit_price = next(
            (line.unit_price for line in lines if line.product_name == free.product_name),
            0,
        )
        discount += free.free_quantity * unit_price
    return discount


def calculate_membership_discount(
    lines: Sequence[SettledLine],
    apply_membership: bool,
    policy: MembershipPolicy = MembershipPolicy(),
) -> int:
    """Capped membership discount over lines that received no free units."""

    if not apply_membership:
        return 0
    discountable = sum(line.amount for line in lines if not line.is_promotion_line)
    raw = (Decimal(discountable) * policy.rate).to_integral_value(rounding=ROUND_DOWN)
    return min(int(raw), policy.cap)


def build_receipt(
    lines: Sequence[SettledLine],
    free_lines: Sequence[FreeLine],
    apply_membership: bool,
    policy: MembershipPolicy = MembershipPolicy(),
) -> Receipt:
    """Assemble an immutable :class:`Receipt` from settled lines.

    Args:
        lines (Sequence[SettledLine]): Paid lines, already marked with
            :func:`mark_promotion_lines`.
        free_lines (Sequence[FreeLine]): Free units granted per product.
        apply_membership (bool): Whether the shopper is a member.
        policy (MembershipPolicy): Rate and cap of the membership discount.

    Returns:
        Receipt: Receipt whose ``final_amount`` equals total minus both
            discounts.

    Raises:
        SettlementError: If the discounts exceed the total amount.
    """

    total = calculate_total_amount(lines)
    promotion_discount = calculate_promotion_discount(lines, free_lines)
    membership_discount = calculate_membership_discount(lines, apply_membership, policy)
    final = total - promotion_discount - membership_discount
    if final < 0:
        log.error(
            "Negative receipt total: total=%d promotion=%d membership=%d",
            total,
            promotion_discount,
            membership_discount,
        )
        raise SettlementError(
            f"Discounts ({promotion_discount + membership_discount}) exceed total amount ({total})"
        )

    return Receipt(
        lines=tuple(lines),
        free_lines=tuple(free_lines),
        total_amount=total,
        promotion_discount_amount=promotion_discount,
        membership_discount_amount=membership_discount,
        final_amount=final,
    )
