"""Domain values and errors shared by the settlement layers.

Products and promotions are immutable. Stock changes never edit a
:class:`Product` in place; the catalog swaps in a fresh value produced by
:meth:`Product.remove_stock`. Only :class:`PurchaseLineRequest` is mutable,
and only for the lifetime of a single purchase call.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Optional, Tuple, Union


class SettlementError(Exception):
    """Raised when a purchase cannot be settled."""


class InvalidRequestError(SettlementError):
    """Raised for malformed purchase requests (empty, non-positive, unparseable)."""


class UnknownProductError(InvalidRequestError):
    """Raised when a request or catalog update names a product that does not exist."""


class InsufficientStockError(SettlementError):
    """Raised when promotional plus normal stock cannot cover a request."""


class DataIntegrityError(SettlementError):
    """Raised when a product references a promotion missing from the promotion table."""


Moment = Union[date, datetime]


def _as_date(moment: Moment) -> date:
    return moment.date() if isinstance(moment, datetime) else moment


@dataclass(frozen=True)
class Promotion:
    """Buy-N-get-M rule valid over an inclusive calendar range."""

    name: str
    buy_count: int
    get_count: int
    start_date: date
    end_date: date

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("Promotion name must not be blank")
        if self.buy_count <= 0:
            raise ValueError(f"Promotion '{self.name}' buy count must be greater than zero")
        if self.get_count <= 0:
            raise ValueError(f"Promotion '{self.name}' get count must be greater than zero")
        if self.start_date is None or self.end_date is None:
            raise ValueError(f"Promotion '{self.name}' dates must be provided")
        if self.start_date > self.end_date:
            raise ValueError(f"Promotion '{self.name}' starts after it ends")

    def is_valid_on(self, moment: Moment) -> bool:
        """Return ``True`` when ``moment`` falls inside the promotion window."""

        return self.start_date <= _as_date(moment) <= self.end_date


@dataclass(frozen=True)
class Product:
    """One catalog row: a priced stock pool, optionally tied to a promotion."""

    name: str
    price: int
    quantity: int
    promotion_name: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("Product name must not be blank")
        if self.price <= 0:
            raise ValueError(f"Product '{self.name}' price must be greater than zero")
        if self.quantity < 0:
            raise ValueError(f"Product '{self.name}' quantity must not be negative")

    @property
    def key(self) -> Tuple[str, Optional[str]]:
        return (self.name, self.promotion_name)

    @property
    def is_promotional(self) -> bool:
        return self.promotion_name is not None

    def has_enough_stock(self, requested: int) -> bool:
        return self.quantity >= requested

    def remove_stock(self, amount: int) -> "Product":
        """Return a copy of this row with ``amount`` units debited.

        Raises:
            InsufficientStockError: If the row holds fewer than ``amount`` units.
        """

        if not self.has_enough_stock(amount):
            raise InsufficientStockError(
                f"Not enough stock for '{self.name}': requested {amount}, available {self.quantity}"
            )
        return replace(self, quantity=self.quantity - amount)


@dataclass
class PurchaseLineRequest:
    """Shopper intent for one product, amendable once by a promotion top-up."""

    product_name: str
    quantity: int
    amended: bool = field(default=False, compare=False)

    def add_quantity(self, extra: int) -> None:
        """Grow the requested quantity after the shopper accepted a top-up.

        Raises:
            InvalidRequestError: If ``extra`` is not positive or the request
                was already amended.
        """

        if extra <= 0:
            raise InvalidRequestError("Additional quantity must be greater than zero")
        if self.amended:
            raise InvalidRequestError(f"Request for '{self.product_name}' was already amended")
        self.quantity += extra
        self.amended = True


@dataclass(frozen=True)
class SettledLine:
    """Paid quantity of a product at a single unit price."""

    product_name: str
    paid_quantity: int
    unit_price: int
    is_promotion_line: bool = False

    @property
    def amount(self) -> int:
        return self.paid_quantity * self.unit_price


@dataclass(frozen=True)
class FreeLine:
    """Units handed out at no charge because a promotion set was fulfilled."""

    product_name: str
    free_quantity: int


@dataclass(frozen=True)
class Receipt:
    """Settled purchase with its derived amounts."""

    lines: Tuple[SettledLine, ...]
    free_lines: Tuple[FreeLine, ...]
    total_amount: int
    promotion_discount_amount: int
    membership_discount_amount: int
    final_amount: int

    @property
    def total_quantity(self) -> int:
        return sum(line.paid_quantity for line in self.lines)


@dataclass(frozen=True)
class ProductView:
    """Read-only row shown in the product listing."""

    name: str
    price: int
    quantity: int
    promotion_name: Optional[str]

    @property
    def in_stock(self) -> bool:
        return self.quantity > 0


__all__ = [
    "SettlementError",
    "InvalidRequestError",
    "UnknownProductError",
    "InsufficientStockError",
    "DataIntegrityError",
    "Promotion",
    "Product",
    "PurchaseLineRequest",
    "SettledLine",
    "FreeLine",
    "Receipt",
    "ProductView",
]
