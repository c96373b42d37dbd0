"""In-memory catalog of product rows and promotions.

Rows are stored in an insertion-ordered mapping keyed by
``(name, promotion_name)``, so a product name maps to at most one promotional
row and one normal row; a second promotional row for the same name is
rejected at construction. Stock updates replace the value stored under a key;
nothing else in the catalog ever changes after construction.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple

from . import log
from .models import (
    DataIntegrityError,
    Moment,
    Product,
    Promotion,
)


RowKey = Tuple[str, Optional[str]]


class Catalog:
    """Product and promotion lookups for a single shopping session."""

    def __init__(self, products: Iterable[Product], promotions: Iterable[Promotion]) -> None:
        self._rows: Dict[RowKey, Product] = {}
        self._promotions: Dict[str, Promotion] = {}

        for promotion in promotions:
            if promotion.name in self._promotions:
                raise ValueError(f"Duplicate promotion name: {promotion.name}")
            self._promotions[promotion.name] = promotion

        for product in products:
            if product.key in self._rows:
                raise ValueError(
                    f"Duplicate catalog row for '{product.name}' (promotion={product.promotion_name})"
                )
            if product.is_promotional and self.find_promotion_row_any(product.name) is not None:
                raise ValueError(f"Product '{product.name}' has more than one promotional row")
            self._rows[product.key] = product

        log.debug(
            "Catalog built with %d rows and %d promotions",
            len(self._rows),
            len(self._promotions),
        )

    def list_all(self) -> List[Product]:
        """Return every row in load order."""

        return list(self._rows.values())

    def list_promotions(self) -> List[Promotion]:
        return list(self._promotions.values())

    def has_product(self, name: str) -> bool:
        return any(row.name == name for row in self._rows.values())

    def find_promotion(self, name: str) -> Promotion:
        """Resolve a promotion referenced by a product row.

        Raises:
            DataIntegrityError: If no promotion carries ``name``.
        """

        try:
            return self._promotions[name]
        except KeyError as exc:
            log.error("Product row references unknown promotion '%s'", name)
            raise DataIntegrityError(f"Unknown promotion referenced by catalog: {name}") from exc

    def find_promotion_row_any(self, name: str) -> Optional[Product]:
        """Return the promotional row for ``name`` regardless of validity."""

        for row in self._rows.values():
            if row.name == name and row.is_promotional:
                return row
        return None

    def find_promotion_row(self, name: str, now: Moment) -> Optional[Product]:
        """Return the promotional row for ``name`` when its promotion is valid at ``now``."""

        row = self.find_promotion_row_any(name)
        if row is None:
            return None
        promotion = self.find_promotion(row.promotion_name)
        if not promotion.is_valid_on(now):
            log.debug("Promotion '%s' for '%s' is not valid on %s", promotion.name, name, now)
            return None
        return row

    def find_normal_row(self, name: str) -> Optional[Product]:
        return self._rows.get((name, None))

    def save(self, product: Product) -> None:
        """Replace the row stored under ``product.key``.

        Raises:
            DataIntegrityError: If the catalog has no row with that key.
        """

        if product.key not in self._rows:
            raise DataIntegrityError(
                f"Cannot save unknown catalog row '{product.name}' (promotion={product.promotion_name})"
            )
        self._rows[product.key] = product
        log.debug("Saved '%s' (promotion=%s) with quantity %d", product.name, product.promotion_name, product.quantity)

    def snapshot(self) -> Dict[RowKey, int]:
        """Map every row key to its current quantity."""

        return {key: row.quantity for key, row in self._rows.items()}
