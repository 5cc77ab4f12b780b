"""
Catalog statistics: category counts and wholesale price range.

Used for projected stats while validating a file and for actual stats of a
committed catalog. One linear pass either way.
"""

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from models.catalog import CatalogStats, PriceRange, ProductRecord


class StatsAccumulator:
    """Incremental stats over records fed one at a time."""

    def __init__(self) -> None:
        self.total = 0
        self.categories: dict[str, int] = {}
        self.min_price: Optional[Decimal] = None
        self.max_price: Optional[Decimal] = None
        self.last_updated: Optional[datetime] = None

    def add(self, record: ProductRecord) -> None:
        self.total += 1

        category = record.category.value
        self.categories[category] = self.categories.get(category, 0) + 1

        price = record.wholesale_price
        if self.min_price is None or price < self.min_price:
            self.min_price = price
        if self.max_price is None or price > self.max_price:
            self.max_price = price

        stamp = record.last_updated
        if stamp is not None and (self.last_updated is None or stamp > self.last_updated):
            self.last_updated = stamp

    def result(self) -> CatalogStats:
        price_range = None
        if self.min_price is not None and self.max_price is not None:
            price_range = PriceRange(min=self.min_price, max=self.max_price)

        return CatalogStats(
            total_products=self.total,
            categories=dict(self.categories),
            price_range=price_range,
            last_updated=self.last_updated,
        )


def compute_catalog_stats(records: Iterable[ProductRecord]) -> CatalogStats:
    """
    Summarize a set of catalog records.

    An empty input yields zero counts and price_range=None.
    """
    accumulator = StatsAccumulator()
    for record in records:
        accumulator.add(record)
    return accumulator.result()
