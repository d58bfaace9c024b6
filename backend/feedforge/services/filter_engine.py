"""
Product filter engine.

Pure and lazy: ``apply_filter`` wraps a product iterator and yields accepted
products while tallying counters. Rules run in a fixed order and stop at the
first rejection:

1. availability must be IN_STOCK (always applied, whatever the FilterSpec says)
2. id not in ``exclude_product_ids``
3. price within ``min_price`` / ``max_price``
4. brand, category, tags, collections within each constrained inclusion set
"""
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional

from feedforge.models.product import Availability
from feedforge.schemas.feed import FilterSpec

REASON_OUT_OF_STOCK = "out_of_stock"
REASON_EXCLUDED_ID = "excluded_id"
REASON_PRICE = "price"
REASON_BRAND = "brand"
REASON_CATEGORY = "category"
REASON_TAGS = "tags"
REASON_COLLECTIONS = "collections"


@dataclass
class FilterStats:
    processed: int = 0
    included: int = 0
    excluded: int = 0
    reasons: Counter = field(default_factory=Counter)

    def as_dict(self) -> dict:
        return {
            "processed": self.processed,
            "included": self.included,
            "excluded": self.excluded,
            "reasons": dict(self.reasons),
        }


def _value_set(product, key: str) -> frozenset:
    """Tags/collections come from metadata, falling back to the product's own list."""
    metadata = getattr(product, "metadata_", None) or {}
    values = metadata.get(key)
    if values is None:
        values = getattr(product, key, None)
    if not values:
        return frozenset()
    if isinstance(values, str):
        values = [v.strip() for v in values.split(",")]
    return frozenset(str(v) for v in values if v)


def rejection_reason(product, spec: FilterSpec) -> Optional[str]:
    """Return the first rule the product fails, or None if accepted."""
    if product.availability != Availability.IN_STOCK.value:
        return REASON_OUT_OF_STOCK

    if product.id in spec.exclude_product_ids:
        return REASON_EXCLUDED_ID

    if spec.min_price is not None and product.price < spec.min_price:
        return REASON_PRICE
    if spec.max_price is not None and product.price > spec.max_price:
        return REASON_PRICE

    if spec.include_brands is not None and product.brand not in spec.include_brands:
        return REASON_BRAND
    if spec.include_categories is not None and product.category not in spec.include_categories:
        return REASON_CATEGORY
    if spec.include_tags is not None and not (_value_set(product, "tags") & spec.include_tags):
        return REASON_TAGS
    if spec.include_collections is not None and not (
        _value_set(product, "collections") & spec.include_collections
    ):
        return REASON_COLLECTIONS

    return None


class FilterResult:
    """Lazy filtered stream. ``stats`` is complete once ``products`` is exhausted."""

    def __init__(self, products: Iterable, spec: FilterSpec):
        self.spec = spec
        self.stats = FilterStats()
        self._source = products

    def __iter__(self) -> Iterator:
        stats = self.stats
        for product in self._source:
            stats.processed += 1
            reason = rejection_reason(product, self.spec)
            if reason is None:
                stats.included += 1
                yield product
            else:
                stats.excluded += 1
                stats.reasons[reason] += 1


def apply_filter(products: Iterable, spec: Optional[FilterSpec] = None) -> FilterResult:
    return FilterResult(products, spec or FilterSpec())
