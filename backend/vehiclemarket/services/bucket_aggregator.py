"""
Bucket aggregation for selected vehicles.

Line items that share brand, model, variant, color, year, condition and body
type are priced together as one bucket. Aggregation is a pure function of the
input set: any ordering of the same items yields the same buckets.
"""

import logging
from decimal import Decimal
from typing import Iterable, List, Optional

from vehiclemarket.schemas.negotiation import Bucket, LineItem

logger = logging.getLogger(__name__)


def _text(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def build_bucket_key(item: LineItem) -> str:
    """
    Build the grouping key of a line item.

    Args:
        item: Selected line item

    Returns:
        Pipe-joined key of the normalized grouping attributes, or the
        item's precomputed key when it carries one
    """
    if item.bucket_key:
        return item.bucket_key

    return "|".join([
        _text(item.brand),
        _text(item.model),
        _text(item.variant),
        _text(item.color),
        str(item.year or 0),
        _text(item.condition),
        _text(item.body_type),
    ])


def filter_for_seller(
    items: Iterable[LineItem],
    seller_id: Optional[str] = None,
    seller_company: Optional[str] = None
) -> List[LineItem]:
    """Keep the items offered by one seller (by id, falling back to company name)."""
    items = list(items)
    if seller_id:
        return [i for i in items if i.seller_id == seller_id]
    if seller_company:
        return [i for i in items if i.seller_company == seller_company]
    return items


def group_buckets(items: Iterable[LineItem]) -> List[Bucket]:
    """
    Group line items into buckets.

    The first item seen for a key provides its display attributes, unit price
    and currency; every unit in the bucket is priced at that unit price.
    Buckets are returned sorted by key so the result does not depend on
    input order.

    Args:
        items: Selected line items

    Returns:
        One bucket per distinct grouping key
    """
    # Sort first so "first seen" is stable for any permutation of the input
    ordered = sorted(
        (i for i in items if i.is_selected),
        key=lambda i: (build_bucket_key(i), i.id),
    )

    buckets: dict[str, Bucket] = {}
    for item in ordered:
        key = build_bucket_key(item)
        line_total = item.price * item.quantity
        existing = buckets.get(key)

        if existing is None:
            buckets[key] = Bucket(
                key=key,
                name=item.name,
                brand=item.brand,
                model=item.model,
                variant=item.variant,
                color=item.color,
                year=item.year,
                condition=item.condition,
                body_type=item.body_type,
                location=item.location,
                main_image_url=item.main_image_url,
                unit_price=item.price,
                currency=item.currency,
                total_units=item.quantity,
                bucket_total=line_total,
            )
            continue

        if item.currency != existing.currency:
            logger.warning(
                f"Currency mismatch in bucket {key}: keeping {existing.currency}, "
                f"item {item.id} is priced in {item.currency}"
            )
        if item.price != existing.unit_price:
            logger.warning(
                f"Price mismatch in bucket {key}: keeping {existing.unit_price}, "
                f"item {item.id} is priced at {item.price}"
            )

        existing.total_units += item.quantity
        existing.bucket_total = existing.unit_price * existing.total_units

    return [buckets[key] for key in sorted(buckets)]


def aggregate_total(buckets: Iterable[Bucket]) -> Decimal:
    """Sum of pre-discount bucket totals."""
    return sum((b.bucket_total for b in buckets), Decimal("0"))
