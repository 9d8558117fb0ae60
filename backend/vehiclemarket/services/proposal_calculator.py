"""
Proposal pricing math: discounts, down payment and remaining balance.

Amounts are kept at full Decimal precision; rounding happens only when a
figure is formatted for display.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Sequence

from vehiclemarket.config import settings
from vehiclemarket.core.exceptions import InvalidProposalInput
from vehiclemarket.schemas.negotiation import Bucket, BucketSummary, ProposalQuote

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def _validate_discount(value: Decimal, label: str = "Discount") -> None:
    if value < settings.MIN_DISCOUNT_PERCENT or value > settings.MAX_DISCOUNT_PERCENT:
        raise InvalidProposalInput(
            f"{label} must be between {settings.MIN_DISCOUNT_PERCENT}% "
            f"and {settings.MAX_DISCOUNT_PERCENT}%, got {value}%"
        )


def _validate_downpayment(value: Decimal) -> None:
    if value < settings.MIN_DOWNPAYMENT_PERCENT or value > settings.MAX_DOWNPAYMENT_PERCENT:
        raise InvalidProposalInput(
            f"Down payment must be between {settings.MIN_DOWNPAYMENT_PERCENT}% "
            f"and {settings.MAX_DOWNPAYMENT_PERCENT}%, got {value}%"
        )


def _validate_bucket(bucket: Bucket) -> None:
    if bucket.total_units < 1:
        raise InvalidProposalInput(f"Bucket {bucket.key} must hold at least one unit")
    if bucket.unit_price < ZERO or bucket.bucket_total < ZERO:
        raise InvalidProposalInput(f"Bucket {bucket.key} has a negative price")
    if bucket.bucket_total != bucket.unit_price * bucket.total_units:
        raise InvalidProposalInput(
            f"Bucket {bucket.key} total {bucket.bucket_total} does not match "
            f"{bucket.total_units} units at {bucket.unit_price}"
        )


def price(
    buckets: Sequence[Bucket],
    discount_percent: Decimal,
    downpayment_percent: Decimal,
    bucket_discounts: Optional[Dict[str, Decimal]] = None
) -> ProposalQuote:
    """
    Price a set of buckets.

    Args:
        buckets: Buckets being offered
        discount_percent: Discount applied to every bucket without an override
        downpayment_percent: Share of the final price paid up front
        bucket_discounts: Optional per-bucket discount overrides keyed by bucket key

    Returns:
        ProposalQuote with the per-bucket breakdown and aggregate figures

    Raises:
        InvalidProposalInput: If a percentage is out of range, a bucket is
            malformed or there is nothing to price
    """
    discount_percent = Decimal(discount_percent)
    downpayment_percent = Decimal(downpayment_percent)
    bucket_discounts = {k: Decimal(v) for k, v in (bucket_discounts or {}).items()}

    if not buckets:
        raise InvalidProposalInput("At least one bucket is required")

    _validate_discount(discount_percent)
    _validate_downpayment(downpayment_percent)
    for key, value in bucket_discounts.items():
        _validate_discount(value, label=f"Discount for bucket {key}")
    for bucket in buckets:
        _validate_bucket(bucket)

    summaries: List[BucketSummary] = []
    original_total = ZERO
    final_price = ZERO

    for bucket in buckets:
        bucket_discount = bucket_discounts.get(bucket.key, discount_percent)
        summary = BucketSummary(
            key=bucket.key,
            name=bucket.name,
            total=bucket.bucket_total,
            discount_percent=bucket_discount,
            total_units=bucket.total_units,
            unit_price=bucket.unit_price,
            currency=bucket.currency,
            brand=bucket.brand,
            model=bucket.model,
            variant=bucket.variant,
            color=bucket.color,
            year=bucket.year,
            condition=bucket.condition,
            body_type=bucket.body_type,
            main_image_url=bucket.main_image_url,
        )
        summaries.append(summary)
        original_total += bucket.bucket_total
        final_price += summary.discounted_total

    if original_total <= ZERO:
        raise InvalidProposalInput("Bucket total must be greater than zero")

    discount_amount = original_total - final_price
    downpayment_amount = max(ZERO, final_price * downpayment_percent / HUNDRED)
    remaining_balance = max(ZERO, final_price - downpayment_amount)

    # Report the effective discount when overrides differ from the global one
    overridden = any(s.discount_percent != discount_percent for s in summaries)
    effective_discount = discount_amount / original_total * HUNDRED if overridden else discount_percent

    return ProposalQuote(
        discount_percent=effective_discount,
        discount_amount=discount_amount,
        final_price=final_price,
        downpayment_percent=downpayment_percent,
        downpayment_amount=downpayment_amount,
        remaining_balance=remaining_balance,
        bucket_total=original_total,
        bucket_name=buckets[0].name or "Negotiation Items",
        bucket_summaries=summaries,
    )


def display_amount(value: Decimal, places: int = 0) -> Decimal:
    """Round a monetary amount for presentation only."""
    return Decimal(value).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def display_percent(value: Decimal) -> int:
    """Round a percentage to the nearest whole unit for presentation only."""
    return int(Decimal(value).quantize(Decimal(1), rounding=ROUND_HALF_UP))
