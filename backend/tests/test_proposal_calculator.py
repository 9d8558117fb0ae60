"""Tests for proposal pricing math."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from vehiclemarket.core.exceptions import InvalidProposalInput
from vehiclemarket.schemas.negotiation import Bucket
from vehiclemarket.services.bucket_aggregator import group_buckets
from vehiclemarket.services.proposal_calculator import display_amount, display_percent, price


def test_three_corollas_at_ten_percent(corolla_items):
    """Test 3 x 10,000 with 10% discount and 20% down payment."""
    quote = price(group_buckets(corolla_items), Decimal("10"), Decimal("20"))

    assert quote.bucket_total == Decimal("30000")
    assert quote.final_price == Decimal("27000")
    assert quote.discount_amount == Decimal("3000")
    assert quote.downpayment_amount == Decimal("5400")
    assert quote.remaining_balance == Decimal("21600")
    assert quote.discount_percent == Decimal("10")
    assert quote.bucket_name == "Toyota Corolla"

    summary = quote.bucket_summaries[0]
    assert summary.total == Decimal("30000")
    assert summary.total_units == 3
    assert summary.discounted_total == Decimal("27000")


@pytest.mark.parametrize("discount", ["0", "0.5", "7.25", "12.5", "30"])
@pytest.mark.parametrize("downpayment", ["10", "33.3", "50", "99.99", "100"])
def test_downpayment_plus_remaining_is_final_price(make_item, discount, downpayment):
    """Test that the payment split always adds back up to the final price."""
    buckets = group_buckets([
        make_item("a", price="10999.99", quantity=3),
        make_item("b", color="Black", price="7333.33"),
    ])

    quote = price(buckets, Decimal(discount), Decimal(downpayment))

    assert quote.downpayment_amount + quote.remaining_balance == quote.final_price
    assert quote.final_price == quote.bucket_total - quote.discount_amount
    assert quote.remaining_balance >= 0


def test_full_downpayment_leaves_nothing_remaining(corolla_items):
    quote = price(group_buckets(corolla_items), Decimal("0"), Decimal("100"))

    assert quote.downpayment_amount == quote.final_price == Decimal("30000")
    assert quote.remaining_balance == Decimal("0")


def test_per_bucket_discounts(make_item):
    """Test that overrides apply per bucket and the effective discount is reported."""
    buckets = group_buckets([
        make_item("a", price="10000", quantity=3),
        make_item("b", color="Black", price="10000"),
    ])
    black_key = next(b.key for b in buckets if b.color == "Black")

    quote = price(buckets, Decimal("10"), Decimal("10"), bucket_discounts={black_key: Decimal("30")})

    # 30,000 at 10% plus 10,000 at 30%
    assert quote.final_price == Decimal("34000")
    assert quote.discount_amount == Decimal("6000")
    assert quote.discount_percent == Decimal("15")

    by_key = {s.key: s for s in quote.bucket_summaries}
    assert by_key[black_key].discount_percent == Decimal("30")


def test_matching_overrides_keep_global_discount(corolla_items):
    buckets = group_buckets(corolla_items)

    quote = price(buckets, Decimal("5"), Decimal("10"), bucket_discounts={buckets[0].key: Decimal("5")})

    assert quote.discount_percent == Decimal("5")


@pytest.mark.parametrize("discount", ["-1", "30.01", "50"])
def test_discount_out_of_range(corolla_items, discount):
    with pytest.raises(InvalidProposalInput):
        price(group_buckets(corolla_items), Decimal(discount), Decimal("10"))


@pytest.mark.parametrize("downpayment", ["0", "9.99", "100.5"])
def test_downpayment_out_of_range(corolla_items, downpayment):
    with pytest.raises(InvalidProposalInput):
        price(group_buckets(corolla_items), Decimal("0"), Decimal(downpayment))


def test_bucket_override_out_of_range(corolla_items):
    buckets = group_buckets(corolla_items)

    with pytest.raises(InvalidProposalInput) as exc_info:
        price(buckets, Decimal("0"), Decimal("10"), bucket_discounts={buckets[0].key: Decimal("40")})

    assert buckets[0].key in exc_info.value.message


def test_empty_buckets_rejected():
    with pytest.raises(InvalidProposalInput):
        price([], Decimal("0"), Decimal("10"))


def test_zero_total_rejected(make_item):
    with pytest.raises(InvalidProposalInput):
        price(group_buckets([make_item("free", price="0")]), Decimal("0"), Decimal("10"))


def test_bucket_total_must_match_units(corolla_items):
    """Test that a bucket priced below units x unit price is refused."""
    bucket = group_buckets(corolla_items)[0].model_copy(update={"bucket_total": Decimal("1")})

    with pytest.raises(InvalidProposalInput) as exc_info:
        price([bucket], Decimal("10"), Decimal("20"))

    assert bucket.key in exc_info.value.message


def test_negative_bucket_rejected():
    with pytest.raises(ValidationError):
        Bucket(key="k", unit_price=Decimal("-10000"), currency="USD", total_units=2, bucket_total=Decimal("-20000"))

    bucket = Bucket.model_construct(
        key="k", name="", unit_price=Decimal("-10000"), currency="USD", total_units=2, bucket_total=Decimal("-20000")
    )
    with pytest.raises(InvalidProposalInput):
        price([bucket], Decimal("0"), Decimal("10"))


def test_amounts_are_not_rounded(make_item):
    """Test that precision is kept; rounding is for display only."""
    quote = price(group_buckets([make_item("a", price="9999.99")]), Decimal("7.5"), Decimal("33"))

    assert quote.final_price == Decimal("9249.990750")
    assert display_amount(quote.final_price) == Decimal("9250")
    assert display_amount(quote.final_price, places=2) == Decimal("9249.99")


def test_display_rounding_is_half_up():
    assert display_amount(Decimal("2.5")) == Decimal("3")
    assert display_percent(Decimal("12.5")) == 13
    assert display_percent(Decimal("12.49")) == 12
