"""Tests for a participant's polling negotiation session."""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from vehiclemarket.core.exceptions import IllegalTransition, PersistenceFailure, ReconciliationConflict
from vehiclemarket.schemas.negotiation import NegotiationAction, NegotiationState, Proposal, Role
from vehiclemarket.services.bucket_aggregator import group_buckets
from vehiclemarket.services.negotiation_session import NegotiationSession, items_from_proposal, poll_forever
from vehiclemarket.services.negotiation_state_machine import NegotiationStateMachine
from vehiclemarket.services.negotiation_store import InMemoryNegotiationStore
from vehiclemarket.services.proposal_calculator import price
from vehiclemarket.services.selection_repository import InMemorySelectionRepository


class SwitchableStore(InMemoryNegotiationStore):
    """Store whose reads or writes can be made to fail."""

    def __init__(self):
        super().__init__()
        self.fail_reads = 0
        self.fail_writes = False

    async def get(self, conversation_id):
        if self.fail_reads:
            self.fail_reads -= 1
            raise PersistenceFailure("store unreachable")
        return await super().get(conversation_id)

    async def put(self, conversation_id, proposal):
        if self.fail_writes:
            raise PersistenceFailure("store unreachable")
        return await super().put(conversation_id, proposal)


@pytest.fixture
def store():
    return SwitchableStore()


@pytest.fixture
def machine(store):
    return NegotiationStateMachine(store)


@pytest.fixture
def buyer_selections(corolla_items):
    selections = InMemorySelectionRepository()
    selections.set_quote_builder_items(corolla_items)
    return selections


@pytest.fixture
def seller_selections():
    return InMemorySelectionRepository()


@pytest.fixture
def buyer_session(conversation_ref, buyer, machine, store, buyer_selections):
    return NegotiationSession(conversation_ref, buyer, machine, store, buyer_selections)


@pytest.fixture
def seller_session(conversation_ref, seller, machine, store, seller_selections):
    return NegotiationSession(conversation_ref, seller, machine, store, seller_selections, seller_company="Gulf Motors")


@pytest.mark.asyncio
async def test_buyer_submits_opening_offer(buyer_session):
    buyer_session.discount_percent = Decimal("10")
    buyer_session.downpayment_percent = Decimal("20")

    assert await buyer_session.submit() is True

    proposal = buyer_session.active_proposal
    assert proposal.status == NegotiationState.BUYER_PROPOSED
    assert proposal.final_price == Decimal("27000")
    assert proposal.downpayment_amount == Decimal("5400")
    assert buyer_session.ui_status == NegotiationState.BUYER_PROPOSED
    assert buyer_session.is_locked
    assert not buyer_session.can_accept
    assert buyer_session.allowed_actions == []


@pytest.mark.asyncio
async def test_poll_before_first_offer(buyer_session):
    assert await buyer_session.poll() is None
    assert buyer_session.state == NegotiationState.IDLE
    assert buyer_session.allowed_actions == [NegotiationAction.SUBMIT]


@pytest.mark.asyncio
async def test_seller_poll_derives_negotiation_items(buyer_session, seller_session, seller_selections, conversation_ref):
    """Test that the seller's cache is rebuilt from the proposal's buckets."""
    buyer_session.discount_percent = Decimal("10")
    await buyer_session.submit()

    await seller_session.poll()

    items = seller_selections.get_negotiation_items(conversation_ref.id)
    assert len(items) == 1
    item = items[0]
    assert item.quantity == 3
    assert item.price == Decimal("10000")
    assert item.seller_company == "Gulf Motors"
    assert item.bucket_key == buyer_session.active_proposal.bucket_summaries[0].key
    assert seller_session.can_accept


@pytest.mark.asyncio
async def test_seller_counter_uses_derived_buckets(buyer_session, seller_session):
    buyer_session.discount_percent = Decimal("10")
    await buyer_session.submit()
    await seller_session.poll()

    seller_session.begin_counter()
    key = seller_session.active_proposal.bucket_summaries[0].key
    seller_session.discount_percent = Decimal("5")
    seller_session.set_bucket_discount(key, Decimal("5"))

    assert await seller_session.submit() is True
    counter = seller_session.active_proposal
    assert counter.status == NegotiationState.SELLER_COUNTERED
    assert counter.final_price == Decimal("28500")
    assert counter.bucket_total == Decimal("30000")
    assert not seller_session.is_countering


@pytest.mark.asyncio
async def test_poll_does_not_overwrite_counter_being_edited(buyer_session, seller_session):
    """Test that a buyer editing a counter keeps local edits across polls."""
    buyer_session.discount_percent = Decimal("10")
    await buyer_session.submit()
    await seller_session.poll()
    seller_session.discount_percent = Decimal("4")
    seller_session.bucket_discounts = {}
    await seller_session.submit()

    await buyer_session.poll()
    assert buyer_session.discount_percent == Decimal("4")

    buyer_session.begin_counter()
    buyer_session.discount_percent = Decimal("8")
    buyer_session.bucket_discounts = {}
    await buyer_session.poll()

    assert buyer_session.discount_percent == Decimal("8")
    assert buyer_session.active_proposal.status == NegotiationState.SELLER_COUNTERED

    await buyer_session.submit()
    assert buyer_session.active_proposal.status == NegotiationState.BUYER_COUNTERED
    assert buyer_session.active_proposal.final_price == Decimal("27600")


@pytest.mark.asyncio
async def test_cancel_counter_restores_server_figures(buyer_session, seller_session):
    buyer_session.discount_percent = Decimal("10")
    await buyer_session.submit()
    await seller_session.poll()
    seller_session.begin_counter()
    seller_session.discount_percent = Decimal("25")

    seller_session.cancel_counter()

    assert seller_session.discount_percent == Decimal("10")
    assert not seller_session.is_countering


@pytest.mark.asyncio
async def test_cannot_counter_own_proposal(buyer_session):
    await buyer_session.submit()

    with pytest.raises(IllegalTransition):
        buyer_session.begin_counter()


@pytest.mark.asyncio
async def test_stale_cache_is_replaced(buyer_session, seller_session, seller_selections, conversation_ref, make_item, caplog):
    await buyer_session.submit()
    seller_selections.save_negotiation_items(conversation_ref.id, [make_item("stale", quantity=7)])

    await seller_session.poll()

    assert "differ from proposal" in caplog.text
    items = seller_selections.get_negotiation_items(conversation_ref.id)
    assert [i.quantity for i in items] == [3]


@pytest.mark.asyncio
async def test_strict_reconciliation_raises(
    conversation_ref, seller, machine, store, seller_selections, buyer_session, make_item
):
    await buyer_session.submit()
    seller_selections.save_negotiation_items(conversation_ref.id, [make_item("stale", quantity=7)])
    session = NegotiationSession(
        conversation_ref, seller, machine, store, seller_selections, strict_reconciliation=True
    )

    with pytest.raises(ReconciliationConflict):
        await session.poll()


@pytest.mark.asyncio
async def test_failed_submit_reverts_to_idle(buyer_session, seller_session, store):
    """Test that a failed write keeps the previous proposal and reports the error."""
    await buyer_session.submit()
    await seller_session.poll()
    previous = seller_session.active_proposal

    store.fail_writes = True
    seller_session.begin_counter()
    assert await seller_session.submit() is False

    assert seller_session.ui_status == NegotiationState.IDLE
    assert seller_session.active_proposal == previous
    assert "Failed to submit proposal" in seller_session.submission_error
    assert not seller_session.is_submitting
    assert await store.get(seller_session.conversation.id) == previous

    store.fail_writes = False
    assert await seller_session.submit() is True
    assert seller_session.submission_error is None


@pytest.mark.asyncio
async def test_second_submit_while_in_flight_is_refused(buyer_session):
    buyer_session.is_submitting = True

    with pytest.raises(IllegalTransition):
        await buyer_session.submit()


@pytest.mark.asyncio
async def test_accept_and_handoff(buyer_session, seller_session):
    buyer_session.discount_percent = Decimal("10")
    buyer_session.downpayment_percent = Decimal("20")
    await buyer_session.submit()
    await seller_session.poll()

    assert await seller_session.accept() is True
    await buyer_session.poll()

    handoff = buyer_session.handoff(logistics_partner="UGR", destination_port="Khalifa Port")
    assert handoff.totals.total == Decimal("27000")
    assert handoff.totals.downpayment == Decimal("5400")
    assert handoff.totals.pending == Decimal("21600")

    with pytest.raises(IllegalTransition):
        seller_session.handoff()


@pytest.mark.asyncio
async def test_poll_forever_survives_failed_polls(buyer_session, store):
    store.fail_reads = 1
    stop = asyncio.Event()
    polls = []

    original_poll = buyer_session.poll

    async def counting_poll():
        polls.append(1)
        if len(polls) == 2:
            stop.set()
        return await original_poll()

    buyer_session.poll = counting_poll

    await asyncio.wait_for(poll_forever(buyer_session, stop, interval=0), timeout=1)

    assert len(polls) == 2
    assert store.fail_reads == 0


def test_items_from_proposal_splits_total_evenly(conversation_ref, corolla_items):
    quote = price(group_buckets(corolla_items), Decimal("0"), Decimal("10"))
    proposal = Proposal(
        **quote.model_dump(),
        selected_port="Dubai",
        submitted_at=datetime.now(timezone.utc),
        status=NegotiationState.BUYER_PROPOSED,
        author_role=Role.BUYER,
        author_id="buyer-1",
    )

    items = items_from_proposal(conversation_ref.id, proposal, "seller-1")

    assert items[0].id == f"{conversation_ref.id}_{items[0].bucket_key}"
    assert items[0].price * items[0].quantity == Decimal("30000")
    assert items[0].seller_company == "Seller"
