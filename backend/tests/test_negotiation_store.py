"""Tests for proposal persistence."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from vehiclemarket.core.exceptions import PersistenceFailure
from vehiclemarket.models.negotiation import Conversation
from vehiclemarket.models.negotiation_index import NegotiationIndexEntry
from vehiclemarket.schemas.negotiation import ConversationStatus, NegotiationState, Proposal, Role
from vehiclemarket.services.bucket_aggregator import group_buckets
from vehiclemarket.services.negotiation_index_service import SqlNegotiationIndex
from vehiclemarket.services.negotiation_store import (
    InMemoryNegotiationStore,
    SqlNegotiationStore,
    conversation_status_for,
)
from vehiclemarket.services.proposal_calculator import price


def build_proposal(items, discount="10", status=NegotiationState.BUYER_PROPOSED, author=Role.BUYER) -> Proposal:
    quote = price(group_buckets(items), Decimal(discount), Decimal("33.3"))
    return Proposal(
        **quote.model_dump(),
        selected_port="Abu Dhabi",
        submitted_at=datetime(2026, 10, 18, 9, 30, tzinfo=timezone.utc),
        status=status,
        author_role=author,
        author_id="buyer-1" if author == Role.BUYER else "seller-1",
    )


@pytest.fixture
async def stored_conversation(db, conversation_ref):
    conversation = Conversation(
        id=conversation_ref.id,
        buyer_id=conversation_ref.buyer_id,
        seller_id=conversation_ref.seller_id,
        item_id=conversation_ref.item_id,
    )
    db.add(conversation)
    await db.commit()
    return conversation


@pytest.mark.asyncio
async def test_get_before_first_proposal(db, stored_conversation):
    store = SqlNegotiationStore(db)

    assert await store.get(stored_conversation.id) is None


@pytest.mark.asyncio
async def test_round_trip_is_exact(db, stored_conversation, make_item):
    """Test that a stored proposal reads back equal, Decimals included."""
    store = SqlNegotiationStore(db)
    proposal = build_proposal([make_item("a", price="10999.99", quantity=3)], discount="7.25")

    stored = await store.put(stored_conversation.id, proposal)
    loaded = await store.get(stored_conversation.id)

    assert loaded == stored
    assert loaded.final_price == proposal.final_price
    assert loaded.downpayment_amount == proposal.downpayment_amount
    assert loaded.submitted_at == proposal.submitted_at


@pytest.mark.asyncio
async def test_repeated_polls_are_identical(db, stored_conversation, corolla_items):
    store = SqlNegotiationStore(db)
    await store.put(stored_conversation.id, build_proposal(corolla_items))

    first = await store.get(stored_conversation.id)
    second = await store.get(stored_conversation.id)

    assert first == second


@pytest.mark.asyncio
async def test_latest_version_is_current(db, stored_conversation, corolla_items):
    store = SqlNegotiationStore(db)

    await store.put(stored_conversation.id, build_proposal(corolla_items, discount="10"))
    counter = await store.put(
        stored_conversation.id,
        build_proposal(corolla_items, discount="5", status=NegotiationState.SELLER_COUNTERED, author=Role.SELLER)
    )

    current = await store.get(stored_conversation.id)
    assert current.version == 2
    assert current == counter
    assert [p.version for p in await store.history(stored_conversation.id)] == [1, 2]


@pytest.mark.asyncio
async def test_writers_cannot_share_a_version(db, stored_conversation, corolla_items, monkeypatch):
    """Test that a writer which read a stale version loses to the one that committed first."""
    store = SqlNegotiationStore(db)
    await store.put(stored_conversation.id, build_proposal(corolla_items, discount="10"))
    counter = await store.put(
        stored_conversation.id,
        build_proposal(corolla_items, discount="5", status=NegotiationState.SELLER_COUNTERED, author=Role.SELLER)
    )

    async def stale_version(conversation_id):
        return 2

    monkeypatch.setattr(store, "_next_version", stale_version)

    with pytest.raises(PersistenceFailure):
        await store.put(
            stored_conversation.id,
            build_proposal(corolla_items, discount="8", status=NegotiationState.BUYER_COUNTERED)
        )

    monkeypatch.undo()
    assert await store.get(stored_conversation.id) == counter
    assert (await store.get_many([stored_conversation.id]))[stored_conversation.id] == counter
    assert [p.version for p in await store.history(stored_conversation.id)] == [1, 2]


@pytest.mark.asyncio
async def test_put_updates_conversation_status(db, stored_conversation, corolla_items):
    store = SqlNegotiationStore(db)

    await store.put(stored_conversation.id, build_proposal(corolla_items, status=NegotiationState.SELLER_ACCEPTED))

    await db.refresh(stored_conversation)
    assert stored_conversation.status == "agreed"


@pytest.mark.asyncio
async def test_get_many_returns_current_proposals(db, stored_conversation, corolla_items):
    store = SqlNegotiationStore(db)
    await store.put(stored_conversation.id, build_proposal(corolla_items, discount="10"))
    await store.put(
        stored_conversation.id,
        build_proposal(corolla_items, discount="4", status=NegotiationState.SELLER_COUNTERED, author=Role.SELLER)
    )

    proposals = await store.get_many([stored_conversation.id, "missing"])

    assert list(proposals) == [stored_conversation.id]
    assert proposals[stored_conversation.id].version == 2
    assert await store.get_many([]) == {}


@pytest.mark.asyncio
async def test_write_failure_raises_persistence_failure(db, stored_conversation, corolla_items, monkeypatch):
    store = SqlNegotiationStore(db)

    async def broken_commit():
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    monkeypatch.setattr(db, "commit", broken_commit)

    with pytest.raises(PersistenceFailure):
        await store.put(stored_conversation.id, build_proposal(corolla_items))

    monkeypatch.undo()
    assert await store.get(stored_conversation.id) is None


@pytest.mark.asyncio
async def test_in_memory_store_versions(conversation_ref, corolla_items):
    store = InMemoryNegotiationStore()

    first = await store.put(conversation_ref.id, build_proposal(corolla_items))
    second = await store.put(conversation_ref.id, build_proposal(corolla_items, discount="3"))

    assert (first.version, second.version) == (1, 2)
    assert await store.get(conversation_ref.id) == second
    assert await store.get("missing") is None


def test_conversation_status_for():
    assert conversation_status_for(NegotiationState.BUYER_PROPOSED).value == "ongoing"
    assert conversation_status_for(NegotiationState.SELLER_ACCEPTED).value == "agreed"
    assert conversation_status_for(NegotiationState.REJECTED).value == "rejected"


@pytest.mark.asyncio
async def test_index_timestamps_are_utc(db, stored_conversation):
    await SqlNegotiationIndex(db).upsert(
        conversation_id=stored_conversation.id,
        buyer_id=stored_conversation.buyer_id,
        seller_id=stored_conversation.seller_id,
        item_id=stored_conversation.item_id,
        status=ConversationStatus.ONGOING,
        role_type="buyer",
    )

    entry = await db.get(NegotiationIndexEntry, stored_conversation.id)
    assert entry.started_at.utcoffset() == timedelta(0)
    assert entry.updated_at == entry.started_at
