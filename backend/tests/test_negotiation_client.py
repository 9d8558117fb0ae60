"""Tests for the negotiation HTTP client against the app."""

from decimal import Decimal

import httpx
import pytest
from httpx import AsyncClient

from vehiclemarket.client import NegotiationClient, open_session
from vehiclemarket.core.exceptions import IllegalTransition, NotAParticipant, PersistenceFailure
from vehiclemarket.core.identity import CurrentUser
from vehiclemarket.schemas.negotiation import NegotiationAction, NegotiationState
from vehiclemarket.services.bucket_aggregator import group_buckets
from vehiclemarket.services.negotiation_state_machine import ConversationRef
from vehiclemarket.services.selection_repository import JsonFileSelectionRepository


@pytest.fixture
def buyer_api(client: AsyncClient, buyer) -> NegotiationClient:
    return NegotiationClient("http://test", buyer, http=client)


@pytest.fixture
def seller_api(client: AsyncClient, seller) -> NegotiationClient:
    return NegotiationClient("http://test", seller, http=client)


@pytest.mark.asyncio
async def test_remote_sessions_negotiate(buyer_api, seller_api, corolla_items, tmp_path):
    """Test two remote sessions reaching agreement through the API."""
    conversation = await buyer_api.start("seller-1", "vehicle-1")
    assert conversation.state == NegotiationState.IDLE

    buyer_cache = tmp_path / "buyer.json"
    JsonFileSelectionRepository(buyer_cache).set_quote_builder_items(corolla_items)

    buyer = await open_session(buyer_api, conversation.id, cache_path=str(buyer_cache))
    buyer.discount_percent = Decimal("10")
    buyer.downpayment_percent = Decimal("20")
    assert await buyer.submit() is True

    seller = await open_session(seller_api, conversation.id, cache_path=str(tmp_path / "seller.json"))
    assert seller.state == NegotiationState.BUYER_PROPOSED
    assert seller.active_proposal == buyer.active_proposal

    seller.begin_counter()
    key = seller.active_proposal.bucket_summaries[0].key
    seller.set_bucket_discount(key, Decimal("6"))
    seller.discount_percent = Decimal("6")
    assert await seller.submit() is True

    await buyer.poll()
    assert buyer.can_accept
    assert await buyer.accept() is True

    handoff = await buyer_api.handoff(conversation.id, logistics_partner="None")
    assert handoff.totals.total == Decimal("28200")
    assert handoff.destination_port is None

    proposals = await seller_api.get_many([conversation.id])
    assert proposals[conversation.id].status == NegotiationState.SELLER_ACCEPTED


@pytest.mark.asyncio
async def test_server_errors_map_to_exceptions(client, buyer_api, corolla_items):
    conversation = await buyer_api.start("seller-1", "vehicle-1")
    ref = ConversationRef(
        id=conversation.id,
        buyer_id=conversation.buyer_id,
        seller_id=conversation.seller_id,
        item_id=conversation.item_id,
    )

    await buyer_api.apply(ref, buyer_api.user, NegotiationAction.SUBMIT, buckets=group_buckets(corolla_items))

    with pytest.raises(IllegalTransition) as exc_info:
        await buyer_api.apply(ref, buyer_api.user, NegotiationAction.ACCEPT)
    assert exc_info.value.message == "Waiting for other party to respond"

    outsider = NegotiationClient("http://test", CurrentUser(user_id="buyer-2", role_type="buyer"), http=client)
    with pytest.raises(NotAParticipant):
        await outsider.get(conversation.id)


@pytest.mark.asyncio
async def test_messages(buyer_api, seller_api):
    conversation = await buyer_api.start("seller-1", "vehicle-1")

    await seller_api.send_message(conversation.id, "Welcome")
    transcript = await buyer_api.messages(conversation.id)

    assert transcript.total == 1
    assert transcript.messages[0].content == {"text": "Welcome"}


@pytest.mark.asyncio
async def test_list_negotiations(buyer_api, seller_api):
    conversation = await buyer_api.start("seller-1", "vehicle-1")

    entries = await seller_api.list_negotiations(role="seller")

    assert [e.conversation_id for e in entries] == [conversation.id]


@pytest.mark.asyncio
async def test_unreachable_server_is_persistence_failure(buyer):
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    http = AsyncClient(transport=httpx.MockTransport(refuse), base_url="http://test")
    async with NegotiationClient("http://test", buyer, http=http) as api:
        with pytest.raises(PersistenceFailure):
            await api.get("any")


@pytest.mark.asyncio
async def test_server_error_is_persistence_failure(buyer):
    def broken(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="Internal Server Error")

    http = AsyncClient(transport=httpx.MockTransport(broken), base_url="http://test")
    async with NegotiationClient("http://test", buyer, http=http) as api:
        with pytest.raises(PersistenceFailure):
            await api.get("any")
