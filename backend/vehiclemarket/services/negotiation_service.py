"""
Negotiation service: conversations, proposal actions and listings.
"""

import logging
import uuid
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vehiclemarket.core.events import event_bus
from vehiclemarket.core.exceptions import ConversationNotFound, IllegalTransition, NotAParticipant
from vehiclemarket.core.identity import CurrentUser
from vehiclemarket.models.negotiation import Conversation
from vehiclemarket.schemas.negotiation import (
    CartHandoff,
    ConversationResponse,
    ConversationStatus,
    IndexEntryResponse,
    Proposal,
    ProposalActionRequest,
    Role,
)
from vehiclemarket.services import cart_handoff
from vehiclemarket.services.bucket_aggregator import group_buckets
from vehiclemarket.services.negotiation_index_service import SqlNegotiationIndex
from vehiclemarket.services.negotiation_state_machine import (
    ConversationRef,
    NegotiationStateMachine,
    allowed_actions,
    resolve_role,
    state_of,
)
from vehiclemarket.services.negotiation_store import SqlNegotiationStore
from vehiclemarket.services.transcript_service import TranscriptRecorder

logger = logging.getLogger(__name__)


def new_conversation_id(buyer_id: str, seller_id: str, item_id: str) -> str:
    """Opaque conversation key; never parse it for business logic."""
    return f"{buyer_id}_{seller_id}_{item_id}_{uuid.uuid4()}"


class NegotiationService:
    """Service for buyer-seller vehicle negotiation."""

    def state_machine(self, db: AsyncSession) -> NegotiationStateMachine:
        """State machine wired to this session's store, index and transcript."""
        return NegotiationStateMachine(
            store=SqlNegotiationStore(db),
            index=SqlNegotiationIndex(db),
            event_bus=event_bus,
            observers=[TranscriptRecorder(db)],
        )

    async def start_negotiation(
        self,
        db: AsyncSession,
        user: CurrentUser,
        seller_id: str,
        item_id: str
    ) -> Conversation:
        """
        Buyer opens a negotiation on an item.

        Args:
            user: Buyer starting the negotiation
            seller_id: Seller of the item
            item_id: Vehicle being negotiated

        Returns:
            Created Conversation

        Raises:
            IllegalTransition: If the user is not a buyer or is the seller
        """
        if not user.is_buyer:
            raise IllegalTransition("Only buyers can negotiate the price")

        if user.user_id == seller_id:
            raise IllegalTransition("You cannot negotiate on your own listing")

        conversation = Conversation(
            id=new_conversation_id(user.user_id, seller_id, item_id),
            buyer_id=user.user_id,
            seller_id=seller_id,
            item_id=item_id,
            status=ConversationStatus.ONGOING.value,
        )
        db.add(conversation)
        await db.commit()
        await db.refresh(conversation)

        try:
            await SqlNegotiationIndex(db).upsert(
                conversation_id=conversation.id,
                buyer_id=conversation.buyer_id,
                seller_id=conversation.seller_id,
                item_id=conversation.item_id,
                status=ConversationStatus.ONGOING,
                role_type=Role.BUYER.value,
            )
        except Exception as e:
            logger.warning(f"Index upsert failed for {conversation.id}: {e}", exc_info=True)

        logger.info(f"Negotiation {conversation.id} started by buyer {user.user_id}")
        return conversation

    async def get_conversation(
        self,
        db: AsyncSession,
        conversation_id: str,
        user: CurrentUser
    ) -> Conversation:
        """
        Get a conversation (only if you're involved).

        Raises:
            ConversationNotFound: If it does not exist
            NotAParticipant: If the user is not the buyer or seller
        """
        conversation = await db.get(Conversation, conversation_id)

        if not conversation:
            raise ConversationNotFound("Negotiation not found")

        resolve_role(ConversationRef.model_validate(conversation), user)
        return conversation

    async def describe(
        self,
        db: AsyncSession,
        conversation_id: str,
        user: CurrentUser
    ) -> ConversationResponse:
        """Conversation details with current state and the caller's allowed actions."""
        conversation = await self.get_conversation(db, conversation_id, user)
        ref = ConversationRef.model_validate(conversation)
        proposal = await SqlNegotiationStore(db).get(conversation_id)
        state = state_of(proposal)

        return ConversationResponse(
            id=conversation.id,
            buyer_id=conversation.buyer_id,
            seller_id=conversation.seller_id,
            item_id=conversation.item_id,
            status=ConversationStatus(conversation.status),
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
            state=state,
            current_proposal=proposal,
            allowed_actions=allowed_actions(state, resolve_role(ref, user)),
        )

    async def act(
        self,
        db: AsyncSession,
        conversation_id: str,
        user: CurrentUser,
        request: ProposalActionRequest
    ) -> Proposal:
        """
        Submit, counter, accept or reject on a conversation.

        Pre-grouped buckets are priced as sent once their totals check out
        against units x unit price. Otherwise line items are limited to the
        conversation's seller and grouped before pricing.

        Returns:
            The stored proposal snapshot
        """
        conversation = await self.get_conversation(db, conversation_id, user)
        ref = ConversationRef.model_validate(conversation)

        buckets = request.buckets
        if not buckets:
            items = [i for i in request.items if i.seller_id in (None, ref.seller_id)]
            buckets = group_buckets(items)

        return await self.state_machine(db).apply(
            ref,
            user,
            request.action,
            buckets=buckets,
            discount_percent=request.discount_percent,
            downpayment_percent=request.downpayment_percent,
            selected_port=request.selected_port,
            bucket_discounts=request.bucket_discounts,
        )

    async def get_proposal(
        self,
        db: AsyncSession,
        conversation_id: str,
        user: CurrentUser
    ) -> Optional[Proposal]:
        """Current proposal of a conversation; this is what both parties poll."""
        await self.get_conversation(db, conversation_id, user)
        return await SqlNegotiationStore(db).get(conversation_id)

    async def get_proposals(
        self,
        db: AsyncSession,
        conversation_ids: Sequence[str],
        user: CurrentUser
    ) -> Dict[str, Proposal]:
        """Current proposals of several conversations the user takes part in."""
        result = await db.execute(
            select(Conversation.id).where(
                Conversation.id.in_(list(conversation_ids)),
                (Conversation.buyer_id == user.user_id) | (Conversation.seller_id == user.user_id)
            )
        )
        visible = list(result.scalars().all())
        return await SqlNegotiationStore(db).get_many(visible)

    async def list_my_negotiations(
        self,
        db: AsyncSession,
        user: CurrentUser,
        role: Optional[Role] = None,
        status_filter: Optional[ConversationStatus] = None
    ) -> List[IndexEntryResponse]:
        """
        List all negotiations where the user is involved, with proposal status.

        Args:
            role: Optional role filter (buyer or seller)
            status_filter: Optional status filter (ongoing, agreed, rejected)
        """
        entries = await SqlNegotiationIndex(db).list_for_user(user.user_id, role, status_filter)
        proposals = await SqlNegotiationStore(db).get_many([e.conversation_id for e in entries])

        listing = []
        for entry in entries:
            response = IndexEntryResponse.model_validate(entry)
            proposal = proposals.get(entry.conversation_id)
            response.proposal_status = proposal.status if proposal else None
            listing.append(response)
        return listing

    async def get_handoff(
        self,
        db: AsyncSession,
        conversation_id: str,
        user: CurrentUser,
        logistics_partner: Optional[str] = None,
        destination_port: Optional[str] = None
    ) -> CartHandoff:
        """
        Accepted proposal as an order-creation payload (buyer only).

        Raises:
            NotAParticipant: If the caller is not the buyer
            IllegalTransition: If the negotiation has not been accepted
        """
        conversation = await self.get_conversation(db, conversation_id, user)
        ref = ConversationRef.model_validate(conversation)

        if resolve_role(ref, user) != Role.BUYER:
            raise NotAParticipant("Only the buyer can add a negotiation to the cart")

        proposal = await SqlNegotiationStore(db).get(conversation_id)
        return cart_handoff.build_handoff(ref, proposal, logistics_partner, destination_port)


# Singleton
negotiation_service = NegotiationService()
