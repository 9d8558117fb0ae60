"""
Turn-based negotiation protocol between a buyer and a seller.

The buyer opens with a proposal; the parties then alternate counters until
the responder accepts or rejects the pending offer. Only the party who did not
author the pending proposal may act on it, and that guard is the only
concurrency control: out-of-turn writes are refused, not serialized.

    IDLE --buyer submit--> BUYER_PROPOSED --seller counter--> SELLER_COUNTERED
    SELLER_COUNTERED --buyer counter--> BUYER_COUNTERED --seller counter--> SELLER_COUNTERED
    any pending state --responder accept--> SELLER_ACCEPTED (terminal)
    any pending state --responder reject--> REJECTED (terminal)
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from pydantic import BaseModel, ConfigDict

from vehiclemarket.config import settings
from vehiclemarket.core.events import EventBus
from vehiclemarket.core.exceptions import (
    IllegalTransition,
    InvalidProposalInput,
    NotAParticipant,
    PersistenceFailure,
)
from vehiclemarket.core.identity import CurrentUser
from vehiclemarket.core.timeutils import utcnow
from vehiclemarket.schemas.negotiation import (
    Bucket,
    ConversationStatus,
    NegotiationAction,
    NegotiationState,
    Proposal,
    Role,
)
from vehiclemarket.services import proposal_calculator
from vehiclemarket.services.negotiation_store import NegotiationStore, conversation_status_for

logger = logging.getLogger(__name__)

S = NegotiationState
A = NegotiationAction

TRANSITIONS: Dict[Tuple[NegotiationState, Role, NegotiationAction], NegotiationState] = {
    (S.IDLE, Role.BUYER, A.SUBMIT): S.BUYER_PROPOSED,
    (S.BUYER_PROPOSED, Role.SELLER, A.COUNTER): S.SELLER_COUNTERED,
    (S.BUYER_PROPOSED, Role.SELLER, A.ACCEPT): S.SELLER_ACCEPTED,
    (S.BUYER_PROPOSED, Role.SELLER, A.REJECT): S.REJECTED,
    (S.SELLER_COUNTERED, Role.BUYER, A.COUNTER): S.BUYER_COUNTERED,
    (S.SELLER_COUNTERED, Role.BUYER, A.ACCEPT): S.SELLER_ACCEPTED,
    (S.SELLER_COUNTERED, Role.BUYER, A.REJECT): S.REJECTED,
    (S.BUYER_COUNTERED, Role.SELLER, A.COUNTER): S.SELLER_COUNTERED,
    (S.BUYER_COUNTERED, Role.SELLER, A.ACCEPT): S.SELLER_ACCEPTED,
    (S.BUYER_COUNTERED, Role.SELLER, A.REJECT): S.REJECTED,
}

TERMINAL_STATES = frozenset({S.SELLER_ACCEPTED, S.REJECTED})

EVENT_TYPES = {
    A.SUBMIT: "proposal_submitted",
    A.COUNTER: "proposal_countered",
    A.ACCEPT: "proposal_accepted",
    A.REJECT: "proposal_rejected",
}


class ConversationRef(BaseModel):
    """Participants of a conversation, as the state machine needs them."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    buyer_id: str
    seller_id: str
    item_id: str


class NegotiationEvent(BaseModel):
    """Domain event emitted after every successful transition."""
    type: str
    conversation_id: str
    actor_id: str
    role: Role
    action: NegotiationAction
    status: NegotiationState
    version: int
    discount_percent: Decimal
    final_price: Decimal
    downpayment_percent: Decimal
    downpayment_amount: Decimal
    remaining_balance: Decimal
    currency: Optional[str] = None
    occurred_at: datetime


EventObserver = Callable[[NegotiationEvent], Awaitable[None]]


class NegotiationIndex(Protocol):
    """Discovery index written after each transition."""

    async def upsert(
        self,
        conversation_id: str,
        buyer_id: str,
        seller_id: str,
        item_id: Optional[str],
        status: ConversationStatus,
        role_type: Optional[str] = None
    ) -> None:
        ...


# Pure protocol helpers

def state_of(proposal: Optional[Proposal]) -> NegotiationState:
    """Negotiation state implied by the current proposal."""
    return proposal.status if proposal else S.IDLE


def author_of(state: NegotiationState) -> Optional[Role]:
    """Role that authored the pending proposal in a non-terminal state."""
    if state in (S.BUYER_PROPOSED, S.BUYER_COUNTERED):
        return Role.BUYER
    if state == S.SELLER_COUNTERED:
        return Role.SELLER
    return None


def waiting_for(state: NegotiationState) -> Optional[Role]:
    """Role expected to act next, or None once terminal."""
    if state == S.IDLE:
        return Role.BUYER
    author = author_of(state)
    if author is None:
        return None
    return Role.SELLER if author == Role.BUYER else Role.BUYER


def is_terminal(state: NegotiationState) -> bool:
    return state in TERMINAL_STATES


def allowed_actions(state: NegotiationState, role: Optional[Role]) -> List[NegotiationAction]:
    """Actions the given role may take in the given state."""
    return [
        action for (from_state, actor, action) in TRANSITIONS
        if from_state == state and actor == role
    ]


def next_state(state: NegotiationState, role: Role, action: NegotiationAction) -> NegotiationState:
    """
    Resolve a transition.

    Raises:
        IllegalTransition: If the role may not take the action in this state
    """
    target = TRANSITIONS.get((state, role, action))
    if target is not None:
        return target

    if is_terminal(state):
        raise IllegalTransition(f"Negotiation is {state.value}, no further actions are allowed")
    if author_of(state) == role:
        raise IllegalTransition("Waiting for other party to respond")
    if state == S.IDLE:
        raise IllegalTransition("Only the buyer can open a negotiation with a proposal")
    raise IllegalTransition(f"Cannot {action.value} while negotiation is {state.value}")


def resolve_role(conversation: ConversationRef, user: CurrentUser) -> Role:
    """
    Role of a user within a conversation.

    The user's role type must grant the role held in the conversation, so an
    admin or a buyer account listed as the seller cannot act for the seller.

    Raises:
        NotAParticipant: If the user is neither the buyer nor the seller, or
            their role type does not match that role
    """
    if user.user_id == conversation.buyer_id:
        role = Role.BUYER
    elif user.user_id == conversation.seller_id:
        role = Role.SELLER
    else:
        raise NotAParticipant("You are not part of this negotiation")

    if user.negotiation_role != role:
        raise NotAParticipant(f"Your account cannot act as the {role.value} in this negotiation")
    return role


class NegotiationStateMachine:
    """Validates and applies negotiation transitions for one store."""

    def __init__(
        self,
        store: NegotiationStore,
        index: Optional[NegotiationIndex] = None,
        event_bus: Optional[EventBus] = None,
        observers: Iterable[EventObserver] = ()
    ):
        self.store = store
        self.index = index
        self.event_bus = event_bus
        self.observers: List[EventObserver] = list(observers)

    def add_observer(self, observer: EventObserver) -> None:
        self.observers.append(observer)

    async def current(self, conversation_id: str) -> Tuple[NegotiationState, Optional[Proposal]]:
        """Current state and pending (or final) proposal of a conversation."""
        proposal = await self.store.get(conversation_id)
        return state_of(proposal), proposal

    async def submit(
        self,
        conversation: ConversationRef,
        actor: CurrentUser,
        buckets: Sequence[Bucket],
        discount_percent: Decimal = Decimal("0"),
        downpayment_percent: Optional[Decimal] = None,
        selected_port: Optional[str] = None,
        bucket_discounts: Optional[Dict[str, Decimal]] = None
    ) -> Proposal:
        """Buyer opens the negotiation with a priced proposal."""
        return await self.apply(
            conversation, actor, A.SUBMIT,
            buckets=buckets,
            discount_percent=discount_percent,
            downpayment_percent=downpayment_percent,
            selected_port=selected_port,
            bucket_discounts=bucket_discounts,
        )

    async def counter(
        self,
        conversation: ConversationRef,
        actor: CurrentUser,
        buckets: Sequence[Bucket],
        discount_percent: Decimal = Decimal("0"),
        downpayment_percent: Optional[Decimal] = None,
        selected_port: Optional[str] = None,
        bucket_discounts: Optional[Dict[str, Decimal]] = None
    ) -> Proposal:
        """Responder replaces the pending proposal with new figures."""
        return await self.apply(
            conversation, actor, A.COUNTER,
            buckets=buckets,
            discount_percent=discount_percent,
            downpayment_percent=downpayment_percent,
            selected_port=selected_port,
            bucket_discounts=bucket_discounts,
        )

    async def accept(self, conversation: ConversationRef, actor: CurrentUser) -> Proposal:
        """Responder accepts the pending proposal as-is."""
        return await self.apply(conversation, actor, A.ACCEPT)

    async def reject(self, conversation: ConversationRef, actor: CurrentUser) -> Proposal:
        """Responder ends the negotiation without agreement."""
        return await self.apply(conversation, actor, A.REJECT)

    async def apply(
        self,
        conversation: ConversationRef,
        actor: CurrentUser,
        action: NegotiationAction,
        buckets: Sequence[Bucket] = (),
        discount_percent: Decimal = Decimal("0"),
        downpayment_percent: Optional[Decimal] = None,
        selected_port: Optional[str] = None,
        bucket_discounts: Optional[Dict[str, Decimal]] = None
    ) -> Proposal:
        """
        Apply one action to a conversation.

        Args:
            conversation: Conversation being negotiated
            actor: Authenticated user taking the action
            action: submit, counter, accept or reject
            buckets: Buckets being offered (submit/counter)
            discount_percent: Discount applied to every bucket (submit/counter)
            downpayment_percent: Down payment percent (submit/counter)
            selected_port: Port of loading (submit/counter)
            bucket_discounts: Per-bucket discount overrides (submit/counter)

        Returns:
            The stored proposal snapshot

        Raises:
            NotAParticipant: If the actor is not in the conversation
            IllegalTransition: If the actor may not act now
            InvalidProposalInput: If the offered figures are invalid
            PersistenceFailure: If the snapshot could not be stored; nothing changed
        """
        role = resolve_role(conversation, actor)
        current = await self.store.get(conversation.id)
        target = next_state(state_of(current), role, action)

        if action in (A.SUBMIT, A.COUNTER):
            proposal = self._build_offer(
                current, actor, role, target,
                buckets, discount_percent, downpayment_percent, selected_port, bucket_discounts
            )
        else:
            proposal = current.model_copy(update={
                "status": target,
                "author_role": role,
                "author_id": actor.user_id,
                "submitted_at": utcnow(),
            })

        try:
            stored = await self.store.put(conversation.id, proposal)
        except PersistenceFailure:
            logger.error(
                f"Negotiation {conversation.id}: {action.value} by {role.value} not recorded, "
                f"state remains {state_of(current).value}"
            )
            raise

        logger.info(
            f"Negotiation {conversation.id}: {role.value} {action.value} -> {stored.status.value} "
            f"(v{stored.version}, final price {stored.final_price})"
        )

        await self._upsert_index(conversation, stored, role)
        await self._emit(conversation, actor, role, action, stored)

        return stored

    def _build_offer(
        self,
        current: Optional[Proposal],
        actor: CurrentUser,
        role: Role,
        target: NegotiationState,
        buckets: Sequence[Bucket],
        discount_percent: Decimal,
        downpayment_percent: Optional[Decimal],
        selected_port: Optional[str],
        bucket_discounts: Optional[Dict[str, Decimal]]
    ) -> Proposal:
        if downpayment_percent is None:
            downpayment_percent = (
                current.downpayment_percent if current else settings.DEFAULT_DOWNPAYMENT_PERCENT
            )

        if not selected_port:
            selected_port = current.selected_port if current else settings.LOADING_PORTS[0]
        if selected_port not in settings.LOADING_PORTS:
            raise InvalidProposalInput(
                f"Unknown port of loading: {selected_port}. Choose one of {', '.join(settings.LOADING_PORTS)}"
            )

        quote = proposal_calculator.price(buckets, discount_percent, downpayment_percent, bucket_discounts)

        return Proposal(
            **quote.model_dump(),
            selected_port=selected_port,
            submitted_at=utcnow(),
            status=target,
            author_role=role,
            author_id=actor.user_id,
        )

    async def _upsert_index(self, conversation: ConversationRef, proposal: Proposal, role: Role) -> None:
        if self.index is None:
            return
        try:
            await self.index.upsert(
                conversation_id=conversation.id,
                buyer_id=conversation.buyer_id,
                seller_id=conversation.seller_id,
                item_id=conversation.item_id,
                status=conversation_status_for(proposal.status),
                role_type=role.value,
            )
        except Exception as e:
            logger.warning(f"Index upsert failed for {conversation.id}: {e}", exc_info=True)

    async def _emit(
        self,
        conversation: ConversationRef,
        actor: CurrentUser,
        role: Role,
        action: NegotiationAction,
        proposal: Proposal
    ) -> None:
        event = NegotiationEvent(
            type=EVENT_TYPES[action],
            conversation_id=conversation.id,
            actor_id=actor.user_id,
            role=role,
            action=action,
            status=proposal.status,
            version=proposal.version,
            discount_percent=proposal.discount_percent,
            final_price=proposal.final_price,
            downpayment_percent=proposal.downpayment_percent,
            downpayment_amount=proposal.downpayment_amount,
            remaining_balance=proposal.remaining_balance,
            currency=proposal.bucket_summaries[0].currency if proposal.bucket_summaries else None,
            occurred_at=proposal.submitted_at,
        )

        if self.event_bus is not None:
            await self.event_bus.publish(event.type, event.model_dump(mode="json"))

        for observer in self.observers:
            try:
                await observer(event)
            except Exception as e:
                logger.warning(f"Observer failed for {event.type} on {conversation.id}: {e}", exc_info=True)
