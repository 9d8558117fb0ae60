"""
One party's live view of a negotiation.

A session polls the proposal store, reconciles the result with the party's
local selection cache and in-progress edits, and submits actions through a
state machine (in-process or over HTTP). The server record always wins,
except that a buyer's counter being edited is never overwritten by a poll.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Dict, List, Optional, Protocol, Sequence

from vehiclemarket.config import settings
from vehiclemarket.core.exceptions import IllegalTransition, PersistenceFailure, ReconciliationConflict
from vehiclemarket.core.identity import CurrentUser
from vehiclemarket.schemas.negotiation import (
    Bucket,
    CartHandoff,
    LineItem,
    NegotiationAction,
    NegotiationState,
    Proposal,
    Role,
)
from vehiclemarket.services.cart_handoff import build_handoff
from vehiclemarket.services.negotiation_state_machine import (
    ConversationRef,
    allowed_actions,
    resolve_role,
    state_of,
)
from vehiclemarket.services.selection_repository import SelectionRepository

logger = logging.getLogger(__name__)


class ProposalSource(Protocol):
    async def get(self, conversation_id: str) -> Optional[Proposal]:
        ...


class TransitionGateway(Protocol):
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
        ...


def items_from_proposal(
    conversation_id: str,
    proposal: Proposal,
    seller_id: Optional[str] = None,
    seller_company: Optional[str] = None
) -> List[LineItem]:
    """Negotiation items as the seller sees them, derived from the proposal's buckets."""
    items = []
    for b in proposal.bucket_summaries:
        unit_price = b.total / b.total_units if b.total_units > 0 else b.unit_price
        items.append(LineItem(
            id=f"{conversation_id}_{b.key}",
            name=b.name,
            brand=b.brand,
            model=b.model,
            variant=b.variant,
            color=b.color,
            year=b.year,
            condition=b.condition,
            body_type=b.body_type,
            price=unit_price,
            currency=b.currency,
            quantity=max(b.total_units, 1),
            seller_id=seller_id,
            seller_company=seller_company or "Seller",
            main_image_url=b.main_image_url,
            bucket_key=b.key,
        ))
    return items


def _fingerprint(items: Sequence[LineItem]) -> set:
    return {(i.bucket_key or i.id, i.quantity, i.price) for i in items}


class NegotiationSession:
    """Client-side negotiation state of one participant in one conversation."""

    def __init__(
        self,
        conversation: ConversationRef,
        user: CurrentUser,
        gateway: TransitionGateway,
        store: ProposalSource,
        selections: SelectionRepository,
        seller_company: Optional[str] = None,
        strict_reconciliation: bool = False
    ):
        self.conversation = conversation
        self.user = user
        self.role = resolve_role(conversation, user)
        self.gateway = gateway
        self.store = store
        self.selections = selections
        self.seller_company = seller_company
        self.strict_reconciliation = strict_reconciliation

        self.active_proposal: Optional[Proposal] = None
        self.ui_status = NegotiationState.IDLE
        self.is_countering = False
        self.is_submitting = False
        self.submission_error: Optional[str] = None

        # Editable offer
        self.discount_percent = Decimal("0")
        self.bucket_discounts: Dict[str, Decimal] = {}
        self.downpayment_percent = settings.DEFAULT_DOWNPAYMENT_PERCENT
        self.selected_port = settings.LOADING_PORTS[0]

    @property
    def state(self) -> NegotiationState:
        return state_of(self.active_proposal)

    @property
    def allowed_actions(self) -> List[NegotiationAction]:
        return allowed_actions(self.state, self.role)

    @property
    def can_accept(self) -> bool:
        return NegotiationAction.ACCEPT in self.allowed_actions

    @property
    def can_edit_discounts(self) -> bool:
        return self.role == Role.BUYER or self.is_countering

    @property
    def is_locked(self) -> bool:
        """A submitted proposal is shown read-only until a counter starts."""
        return self.active_proposal is not None and not self.is_countering

    def set_bucket_discount(self, bucket_key: str, value: Decimal) -> None:
        self.bucket_discounts[bucket_key] = Decimal(value)

    def begin_counter(self) -> None:
        """Start editing a counter offer; polls stop overwriting local edits."""
        if NegotiationAction.COUNTER not in self.allowed_actions:
            raise IllegalTransition("Waiting for other party to respond")
        self.is_countering = True

    def cancel_counter(self) -> None:
        self.is_countering = False
        if self.active_proposal is not None:
            self._load_editable_state(self.active_proposal)

    async def poll(self) -> Optional[Proposal]:
        """
        Load the current proposal and reconcile local state with it.

        Returns:
            The current proposal, or None before the first offer

        Raises:
            PersistenceFailure: If the store could not be read
        """
        proposal = await self.store.get(self.conversation.id)
        if proposal is None:
            return None

        self.active_proposal = proposal
        self.ui_status = proposal.status

        # Never clobber a counter being edited
        if not self.is_countering:
            self._load_editable_state(proposal)

        if self.role == Role.SELLER:
            self._sync_seller_items(proposal)

        return proposal

    async def submit(self) -> bool:
        """
        Submit the edited offer: a proposal from IDLE, a counter otherwise.

        Returns:
            True if stored; False if the store rejected the write, in which
            case the previous proposal is kept and submission_error is set

        Raises:
            IllegalTransition: If it is not this party's turn
            InvalidProposalInput: If the offer is invalid
        """
        action = NegotiationAction.SUBMIT if self.state == NegotiationState.IDLE else NegotiationAction.COUNTER
        buckets = self.selections.get_selected_buckets(self.conversation.id, self.conversation.seller_id)

        return await self._run(
            action,
            buckets=buckets,
            discount_percent=self.discount_percent,
            downpayment_percent=self.downpayment_percent,
            selected_port=self.selected_port,
            bucket_discounts=dict(self.bucket_discounts),
        )

    async def accept(self) -> bool:
        return await self._run(NegotiationAction.ACCEPT)

    async def reject(self) -> bool:
        return await self._run(NegotiationAction.REJECT)

    def handoff(self, logistics_partner: Optional[str] = None, destination_port: Optional[str] = None) -> CartHandoff:
        """Order-creation payload once the buyer's negotiation is accepted."""
        if self.role != Role.BUYER:
            raise IllegalTransition("Only the buyer can add a negotiation to the cart")
        return build_handoff(self.conversation, self.active_proposal, logistics_partner, destination_port)

    async def _run(self, action: NegotiationAction, **offer) -> bool:
        if self.is_submitting:
            raise IllegalTransition("A submission is already in progress")

        self.is_submitting = True
        try:
            stored = await self.gateway.apply(self.conversation, self.user, action, **offer)
        except PersistenceFailure as e:
            logger.error(f"Negotiation {self.conversation.id}: {action.value} failed: {e.message}")
            self.submission_error = f"Failed to submit proposal. {e.message}"
            self.ui_status = NegotiationState.IDLE
            return False
        finally:
            self.is_submitting = False

        self.active_proposal = stored
        self.ui_status = stored.status
        self.is_countering = False
        self.submission_error = None
        self._load_editable_state(stored)
        return True

    def _load_editable_state(self, proposal: Proposal) -> None:
        discounts = {b.key: b.discount_percent for b in proposal.bucket_summaries}
        if discounts:
            self.bucket_discounts = discounts
        self.discount_percent = proposal.discount_percent
        if proposal.downpayment_percent:
            self.downpayment_percent = proposal.downpayment_percent
        if proposal.selected_port:
            self.selected_port = proposal.selected_port

    def _sync_seller_items(self, proposal: Proposal) -> None:
        if not proposal.bucket_summaries:
            return

        server_items = items_from_proposal(
            self.conversation.id, proposal, self.conversation.seller_id, self.seller_company
        )
        cached = self.selections.get_negotiation_items(self.conversation.id)

        if cached and _fingerprint(cached) != _fingerprint(server_items):
            conflict = ReconciliationConflict(
                f"Cached negotiation items for {self.conversation.id} differ from proposal v{proposal.version}"
            )
            if self.strict_reconciliation:
                raise conflict
            logger.warning(f"{conflict.message}; using the server proposal")

        if _fingerprint(cached) != _fingerprint(server_items):
            self.selections.save_negotiation_items(self.conversation.id, server_items)


async def poll_forever(
    session: NegotiationSession,
    stop: asyncio.Event,
    interval: Optional[float] = None
) -> None:
    """
    Poll a session at a fixed cadence until ``stop`` is set.

    A failed poll is logged and simply retried at the next tick.
    """
    interval = settings.NEGOTIATION_POLL_INTERVAL_SECONDS if interval is None else interval

    while not stop.is_set():
        try:
            await session.poll()
        except PersistenceFailure as e:
            logger.warning(f"Poll failed for {session.conversation.id}: {e.message}")

        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass
