"""Hand an accepted negotiation over to order creation."""

from typing import Optional

from vehiclemarket.config import settings
from vehiclemarket.core.exceptions import IllegalTransition, InvalidProposalInput
from vehiclemarket.schemas.negotiation import (
    CartHandoff,
    HandoffItem,
    HandoffTotals,
    NegotiationState,
    Proposal,
)
from vehiclemarket.services.negotiation_state_machine import ConversationRef


def build_handoff(
    conversation: ConversationRef,
    proposal: Optional[Proposal],
    logistics_partner: Optional[str] = None,
    destination_port: Optional[str] = None
) -> CartHandoff:
    """
    Build the order-creation payload of an accepted proposal.

    Args:
        conversation: Negotiated conversation
        proposal: Its current proposal
        logistics_partner: UGR or None; defaults to the first configured partner
        destination_port: Port of destination, only used with a logistics partner

    Returns:
        CartHandoff with discounted bucket totals and payment totals

    Raises:
        IllegalTransition: If the negotiation has not been accepted
        InvalidProposalInput: If the logistics options are unknown
    """
    if proposal is None or proposal.status != NegotiationState.SELLER_ACCEPTED:
        raise IllegalTransition("Only an accepted negotiation can be added to the cart")

    logistics_partner = logistics_partner or settings.LOGISTICS_PARTNERS[0]
    if logistics_partner not in settings.LOGISTICS_PARTNERS:
        raise InvalidProposalInput(f"Unknown logistics partner: {logistics_partner}")

    # Destination only applies when a logistics partner ships the vehicles
    if logistics_partner == "None":
        destination_port = None
    else:
        destination_port = destination_port or settings.DESTINATION_PORTS[0]
        if destination_port not in settings.DESTINATION_PORTS:
            raise InvalidProposalInput(f"Unknown destination port: {destination_port}")

    items = [
        HandoffItem(
            bucket_key=b.key,
            name=b.name,
            total_units=b.total_units,
            unit_price=b.unit_price,
            currency=b.currency,
            discount_percent=b.discount_percent,
            total=b.discounted_total,
            brand=b.brand,
            model=b.model,
            variant=b.variant,
            color=b.color,
            year=b.year,
            condition=b.condition,
            body_type=b.body_type,
            main_image_url=b.main_image_url,
        )
        for b in proposal.bucket_summaries
    ]

    return CartHandoff(
        conversation_id=conversation.id,
        buyer_id=conversation.buyer_id,
        seller_id=conversation.seller_id,
        item_id=conversation.item_id,
        items=items,
        totals=HandoffTotals(
            total=proposal.final_price,
            downpayment=proposal.downpayment_amount,
            pending=proposal.remaining_balance,
        ),
        selected_port=proposal.selected_port,
        logistics_partner=logistics_partner,
        destination_port=destination_port,
    )
