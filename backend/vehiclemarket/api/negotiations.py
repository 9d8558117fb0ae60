"""
Negotiation endpoints for buyer-seller price negotiation on vehicle buckets.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.ext.asyncio import AsyncSession

from vehiclemarket.api.deps import get_db, get_current_user
from vehiclemarket.core.exceptions import NegotiationError
from vehiclemarket.core.identity import CurrentUser
from vehiclemarket.schemas.message import MessageCreate, MessageList, MessageResponse
from vehiclemarket.schemas.negotiation import (
    CartHandoff,
    ConversationResponse,
    ConversationStartRequest,
    ConversationStatus,
    IndexEntryResponse,
    ProposalActionRequest,
    ProposalBatchResponse,
    ProposalEnvelope,
    Role,
)
from vehiclemarket.services.negotiation_service import negotiation_service
from vehiclemarket.services.transcript_service import append_message, get_transcript

router = APIRouter(prefix="/negotiations", tags=["negotiations"])

ERROR_STATUS = {
    "INVALID_PROPOSAL_INPUT": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "ILLEGAL_TRANSITION": status.HTTP_409_CONFLICT,
    "RECONCILIATION_CONFLICT": status.HTTP_409_CONFLICT,
    "PERSISTENCE_FAILURE": status.HTTP_503_SERVICE_UNAVAILABLE,
    "CONVERSATION_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "NOT_A_PARTICIPANT": status.HTTP_403_FORBIDDEN,
}


def to_http_error(error: NegotiationError) -> HTTPException:
    """Map a negotiation error onto the API error format."""
    return HTTPException(
        status_code=ERROR_STATUS.get(error.code, status.HTTP_400_BAD_REQUEST),
        detail={
            "code": error.code,
            "message": error.message
        }
    )


@router.post("", response_model=ConversationResponse, status_code=status.HTTP_201_CREATED)
async def start_negotiation(
    request: ConversationStartRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user)
):
    """
    Open a price negotiation with a seller on one of their vehicles.

    Only buyers can start a negotiation. The conversation starts IDLE; the
    buyer then submits the first proposal.

    Example:
        ```json
        {"seller_id": "seller-42", "item_id": "vehicle-123"}
        ```
    """
    try:
        conversation = await negotiation_service.start_negotiation(
            db=db,
            user=current_user,
            seller_id=request.seller_id,
            item_id=request.item_id
        )
        return await negotiation_service.describe(db, conversation.id, current_user)

    except NegotiationError as e:
        raise to_http_error(e)


@router.get("", response_model=list[IndexEntryResponse])
async def list_my_negotiations(
    role: Optional[Role] = Query(None, description="Filter by your role: buyer or seller"),
    status_filter: Optional[ConversationStatus] = Query(
        None, alias="status", description="Filter by status: ongoing, agreed, rejected"
    ),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user)
):
    """
    List all negotiations where you're involved (as buyer or seller).

    Returns:
        Index entries with the current proposal status of each conversation
    """
    return await negotiation_service.list_my_negotiations(
        db=db,
        user=current_user,
        role=role,
        status_filter=status_filter
    )


@router.get("/proposals", response_model=ProposalBatchResponse)
async def get_proposals(
    ids: str = Query(..., description="Comma-separated conversation ids"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user)
):
    """
    Current proposals of several conversations at once.

    Conversations without a proposal, or that you are not part of, are omitted.
    """
    conversation_ids = [cid.strip() for cid in ids.split(",") if cid.strip()]

    try:
        proposals = await negotiation_service.get_proposals(db, conversation_ids, current_user)
        return ProposalBatchResponse(proposals=proposals)

    except NegotiationError as e:
        raise to_http_error(e)


@router.get("/{conversation_id}", response_model=ConversationResponse)
async def get_negotiation(
    conversation_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user)
):
    """
    Get details of a specific negotiation.

    Only the buyer and seller can view it.
    """
    try:
        return await negotiation_service.describe(db, conversation_id, current_user)

    except NegotiationError as e:
        raise to_http_error(e)


@router.get("/{conversation_id}/proposal", response_model=ProposalEnvelope)
async def get_proposal(
    conversation_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user)
):
    """
    Current proposal of a negotiation; this is what both parties poll.

    ``proposal`` is null until the buyer submits the first offer.
    """
    try:
        proposal = await negotiation_service.get_proposal(db, conversation_id, current_user)
        return ProposalEnvelope(conversation_id=conversation_id, proposal=proposal)

    except NegotiationError as e:
        raise to_http_error(e)


@router.post("/{conversation_id}/proposal", response_model=ProposalEnvelope)
async def act_on_proposal(
    conversation_id: str,
    request: ProposalActionRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user)
):
    """
    Submit, counter, accept or reject.

    Submit (buyer, opening offer):
        ```json
        {
          "action": "submit",
          "items": [{"id": "v1", "brand": "Toyota", "model": "Corolla", "price": 10000, "quantity": 3}],
          "discount_percent": 5,
          "downpayment_percent": 20,
          "selected_port": "Dubai"
        }
        ```

    Counter with per-bucket discounts:
        ```json
        {"action": "counter", "items": [...], "bucket_discounts": {"toyota|corolla|...": 3}}
        ```

    Accept or reject the pending offer:
        ```json
        {"action": "accept"}
        ```

    Returns:
        The stored proposal
    """
    try:
        proposal = await negotiation_service.act(db, conversation_id, current_user, request)
        return ProposalEnvelope(conversation_id=conversation_id, proposal=proposal)

    except NegotiationError as e:
        raise to_http_error(e)


@router.get("/{conversation_id}/handoff", response_model=CartHandoff)
async def get_cart_handoff(
    conversation_id: str,
    logistics_partner: Optional[str] = Query(None, description="UGR or None"),
    destination_port: Optional[str] = Query(None, description="Port of destination when shipping with UGR"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user)
):
    """
    Accepted negotiation as an order-creation payload (buyer only).
    """
    try:
        return await negotiation_service.get_handoff(
            db, conversation_id, current_user, logistics_partner, destination_port
        )

    except NegotiationError as e:
        raise to_http_error(e)


@router.get("/{conversation_id}/messages", response_model=MessageList)
async def get_messages(
    conversation_id: str,
    since: Optional[datetime] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user)
):
    """
    Transcript of a negotiation: chat messages and one system message per action.
    """
    try:
        await negotiation_service.get_conversation(db, conversation_id, current_user)
    except NegotiationError as e:
        raise to_http_error(e)

    messages, total = await get_transcript(
        db=db,
        conversation_id=conversation_id,
        since=since,
        limit=limit,
        offset=offset
    )

    return MessageList(
        messages=[MessageResponse.model_validate(m) for m in messages],
        total=total
    )


@router.post("/{conversation_id}/messages", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def post_message(
    conversation_id: str,
    request: MessageCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user)
):
    """
    Post a chat message to a negotiation.
    """
    try:
        await negotiation_service.get_conversation(db, conversation_id, current_user)
    except NegotiationError as e:
        raise to_http_error(e)

    message = await append_message(
        db,
        conversation_id=conversation_id,
        message_type="chat",
        content_data={"text": request.text},
        sender_id=current_user.user_id
    )
    return MessageResponse.model_validate(message)
