"""Transcript service: append-only message log of a conversation."""

from typing import List, Optional, Dict, Any
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from vehiclemarket.models.message import ConversationMessage
from vehiclemarket.services.negotiation_state_machine import NegotiationEvent
from vehiclemarket.services.proposal_calculator import display_amount, display_percent

SYSTEM_TEMPLATES = {
    "proposal_submitted": "{role} submitted a proposal",
    "proposal_countered": "{role} sent a counter offer",
    "proposal_accepted": "{role} accepted the proposal",
    "proposal_rejected": "{role} rejected the proposal",
}


async def append_message(
    db: AsyncSession,
    conversation_id: str,
    message_type: str,
    content_data: Dict[str, Any],
    sender_id: Optional[str] = None
) -> ConversationMessage:
    """
    Append a message to a conversation transcript.

    Args:
        db: Database session
        conversation_id: Conversation key
        message_type: chat or system
        content_data: Message content
        sender_id: Author user id, None for system messages

    Returns:
        Created message
    """
    message = ConversationMessage(
        conversation_id=conversation_id,
        sender_id=sender_id,
        message_type=message_type,
        content=content_data,
    )

    db.add(message)
    await db.commit()
    await db.refresh(message)

    return message


def system_message_for(event: NegotiationEvent) -> Dict[str, Any]:
    """Render a transition event as system message content."""
    text = SYSTEM_TEMPLATES.get(event.type, "{role} updated the negotiation").format(
        role=event.role.value.capitalize()
    )
    return {
        "event": event.type,
        "text": text,
        "status": event.status.value,
        "version": event.version,
        "discount_percent": display_percent(event.discount_percent),
        "final_price": str(display_amount(event.final_price)),
        "downpayment_percent": display_percent(event.downpayment_percent),
        "currency": event.currency,
    }


class TranscriptRecorder:
    """Negotiation observer that writes one system message per transition."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def __call__(self, event: NegotiationEvent) -> None:
        await append_message(
            self.db,
            conversation_id=event.conversation_id,
            message_type="system",
            content_data=system_message_for(event),
        )


async def get_transcript(
    db: AsyncSession,
    conversation_id: str,
    since: Optional[datetime] = None,
    limit: int = 50,
    offset: int = 0
) -> tuple[List[ConversationMessage], int]:
    """
    Get transcript messages of a conversation, oldest first.

    Args:
        db: Database session
        conversation_id: Conversation key
        since: Only messages after this timestamp
        limit: Maximum results
        offset: Pagination offset

    Returns:
        Tuple of (messages, total_count)
    """
    query = select(ConversationMessage).where(ConversationMessage.conversation_id == conversation_id)

    if since:
        query = query.where(ConversationMessage.created_at >= since)

    count_query = select(func.count()).select_from(query.subquery())
    total_result = await db.execute(count_query)
    total_count = total_result.scalar()

    query = query.order_by(ConversationMessage.created_at.asc()).offset(offset).limit(limit)
    result = await db.execute(query)
    messages = list(result.scalars().all())

    return messages, total_count
