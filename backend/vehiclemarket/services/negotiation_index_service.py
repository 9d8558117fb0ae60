"""Discovery index of conversations for negotiation listings."""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vehiclemarket.core.timeutils import utcnow
from vehiclemarket.models.negotiation_index import NegotiationIndexEntry
from vehiclemarket.schemas.negotiation import ConversationStatus, Role

logger = logging.getLogger(__name__)


class SqlNegotiationIndex:
    """Index entries stored in the negotiation_index table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def upsert(
        self,
        conversation_id: str,
        buyer_id: str,
        seller_id: str,
        item_id: Optional[str],
        status: ConversationStatus,
        role_type: Optional[str] = None
    ) -> None:
        """
        Create or refresh the index entry of a conversation.

        Callers treat this as best-effort; a failure is rolled back and
        re-raised for the caller to log.
        """
        try:
            entry = await self.db.get(NegotiationIndexEntry, conversation_id)
            now = utcnow()

            if entry is None:
                entry = NegotiationIndexEntry(
                    conversation_id=conversation_id,
                    buyer_id=buyer_id,
                    seller_id=seller_id,
                    item_id=item_id,
                    role_type=role_type,
                    status=status.value,
                    started_at=now,
                    updated_at=now,
                )
                self.db.add(entry)
            else:
                entry.status = status.value
                entry.role_type = role_type or entry.role_type
                entry.item_id = item_id or entry.item_id
                entry.updated_at = now

            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

    async def list_for_user(
        self,
        user_id: str,
        role: Optional[Role] = None,
        status_filter: Optional[ConversationStatus] = None
    ) -> List[NegotiationIndexEntry]:
        """
        List the conversations a user takes part in, most recent first.

        Args:
            user_id: User id
            role: Only conversations where the user holds this role
            status_filter: Optional status filter (ongoing, agreed, rejected)
        """
        if role == Role.BUYER:
            query = select(NegotiationIndexEntry).where(NegotiationIndexEntry.buyer_id == user_id)
        elif role == Role.SELLER:
            query = select(NegotiationIndexEntry).where(NegotiationIndexEntry.seller_id == user_id)
        else:
            query = select(NegotiationIndexEntry).where(
                (NegotiationIndexEntry.buyer_id == user_id) |
                (NegotiationIndexEntry.seller_id == user_id)
            )

        if status_filter:
            query = query.where(NegotiationIndexEntry.status == status_filter.value)

        query = query.order_by(NegotiationIndexEntry.updated_at.desc())

        result = await self.db.execute(query)
        return list(result.scalars().all())
