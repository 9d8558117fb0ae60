"""
Proposal persistence keyed by conversation id.

The store is the single source of truth both parties poll. Every write adds a
new snapshot row; the highest version is the conversation's current proposal.
"""

import logging
from typing import Dict, List, Optional, Protocol, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vehiclemarket.core.exceptions import PersistenceFailure
from vehiclemarket.models.negotiation import Conversation, NegotiationProposal
from vehiclemarket.schemas.negotiation import ConversationStatus, NegotiationState, Proposal

logger = logging.getLogger(__name__)


def conversation_status_for(state: NegotiationState) -> ConversationStatus:
    """Coarse conversation status implied by a proposal status."""
    if state == NegotiationState.SELLER_ACCEPTED:
        return ConversationStatus.AGREED
    if state == NegotiationState.REJECTED:
        return ConversationStatus.REJECTED
    return ConversationStatus.ONGOING


class NegotiationStore(Protocol):
    """Durable proposal records keyed by conversation."""

    async def get(self, conversation_id: str) -> Optional[Proposal]:
        ...

    async def put(self, conversation_id: str, proposal: Proposal) -> Proposal:
        ...


class SqlNegotiationStore:
    """NegotiationStore backed by the negotiation_proposals table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def _to_proposal(row: NegotiationProposal) -> Proposal:
        return Proposal.model_validate(row.payload)

    async def get(self, conversation_id: str) -> Optional[Proposal]:
        """
        Get the current proposal of a conversation.

        Returns:
            Latest snapshot, or None before the first offer

        Raises:
            PersistenceFailure: If the database read fails
        """
        try:
            result = await self.db.execute(
                select(NegotiationProposal)
                .where(NegotiationProposal.conversation_id == conversation_id)
                .order_by(NegotiationProposal.version.desc(), NegotiationProposal.created_at.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Failed to load proposal for {conversation_id}: {e}", exc_info=True)
            raise PersistenceFailure("Could not load proposal") from e

        return self._to_proposal(row) if row else None

    async def get_many(self, conversation_ids: Sequence[str]) -> Dict[str, Proposal]:
        """Current proposals for several conversations; ids without one are omitted."""
        if not conversation_ids:
            return {}

        latest = (
            select(
                NegotiationProposal.conversation_id,
                func.max(NegotiationProposal.version).label("version")
            )
            .where(NegotiationProposal.conversation_id.in_(list(conversation_ids)))
            .group_by(NegotiationProposal.conversation_id)
            .subquery()
        )
        try:
            result = await self.db.execute(
                select(NegotiationProposal).join(
                    latest,
                    (NegotiationProposal.conversation_id == latest.c.conversation_id)
                    & (NegotiationProposal.version == latest.c.version)
                )
            )
            rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to load proposals: {e}", exc_info=True)
            raise PersistenceFailure("Could not load proposals") from e

        return {row.conversation_id: self._to_proposal(row) for row in rows}

    async def history(self, conversation_id: str) -> List[Proposal]:
        """All snapshots of a conversation, oldest first."""
        try:
            result = await self.db.execute(
                select(NegotiationProposal)
                .where(NegotiationProposal.conversation_id == conversation_id)
                .order_by(NegotiationProposal.version.asc())
            )
            rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to load history for {conversation_id}: {e}", exc_info=True)
            raise PersistenceFailure("Could not load proposal history") from e

        return [self._to_proposal(row) for row in rows]

    async def _next_version(self, conversation_id: str) -> int:
        result = await self.db.execute(
            select(func.max(NegotiationProposal.version))
            .where(NegotiationProposal.conversation_id == conversation_id)
        )
        return (result.scalar() or 0) + 1

    async def put(self, conversation_id: str, proposal: Proposal) -> Proposal:
        """
        Persist a new snapshot as the conversation's current proposal.

        The conversation status follows the proposal status. Both writes
        commit together or not at all. Versions are unique per
        conversation, so of two writers that read the same version only the
        first commits; the other gets PersistenceFailure.

        Args:
            conversation_id: Conversation key
            proposal: Snapshot to store

        Returns:
            The stored snapshot with its assigned version

        Raises:
            PersistenceFailure: If the write fails
        """
        try:
            version = await self._next_version(conversation_id)
            stored = proposal.model_copy(update={"version": version})

            self.db.add(NegotiationProposal(
                conversation_id=conversation_id,
                version=version,
                author_id=stored.author_id,
                author_role=stored.author_role.value,
                status=stored.status.value,
                discount_percent=stored.discount_percent,
                final_price=stored.final_price,
                downpayment_percent=stored.downpayment_percent,
                payload=stored.model_dump(mode="json"),
                submitted_at=stored.submitted_at,
            ))

            conversation = await self.db.get(Conversation, conversation_id)
            if conversation is not None:
                conversation.status = conversation_status_for(stored.status).value

            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to store proposal for {conversation_id}: {e}", exc_info=True)
            raise PersistenceFailure("Could not store proposal") from e

        return stored


class InMemoryNegotiationStore:
    """Process-local NegotiationStore, used by client sessions and tests."""

    def __init__(self):
        self._snapshots: Dict[str, List[Proposal]] = {}

    async def get(self, conversation_id: str) -> Optional[Proposal]:
        snapshots = self._snapshots.get(conversation_id)
        return snapshots[-1] if snapshots else None

    async def history(self, conversation_id: str) -> List[Proposal]:
        return list(self._snapshots.get(conversation_id, []))

    async def put(self, conversation_id: str, proposal: Proposal) -> Proposal:
        snapshots = self._snapshots.setdefault(conversation_id, [])
        stored = proposal.model_copy(update={"version": len(snapshots) + 1})
        snapshots.append(stored)
        return stored
