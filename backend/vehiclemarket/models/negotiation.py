"""
Negotiation models for buyer-seller price negotiation over a conversation.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import List

from sqlalchemy import String, Integer, ForeignKey, TIMESTAMP, Numeric, JSON, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vehiclemarket.core.timeutils import utcnow
from vehiclemarket.database import Base


class Conversation(Base):
    """Negotiation session between one buyer and one seller over one item."""

    __tablename__ = "conversations"

    # Opaque key: {buyer_id}_{seller_id}_{item_id}_{token}
    id: Mapped[str] = mapped_column(String(255), primary_key=True)

    # Participants
    buyer_id: Mapped[str] = mapped_column(String(64), index=True)
    seller_id: Mapped[str] = mapped_column(String(64), index=True)
    item_id: Mapped[str] = mapped_column(String(64))

    status: Mapped[str] = mapped_column(String(20), default="ongoing")
    # ongoing | agreed | rejected

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    proposals: Mapped[List["NegotiationProposal"]] = relationship(
        "NegotiationProposal",
        back_populates="conversation",
        order_by="NegotiationProposal.version"
    )


class NegotiationProposal(Base):
    """One immutable proposal snapshot; later versions supersede earlier ones."""

    __tablename__ = "negotiation_proposals"
    __table_args__ = (
        UniqueConstraint("conversation_id", "version", name="uq_negotiation_proposals_conversation_version"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    conversation_id: Mapped[str] = mapped_column(String(255), ForeignKey("conversations.id"), index=True)
    version: Mapped[int] = mapped_column(Integer)

    # Who submitted it
    author_id: Mapped[str] = mapped_column(String(64))
    author_role: Mapped[str] = mapped_column(String(10))  # "buyer" | "seller"

    status: Mapped[str] = mapped_column(String(20))
    # buyer_proposed | seller_countered | buyer_countered | seller_accepted | rejected

    # Headline figures, kept as columns for listings
    discount_percent: Mapped[Decimal] = mapped_column(Numeric(7, 4))
    final_price: Mapped[Decimal] = mapped_column(Numeric(20, 8))
    downpayment_percent: Mapped[Decimal] = mapped_column(Numeric(7, 4))

    # Full snapshot; the source of truth for reads
    payload: Mapped[dict] = mapped_column(JSON)

    submitted_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), default=utcnow)

    # Relationships
    conversation: Mapped["Conversation"] = relationship("Conversation", back_populates="proposals")
