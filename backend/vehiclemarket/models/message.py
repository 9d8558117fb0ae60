"""Conversation transcript message model."""

from datetime import datetime
import uuid

from sqlalchemy import String, ForeignKey, TIMESTAMP
from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column

from vehiclemarket.core.timeutils import utcnow
from vehiclemarket.database import Base


class ConversationMessage(Base):
    """Append-only transcript entry of a negotiation conversation."""

    __tablename__ = "conversation_messages"

    # Primary Key
    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )

    # Foreign Keys
    conversation_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    sender_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True
    )  # None for system messages

    # Message Details
    message_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False
    )  # chat|system
    content: Mapped[dict] = mapped_column(
        JSON,
        nullable=False
    )

    # Timestamp
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=utcnow,
        index=True
    )

    def __repr__(self) -> str:
        return f"<ConversationMessage(id={self.id}, type={self.message_type}, conversation={self.conversation_id})>"
