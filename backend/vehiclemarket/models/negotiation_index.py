"""Discovery index model for conversation listings."""

from datetime import datetime

from sqlalchemy import String, TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column

from vehiclemarket.core.timeutils import utcnow
from vehiclemarket.database import Base


class NegotiationIndexEntry(Base):
    """Best-effort listing record, one per conversation."""

    __tablename__ = "negotiation_index"

    conversation_id: Mapped[str] = mapped_column(String(255), primary_key=True)

    buyer_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    seller_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    item_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    role_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    # role of whoever last wrote the entry

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="ongoing")

    started_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<NegotiationIndexEntry(conversation_id={self.conversation_id}, status={self.status})>"
