"""Pydantic schemas for conversation transcript messages."""

from datetime import datetime
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, Field


class MessageCreate(BaseModel):
    """Chat message posted by a participant."""
    text: str = Field(..., min_length=1, max_length=4000)


class MessageResponse(BaseModel):
    """Transcript message response schema."""
    id: str
    conversation_id: str
    sender_id: Optional[str]
    message_type: str
    content: Dict[str, Any]
    created_at: datetime

    model_config = {"from_attributes": True}


class MessageList(BaseModel):
    """Transcript page."""
    messages: List[MessageResponse]
    total: int
