"""Pydantic schemas package."""

from vehiclemarket.schemas.negotiation import (
    Role,
    NegotiationState,
    NegotiationAction,
    ConversationStatus,
    LineItem,
    Bucket,
    BucketSummary,
    ProposalQuote,
    Proposal,
    ProposalActionRequest,
    ProposalEnvelope,
    ProposalBatchResponse,
    ConversationStartRequest,
    ConversationResponse,
    IndexEntryResponse,
    HandoffItem,
    HandoffTotals,
    CartHandoff,
)
from vehiclemarket.schemas.message import (
    MessageCreate,
    MessageResponse,
    MessageList,
)

__all__ = [
    # Negotiation enums
    "Role",
    "NegotiationState",
    "NegotiationAction",
    "ConversationStatus",
    # Pricing schemas
    "LineItem",
    "Bucket",
    "BucketSummary",
    "ProposalQuote",
    "Proposal",
    # Negotiation API schemas
    "ProposalActionRequest",
    "ProposalEnvelope",
    "ProposalBatchResponse",
    "ConversationStartRequest",
    "ConversationResponse",
    "IndexEntryResponse",
    # Cart handoff schemas
    "HandoffItem",
    "HandoffTotals",
    "CartHandoff",
    # Message schemas
    "MessageCreate",
    "MessageResponse",
    "MessageList",
]
