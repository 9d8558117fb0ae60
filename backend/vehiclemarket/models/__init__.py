"""Database models package."""

from vehiclemarket.models.negotiation import Conversation, NegotiationProposal
from vehiclemarket.models.negotiation_index import NegotiationIndexEntry
from vehiclemarket.models.message import ConversationMessage

__all__ = [
    "Conversation",
    "NegotiationProposal",
    "NegotiationIndexEntry",
    "ConversationMessage",
]
