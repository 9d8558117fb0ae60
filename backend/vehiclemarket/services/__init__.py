"""Business logic services package."""

from vehiclemarket.services.bucket_aggregator import build_bucket_key, group_buckets, aggregate_total
from vehiclemarket.services.proposal_calculator import price, display_amount, display_percent
from vehiclemarket.services.negotiation_store import (
    NegotiationStore,
    SqlNegotiationStore,
    InMemoryNegotiationStore,
)
from vehiclemarket.services.negotiation_state_machine import NegotiationStateMachine
from vehiclemarket.services.negotiation_session import NegotiationSession, poll_forever
from vehiclemarket.services.negotiation_service import negotiation_service

__all__ = [
    # Bucket aggregation
    "build_bucket_key",
    "group_buckets",
    "aggregate_total",
    # Proposal pricing
    "price",
    "display_amount",
    "display_percent",
    # Proposal store
    "NegotiationStore",
    "SqlNegotiationStore",
    "InMemoryNegotiationStore",
    # Negotiation protocol
    "NegotiationStateMachine",
    "NegotiationSession",
    "poll_forever",
    "negotiation_service",
]
