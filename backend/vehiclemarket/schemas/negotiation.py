"""
Negotiation schemas for buyer-seller price negotiation over vehicle buckets.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List, Dict

from pydantic import BaseModel, ConfigDict, Field, computed_field


class Role(str, Enum):
    """Negotiation role of a participant."""
    BUYER = "buyer"
    SELLER = "seller"


class NegotiationState(str, Enum):
    """State of a conversation's negotiation, derived from its current proposal."""
    IDLE = "idle"
    BUYER_PROPOSED = "buyer_proposed"
    SELLER_COUNTERED = "seller_countered"
    BUYER_COUNTERED = "buyer_countered"
    SELLER_ACCEPTED = "seller_accepted"
    REJECTED = "rejected"


class NegotiationAction(str, Enum):
    """Actions a participant can take on a conversation."""
    SUBMIT = "submit"
    COUNTER = "counter"
    ACCEPT = "accept"
    REJECT = "reject"


class ConversationStatus(str, Enum):
    """Coarse conversation status used by listings and the discovery index."""
    ONGOING = "ongoing"
    AGREED = "agreed"
    REJECTED = "rejected"


# Line items & buckets

class LineItem(BaseModel):
    """A vehicle entry selected in the quote builder."""
    id: str
    name: str = ""
    brand: Optional[str] = None
    model: Optional[str] = None
    variant: Optional[str] = None
    color: Optional[str] = None
    year: Optional[int] = None
    condition: Optional[str] = None
    body_type: Optional[str] = None
    location: str = ""
    price: Decimal = Field(..., ge=0, description="Unit price")
    currency: str = "USD"
    quantity: int = Field(1, ge=1)
    seller_id: Optional[str] = None
    seller_company: Optional[str] = None
    main_image_url: Optional[str] = None
    bucket_key: Optional[str] = Field(None, description="Precomputed grouping key, if any")
    is_selected: bool = True


class Bucket(BaseModel):
    """Identical-spec units offered by one seller, priced together."""
    key: str
    name: str = ""
    brand: Optional[str] = None
    model: Optional[str] = None
    variant: Optional[str] = None
    color: Optional[str] = None
    year: Optional[int] = None
    condition: Optional[str] = None
    body_type: Optional[str] = None
    location: str = ""
    main_image_url: Optional[str] = None
    unit_price: Decimal = Field(..., ge=0)
    currency: str
    total_units: int = Field(..., ge=1)
    bucket_total: Decimal = Field(..., ge=0, description="unit_price x total_units, before discount")


class BucketSummary(BaseModel):
    """Per-bucket breakdown carried inside a proposal."""
    key: str
    name: str = ""
    total: Decimal = Field(..., description="Pre-discount bucket total")
    discount_percent: Decimal = Decimal("0")
    total_units: int
    unit_price: Decimal
    currency: str
    brand: Optional[str] = None
    model: Optional[str] = None
    variant: Optional[str] = None
    color: Optional[str] = None
    year: Optional[int] = None
    condition: Optional[str] = None
    body_type: Optional[str] = None
    main_image_url: Optional[str] = None

    @property
    def discounted_total(self) -> Decimal:
        return self.total * (1 - self.discount_percent / 100)


# Proposals

class ProposalQuote(BaseModel):
    """Priced figures for a set of buckets, before they become a proposal."""
    discount_percent: Decimal
    discount_amount: Decimal
    final_price: Decimal
    downpayment_percent: Decimal
    downpayment_amount: Decimal
    remaining_balance: Decimal
    bucket_total: Decimal
    bucket_name: str
    bucket_summaries: List[BucketSummary]


class Proposal(ProposalQuote):
    """Immutable snapshot of one negotiation offer."""
    model_config = ConfigDict(frozen=True)

    selected_port: str
    submitted_at: datetime
    status: NegotiationState
    author_role: Role
    author_id: str
    version: int = 0


class ProposalActionRequest(BaseModel):
    """Request to submit, counter, accept or reject on a conversation."""
    action: NegotiationAction = Field(..., description="Action: submit, counter, accept, or reject")
    items: List[LineItem] = Field(default_factory=list, description="Selected line items (submit/counter)")
    buckets: List[Bucket] = Field(default_factory=list, description="Pre-grouped buckets, used instead of items when given")
    discount_percent: Decimal = Field(Decimal("0"), description="Discount applied to every bucket")
    bucket_discounts: Dict[str, Decimal] = Field(default_factory=dict, description="Per-bucket discount overrides")
    downpayment_percent: Optional[Decimal] = Field(None, description="Down payment percent (10-100)")
    selected_port: Optional[str] = Field(None, description="Port of loading")


class ProposalEnvelope(BaseModel):
    """Current proposal of a conversation, or null before the first offer."""
    conversation_id: str
    proposal: Optional[Proposal] = None


class ProposalBatchResponse(BaseModel):
    """Current proposals keyed by conversation id."""
    proposals: Dict[str, Proposal] = {}


# Conversations

class ConversationStartRequest(BaseModel):
    """Request to open a negotiation on an item."""
    seller_id: str = Field(..., description="Seller (or dealer) user id")
    item_id: str = Field(..., description="Vehicle id being negotiated")


class ConversationResponse(BaseModel):
    """Conversation with its current negotiation state."""
    id: str
    buyer_id: str
    seller_id: str
    item_id: str
    status: ConversationStatus
    created_at: datetime
    updated_at: datetime
    state: NegotiationState = NegotiationState.IDLE
    current_proposal: Optional[Proposal] = None
    allowed_actions: List[NegotiationAction] = []

    @computed_field
    @property
    def waiting_for(self) -> Optional[Role]:
        """Who needs to act next."""
        if self.state == NegotiationState.IDLE:
            return Role.BUYER
        if self.state in (NegotiationState.BUYER_PROPOSED, NegotiationState.BUYER_COUNTERED):
            return Role.SELLER
        if self.state == NegotiationState.SELLER_COUNTERED:
            return Role.BUYER
        return None

    model_config = {"from_attributes": True}


class IndexEntryResponse(BaseModel):
    """Discovery index entry for conversation listings."""
    conversation_id: str
    buyer_id: str
    seller_id: str
    item_id: Optional[str]
    role_type: Optional[str]
    status: ConversationStatus
    started_at: datetime
    updated_at: datetime
    proposal_status: Optional[NegotiationState] = None

    model_config = {"from_attributes": True}


# Cart handoff

class HandoffItem(BaseModel):
    """One negotiated bucket handed to order creation."""
    bucket_key: str
    name: str
    total_units: int
    unit_price: Decimal
    currency: str
    discount_percent: Decimal
    total: Decimal = Field(..., description="Discounted bucket total")
    brand: Optional[str] = None
    model: Optional[str] = None
    variant: Optional[str] = None
    color: Optional[str] = None
    year: Optional[int] = None
    condition: Optional[str] = None
    body_type: Optional[str] = None
    main_image_url: Optional[str] = None


class HandoffTotals(BaseModel):
    total: Decimal
    downpayment: Decimal
    pending: Decimal


class CartHandoff(BaseModel):
    """Accepted negotiation as consumed by the order-creation collaborator."""
    conversation_id: str
    buyer_id: str
    seller_id: str
    item_id: str
    items: List[HandoffItem]
    totals: HandoffTotals
    selected_port: str
    logistics_partner: str
    destination_port: Optional[str] = None
