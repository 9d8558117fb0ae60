"""Negotiation error taxonomy.

Every error raised by the negotiation core derives from NegotiationError and
carries a stable machine-readable ``code`` that the API layer returns in the
``{"code": ..., "message": ...}`` error detail.
"""


class NegotiationError(Exception):
    """Base class for negotiation errors."""

    code = "NEGOTIATION_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidProposalInput(NegotiationError):
    """Discount, down payment or bucket input is out of range or empty."""

    code = "INVALID_PROPOSAL_INPUT"


class IllegalTransition(NegotiationError):
    """The actor may not perform this action in the current state."""

    code = "ILLEGAL_TRANSITION"


class PersistenceFailure(NegotiationError):
    """The proposal store could not read or write a snapshot."""

    code = "PERSISTENCE_FAILURE"


class ReconciliationConflict(NegotiationError):
    """Locally cached selection disagrees with the server proposal."""

    code = "RECONCILIATION_CONFLICT"


class ConversationNotFound(NegotiationError):
    """No conversation exists for the given id."""

    code = "CONVERSATION_NOT_FOUND"


class NotAParticipant(NegotiationError):
    """The user is neither the buyer nor the seller of the conversation."""

    code = "NOT_A_PARTICIPANT"
