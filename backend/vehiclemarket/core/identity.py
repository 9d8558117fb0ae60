"""Identity types supplied by the upstream authentication gateway."""

from typing import Optional

from pydantic import BaseModel

from vehiclemarket.schemas.negotiation import Role

# Dealers negotiate as sellers; admins hold no negotiation role
ROLE_TYPES = {
    "buyer": Role.BUYER,
    "seller": Role.SELLER,
    "dealer": Role.SELLER,
    "admin": None,
}


class CurrentUser(BaseModel):
    """The authenticated caller."""
    user_id: str
    role_type: str

    @property
    def negotiation_role(self) -> Optional[Role]:
        return ROLE_TYPES.get(self.role_type.lower())

    @property
    def is_buyer(self) -> bool:
        return self.negotiation_role == Role.BUYER
