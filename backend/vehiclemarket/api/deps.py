"""API dependencies for caller identity and database access."""

from typing import Optional

from fastapi import Header, HTTPException, status

from vehiclemarket.core.identity import ROLE_TYPES, CurrentUser
from vehiclemarket.database import get_db

__all__ = ["get_current_user", "get_db"]


async def get_current_user(
    x_user_id: Optional[str] = Header(None, description="Authenticated user id"),
    x_user_role: Optional[str] = Header(None, description="Role type: buyer, seller, dealer or admin")
) -> CurrentUser:
    """
    Dependency that reads the caller identity set by the authentication gateway.

    Args:
        x_user_id: User id from X-User-Id header
        x_user_role: Role type from X-User-Role header

    Returns:
        CurrentUser: The authenticated caller

    Raises:
        HTTPException: 401 if the identity headers are missing or the role is unknown
    """
    if not x_user_id or not x_user_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "code": "UNAUTHENTICATED",
                "message": "X-User-Id and X-User-Role headers are required"
            }
        )

    if x_user_role.lower() not in ROLE_TYPES:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "code": "UNKNOWN_ROLE",
                "message": f"Unknown role type: {x_user_role}"
            }
        )

    return CurrentUser(user_id=x_user_id, role_type=x_user_role.lower())

