"""
Auth Dependencies

FastAPI dependencies for authentication.

Token validation happens in the upstream gateway; requests that reach this
service carry the resolved identity in forwarded headers.
"""

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

security = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    """Identity of the authenticated caller."""

    id: str
    name: str | None = None
    email: str | None = None
    group_id: str | None = None

    def brief(self) -> dict[str, str | None]:
        """Identity as embedded in broadcast payloads."""
        return {"id": self.id, "name": self.name, "email": self.email}


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    x_user_id: str | None = Header(default=None),
    x_user_name: str | None = Header(default=None),
    x_user_email: str | None = Header(default=None),
    x_group_id: str | None = Header(default=None),
) -> CurrentUser:
    """Get current authenticated user."""
    if credentials is None or not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return CurrentUser(
        id=x_user_id,
        name=x_user_name,
        email=x_user_email,
        group_id=x_group_id or None,
    )


async def require_group(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """Get current user and make sure they belong to a group."""
    if not current_user.group_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User must belong to a group",
        )
    return current_user
