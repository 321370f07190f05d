"""Bearer session-token authentication dependency for FastAPI."""

import uuid

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.database import get_db
from servicehub.models.user import User, UserType
from servicehub.services.users import get_user_by_token


class AuthenticatedUser:
    """Container for the verified user context."""

    def __init__(self, user_id: uuid.UUID, user: User) -> None:
        self.user_id = user_id
        self.user = user

    @property
    def is_worker(self) -> bool:
        return self.user.user_type == UserType.WORKER

    @property
    def is_customer(self) -> bool:
        return self.user.user_type == UserType.CUSTOMER


def extract_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header[7:].strip()
    return token or None


async def verify_request(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> AuthenticatedUser:
    """Resolve the caller from an ``Authorization: Bearer <token>`` header."""
    if not request.headers.get("Authorization"):
        raise HTTPException(status_code=401, detail="Missing authentication headers")

    token = extract_token(request)
    if token is None:
        raise HTTPException(status_code=401, detail="Invalid authorization scheme")

    user = await get_user_by_token(db, token)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid or expired session")

    request.state.user_id = user.user_id
    return AuthenticatedUser(user_id=user.user_id, user=user)


async def require_admin(auth: AuthenticatedUser = Depends(verify_request)) -> AuthenticatedUser:
    if not auth.user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return auth
