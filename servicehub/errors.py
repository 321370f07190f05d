"""Domain error taxonomy.

Each error is an HTTPException so services can raise it directly and FastAPI
renders the usual ``{"detail": ...}`` body with the mapped status code.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class DomainError(HTTPException):
    status_code = 400

    def __init__(self, detail: str) -> None:
        super().__init__(status_code=type(self).status_code, detail=detail)


class NotFoundError(DomainError):
    """Entity reference invalid: job, chat, user, bid, subcategory."""

    status_code = 404


class ValidationError(DomainError):
    """Precondition failed: missing voice/date, invalid bid amount, code mismatch."""

    status_code = 422


class AuthorizationError(DomainError):
    """Wrong actor for the operation."""

    status_code = 403


class InvalidTransitionError(DomainError):
    """Job status or broadcasting phase does not permit the operation."""

    status_code = 409


class AlreadyExistsError(DomainError):
    """Duplicate bid, vote, rating, job-from-chat, or categorizer assignment."""

    status_code = 409


class NoEligibleWorkersError(DomainError):
    status_code = 409


@asynccontextmanager
async def best_effort(db: AsyncSession, label: str) -> AsyncIterator[None]:
    """Run a side effect inside a SAVEPOINT; log and swallow any failure.

    The enclosing transaction (the authoritative state change) survives.
    """
    try:
        async with db.begin_nested():
            yield
    except Exception:
        logger.exception("Side effect failed: %s", label)
