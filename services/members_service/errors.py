"""Errors raised by the member status chain.

They subclass ``HTTPException`` so routers can let them propagate unchanged;
service code and the scheduled job catch them by class.
"""

from typing import Iterable, Optional

from fastapi import HTTPException, status
from services.members_service.models.enums import MemberStatus


class MemberStatusError(HTTPException):
    """Base class for every status-chain error."""

    default_status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str, status_code: Optional[int] = None):
        super().__init__(
            status_code=status_code or self.default_status_code, detail=detail
        )


class NotFoundError(MemberStatusError):
    """Member or transition missing, soft-deleted, or outside the club."""

    default_status_code = status.HTTP_404_NOT_FOUND


class InvalidTransitionError(MemberStatusError):
    """A status move that the transition graph does not allow."""

    def __init__(
        self,
        from_status: MemberStatus,
        to_status: MemberStatus,
        allowed: Iterable[MemberStatus],
        detail: Optional[str] = None,
    ):
        self.from_status = from_status
        self.to_status = to_status
        self.allowed = sorted(allowed, key=lambda s: s.value)
        allowed_text = ", ".join(s.value for s in self.allowed) or "none"
        super().__init__(
            detail
            or (
                f"Invalid status change: {from_status.value} -> "
                f"{to_status.value} is not allowed. "
                f"Allowed transitions: {allowed_text}"
            )
        )


class ConflictError(MemberStatusError):
    """The request collides with existing chain or cancellation state."""

    default_status_code = status.HTTP_409_CONFLICT


class StatusValidationError(MemberStatusError):
    """Missing or malformed input (left category, membership type, dates)."""

    default_status_code = 422
