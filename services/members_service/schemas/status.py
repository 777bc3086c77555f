"""Schemas for status changes, cancellations, history and chain results."""

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from services.members_service.models.enums import LeftCategory, MemberStatus

# ============================================================================
# CHAIN RESULT (returned by every mutation and by the preview)
# ============================================================================


class RemovedTransition(BaseModel):
    """A chain entry cascade-deleted because it no longer fits the path."""

    id: uuid.UUID
    from_status: MemberStatus
    to_status: MemberStatus
    effective_date: date
    reason: str
    cause: str = "invalid_transition"
    caused_by_transition_id: Optional[uuid.UUID] = None


class RestoredTransition(BaseModel):
    """A cascade-deleted entry brought back because its cause was deleted."""

    id: uuid.UUID
    to_status: MemberStatus
    effective_date: date
    reason: str


class PeriodChange(BaseModel):
    id: uuid.UUID
    join_date: date
    previous_leave_date: Optional[date] = None
    leave_date: Optional[date] = None


class ChainResult(BaseModel):
    removed_transitions: list[RemovedTransition] = Field(default_factory=list)
    restored_transitions: list[RestoredTransition] = Field(default_factory=list)
    closed_periods: list[PeriodChange] = Field(default_factory=list)
    reopened_periods: list[PeriodChange] = Field(default_factory=list)
    final_member_status: MemberStatus = MemberStatus.PENDING
    has_changes: bool = False


# ============================================================================
# REQUESTS
# ============================================================================


class ChangeStatusRequest(BaseModel):
    new_status: MemberStatus
    reason: str = Field(..., min_length=1, max_length=500)
    effective_date: Optional[date] = Field(
        default=None, description="Defaults to today in the club time zone"
    )
    left_category: Optional[LeftCategory] = Field(
        default=None, description="Required when new_status is LEFT"
    )
    membership_type_id: Optional[uuid.UUID] = Field(
        default=None,
        description="Required for a self-transition (membership type change)",
    )


class BulkChangeStatusRequest(BaseModel):
    member_ids: list[uuid.UUID] = Field(..., min_length=1)
    new_status: MemberStatus
    reason: str = Field(..., min_length=1, max_length=500)
    effective_date: Optional[date] = None
    left_category: Optional[LeftCategory] = None
    membership_type_id: Optional[uuid.UUID] = None


class SetCancellationRequest(BaseModel):
    cancellation_date: date = Field(..., description="When the membership ends")
    cancellation_received_at: date = Field(
        ..., description="When the notice was received"
    )
    reason: Optional[str] = Field(default=None, max_length=500)


class RevokeCancellationRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class UpdateStatusHistoryRequest(BaseModel):
    reason: Optional[str] = Field(default=None, min_length=1, max_length=500)
    effective_date: Optional[date] = None
    left_category: Optional[LeftCategory] = Field(
        default=None, description="Only for LEFT transitions"
    )


# ============================================================================
# RESPONSES
# ============================================================================


class SkippedMember(BaseModel):
    id: uuid.UUID
    reason: str


class BulkStatusChangeResult(BaseModel):
    updated: list[uuid.UUID] = Field(default_factory=list)
    skipped: list[SkippedMember] = Field(default_factory=list)


class StatusTransitionResponse(BaseModel):
    """A history entry; ``from_status`` is derived by replaying the chain."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    member_id: uuid.UUID
    club_id: uuid.UUID
    from_status: Optional[MemberStatus] = None
    to_status: MemberStatus
    reason: str
    left_category: Optional[LeftCategory] = None
    effective_date: date
    actor_id: str
    created_at: datetime
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None
    deleted_by_transition_id: Optional[uuid.UUID] = None
