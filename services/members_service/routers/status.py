"""Member status router - lifecycle changes, cancellations and history."""

import uuid

from fastapi import APIRouter, Depends
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.members_service.schemas import (
    BulkChangeStatusRequest,
    BulkStatusChangeResult,
    ChainResult,
    ChangeStatusRequest,
    RevokeCancellationRequest,
    SetCancellationRequest,
    StatusTransitionResponse,
    UpdateStatusHistoryRequest,
)
from services.members_service.services import member_status
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/clubs/{club_id}/members", tags=["member-status"])


@router.get(
    "/{member_id}/status-history", response_model=list[StatusTransitionResponse]
)
async def get_status_history(
    club_id: uuid.UUID,
    member_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Full status history, including soft-deleted entries."""
    return await member_status.get_status_history(
        db, club_id=club_id, member_id=member_id
    )


@router.post("/{member_id}/status", response_model=ChainResult)
async def change_member_status(
    club_id: uuid.UUID,
    member_id: uuid.UUID,
    payload: ChangeStatusRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Change a member's status and return the recalculated chain."""
    return await member_status.change_status(
        db,
        club_id=club_id,
        member_id=member_id,
        actor_id=current_user.user_id,
        **payload.model_dump(),
    )


@router.post("/{member_id}/status/preview", response_model=ChainResult)
async def preview_member_status(
    club_id: uuid.UUID,
    member_id: uuid.UUID,
    payload: ChangeStatusRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Show what a status change would do. Nothing is saved."""
    return await member_status.preview_change_status(
        db,
        club_id=club_id,
        member_id=member_id,
        actor_id=current_user.user_id,
        **payload.model_dump(),
    )


@router.post("/{member_id}/status/recalculate", response_model=ChainResult)
async def recalculate_member_status(
    club_id: uuid.UUID,
    member_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Re-derive the chain without changing it (repair)."""
    return await member_status.recalculate(
        db, club_id=club_id, member_id=member_id, actor_id=current_user.user_id
    )


@router.post("/{member_id}/cancellation", response_model=ChainResult)
async def set_member_cancellation(
    club_id: uuid.UUID,
    member_id: uuid.UUID,
    payload: SetCancellationRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Record a cancellation notice."""
    return await member_status.set_cancellation(
        db,
        club_id=club_id,
        member_id=member_id,
        cancellation_date=payload.cancellation_date,
        received_date=payload.cancellation_received_at,
        reason=payload.reason,
        actor_id=current_user.user_id,
    )


@router.post("/{member_id}/cancellation/revoke", response_model=ChainResult)
async def revoke_member_cancellation(
    club_id: uuid.UUID,
    member_id: uuid.UUID,
    payload: RevokeCancellationRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Withdraw a cancellation and restore the prior status."""
    return await member_status.revoke_cancellation(
        db,
        club_id=club_id,
        member_id=member_id,
        reason=payload.reason,
        actor_id=current_user.user_id,
    )


@router.patch(
    "/{member_id}/status-history/{transition_id}", response_model=ChainResult
)
async def update_status_history_entry(
    club_id: uuid.UUID,
    member_id: uuid.UUID,
    transition_id: uuid.UUID,
    payload: UpdateStatusHistoryRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Edit reason, effective date or left category of a history entry."""
    return await member_status.update_status_history_entry(
        db,
        club_id=club_id,
        member_id=member_id,
        transition_id=transition_id,
        actor_id=current_user.user_id,
        **payload.model_dump(exclude_unset=True),
    )


@router.delete(
    "/{member_id}/status-history/{transition_id}", response_model=ChainResult
)
async def delete_status_history_entry(
    club_id: uuid.UUID,
    member_id: uuid.UUID,
    transition_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Soft-delete a history entry and recalculate."""
    return await member_status.delete_status_history_entry(
        db,
        club_id=club_id,
        member_id=member_id,
        transition_id=transition_id,
        actor_id=current_user.user_id,
    )


@router.post("/bulk-status", response_model=BulkStatusChangeResult)
async def bulk_change_member_status(
    club_id: uuid.UUID,
    payload: BulkChangeStatusRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Change many members' status; failures are reported per member."""
    return await member_status.bulk_change_status(
        db,
        club_id=club_id,
        actor_id=current_user.user_id,
        **payload.model_dump(),
    )
