"""Member status mutations.

Every public function is one unit of work: validate, write the triggering
change, recalculate the chain, sync the member projection, then commit. Any
error rolls the whole unit back. ``preview_change_status`` runs the same
pipeline as a dry run and always rolls back.
"""

import uuid
from datetime import date
from typing import Iterable, Optional, Union

from libs.common.datetime_utils import local_today, parse_iso_date, utc_now
from libs.common.logging import get_logger
from libs.db.session import unit_of_work
from services.members_service.errors import (
    ConflictError,
    InvalidTransitionError,
    MemberStatusError,
    NotFoundError,
    StatusValidationError,
)
from services.members_service.models import (
    CANCELLABLE_STATUSES,
    LeftCategory,
    Member,
    MembershipPeriod,
    MemberStatus,
    MemberStatusTransition,
)
from services.members_service.schemas import (
    BulkStatusChangeResult,
    ChainResult,
    SkippedMember,
    StatusTransitionResponse,
)
from services.members_service.services.chain_engine import (
    load_chain,
    load_member,
    load_periods,
    recalculate_chain,
    replay_chain,
)
from services.members_service.services.transition_graph import allowed
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

DateInput = Union[date, str, None]

# Statuses that do not hold a membership period
PERIODLESS_STATUSES = frozenset({MemberStatus.LEFT, MemberStatus.PENDING})


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _parse_date(value: DateInput, field_name: str) -> Optional[date]:
    try:
        return parse_iso_date(value)
    except ValueError as exc:
        raise StatusValidationError(f"Invalid {field_name}: {exc}") from exc


def _soft_delete(transition: MemberStatusTransition, actor_id: str) -> None:
    """Direct (non-cascade) delete; never restored by the engine."""
    transition.deleted_at = utc_now()
    transition.deleted_by = actor_id
    transition.deleted_by_transition_id = None


def _status_before(chain: Iterable[MemberStatusTransition], day: date) -> MemberStatus:
    """Chain status in effect before a new entry dated ``day`` is applied."""
    return replay_chain(t for t in chain if t.effective_date <= day).final_status


async def _load_transition(
    db: AsyncSession,
    *,
    club_id: uuid.UUID,
    member_id: uuid.UUID,
    transition_id: uuid.UUID,
) -> MemberStatusTransition:
    result = await db.execute(
        select(MemberStatusTransition).where(
            MemberStatusTransition.id == transition_id,
            MemberStatusTransition.member_id == member_id,
            MemberStatusTransition.club_id == club_id,
            MemberStatusTransition.deleted_at.is_(None),
        )
    )
    transition = result.scalar_one_or_none()
    if not transition:
        raise NotFoundError("Status history entry not found")
    return transition


async def _free_date(
    db: AsyncSession,
    chain: list[MemberStatusTransition],
    day: date,
    actor_id: str,
) -> list[MemberStatusTransition]:
    """Make ``day`` available for a new chain entry.

    A self-transition already on that date is only an audit marker and is
    replaced; any other entry is a conflict. Returns the remaining chain.
    """
    existing = next((t for t in chain if t.effective_date == day), None)
    if existing is None:
        return chain

    replay = replay_chain(chain)
    step = next((s for s in replay.applied if s.transition is existing), None)
    if step is None or step.from_status != existing.to_status:
        raise ConflictError(
            f"A status change to {existing.to_status.value} already exists on "
            f"{day.isoformat()}. Edit or delete that entry instead."
        )

    _soft_delete(existing, actor_id)
    await db.flush()
    logger.info(
        "Replaced self-transition %s on %s for member %s",
        existing.id,
        day.isoformat(),
        existing.member_id,
    )
    return [t for t in chain if t is not existing]


async def _ensure_period(
    db: AsyncSession,
    member_id: uuid.UUID,
    day: date,
    membership_type_id: Optional[uuid.UUID],
) -> MembershipPeriod:
    """Period the member holds from ``day`` on.

    The period covering ``day`` is reused unless the membership type
    changes; a change starts a new period, which closes the old one on the
    next recalculation.
    """
    periods = await load_periods(db, member_id)
    covering = next((p for p in reversed(periods) if p.covers(day)), None)

    if covering is not None:
        if membership_type_id is None or membership_type_id == covering.membership_type_id:
            return covering
        if covering.join_date == day:
            covering.membership_type_id = membership_type_id
            return covering

    period = MembershipPeriod(
        member_id=member_id,
        join_date=day,
        membership_type_id=membership_type_id
        or (covering.membership_type_id if covering else None),
    )
    db.add(period)
    await db.flush()
    return period


async def _apply_status_change(
    db: AsyncSession,
    *,
    member: Member,
    new_status: Optional[MemberStatus],
    reason: str,
    actor_id: str,
    effective_date: date,
    left_category: Optional[LeftCategory] = None,
    membership_type_id: Optional[uuid.UUID] = None,
    dry_run: bool = False,
) -> ChainResult:
    """Validate and insert one chain entry, then recalculate.

    ``new_status=None`` records an audit marker: a self-transition at
    whatever status is in effect on ``effective_date``.
    """
    chain = await load_chain(db, member.id)
    chain = await _free_date(db, chain, effective_date, actor_id)
    current = _status_before(chain, effective_date)
    marker = new_status is None
    target = current if marker else new_status

    if target == MemberStatus.LEFT and left_category is None:
        raise StatusValidationError(
            "left_category is required when changing status to LEFT"
        )
    if target == current:
        if current in PERIODLESS_STATUSES:
            raise InvalidTransitionError(
                current,
                target,
                allowed(current),
                detail=f"Member is already {current.value} on {effective_date.isoformat()}",
            )
        if not marker and membership_type_id is None:
            raise StatusValidationError(
                "membership_type_id is required when the status does not change"
            )
    elif target not in allowed(current):
        raise InvalidTransitionError(current, target, allowed(current))

    if not marker and target not in PERIODLESS_STATUSES:
        await _ensure_period(db, member.id, effective_date, membership_type_id)

    transition = MemberStatusTransition(
        member_id=member.id,
        club_id=member.club_id,
        to_status=target,
        reason=reason,
        left_category=left_category if target == MemberStatus.LEFT else None,
        effective_date=effective_date,
        actor_id=actor_id,
        created_at=utc_now(),
    )
    db.add(transition)
    await db.flush()

    return await recalculate_chain(
        db,
        member_id=member.id,
        club_id=member.club_id,
        actor_id=actor_id,
        triggering_transition_id=transition.id,
        dry_run=dry_run,
    )


# ---------------------------------------------------------------------------
# Status changes
# ---------------------------------------------------------------------------


async def change_status(
    db: AsyncSession,
    *,
    club_id: uuid.UUID,
    member_id: uuid.UUID,
    new_status: MemberStatus,
    reason: str,
    actor_id: str,
    effective_date: DateInput = None,
    left_category: Optional[LeftCategory] = None,
    membership_type_id: Optional[uuid.UUID] = None,
    today: Optional[date] = None,
) -> ChainResult:
    """Change a member's status as of ``effective_date`` (default: today).

    The move is validated against the chain status on that date, not the
    cached member status, so backdated entries are checked where they land.
    """
    async with unit_of_work(db):
        day = _parse_date(effective_date, "effective_date") or today or local_today()
        member = await load_member(db, club_id=club_id, member_id=member_id, for_update=True)
        result = await _apply_status_change(
            db,
            member=member,
            new_status=new_status,
            reason=reason,
            actor_id=actor_id,
            effective_date=day,
            left_category=left_category,
            membership_type_id=membership_type_id,
        )

    logger.info(
        "Status changed: member %s to %s on %s by %s (final status %s)",
        member_id,
        new_status.value,
        day.isoformat(),
        actor_id,
        result.final_member_status.value,
    )
    return result


async def preview_change_status(
    db: AsyncSession,
    *,
    club_id: uuid.UUID,
    member_id: uuid.UUID,
    new_status: MemberStatus,
    reason: str,
    actor_id: str,
    effective_date: DateInput = None,
    left_category: Optional[LeftCategory] = None,
    membership_type_id: Optional[uuid.UUID] = None,
    today: Optional[date] = None,
) -> ChainResult:
    """What ``change_status`` would do, without persisting anything."""
    async with unit_of_work(db, rollback_only=True):
        day = _parse_date(effective_date, "effective_date") or today or local_today()
        member = await load_member(db, club_id=club_id, member_id=member_id, for_update=True)
        result = await _apply_status_change(
            db,
            member=member,
            new_status=new_status,
            reason=reason,
            actor_id=actor_id,
            effective_date=day,
            left_category=left_category,
            membership_type_id=membership_type_id,
            dry_run=True,
        )
    return result


async def bulk_change_status(
    db: AsyncSession,
    *,
    club_id: uuid.UUID,
    member_ids: list[uuid.UUID],
    new_status: MemberStatus,
    reason: str,
    actor_id: str,
    effective_date: DateInput = None,
    left_category: Optional[LeftCategory] = None,
    membership_type_id: Optional[uuid.UUID] = None,
    today: Optional[date] = None,
) -> BulkStatusChangeResult:
    """Apply ``change_status`` to each member in its own transaction.

    One member's failure never aborts the others; it is reported in
    ``skipped`` with the error message.
    """
    result = BulkStatusChangeResult()

    for member_id in dict.fromkeys(member_ids):
        try:
            await change_status(
                db,
                club_id=club_id,
                member_id=member_id,
                new_status=new_status,
                reason=reason,
                actor_id=actor_id,
                effective_date=effective_date,
                left_category=left_category,
                membership_type_id=membership_type_id,
                today=today,
            )
        except MemberStatusError as exc:
            result.skipped.append(SkippedMember(id=member_id, reason=exc.detail))
            continue
        except SQLAlchemyError as exc:
            logger.exception("Bulk status change failed for member %s", member_id)
            result.skipped.append(
                SkippedMember(id=member_id, reason=f"Database error: {exc}")
            )
            continue
        result.updated.append(member_id)

    logger.info(
        "Bulk status change: %d updated, %d skipped (target: %s)",
        len(result.updated),
        len(result.skipped),
        new_status.value,
    )
    return result


async def recalculate(
    db: AsyncSession,
    *,
    club_id: uuid.UUID,
    member_id: uuid.UUID,
    actor_id: str,
) -> ChainResult:
    """Re-run the engine on an unchanged chain and commit the outcome."""
    async with unit_of_work(db):
        member = await load_member(db, club_id=club_id, member_id=member_id, for_update=True)
        result = await recalculate_chain(
            db, member_id=member.id, club_id=club_id, actor_id=actor_id
        )
    return result


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


async def set_cancellation(
    db: AsyncSession,
    *,
    club_id: uuid.UUID,
    member_id: uuid.UUID,
    cancellation_date: DateInput,
    received_date: DateInput,
    actor_id: str,
    reason: Optional[str] = None,
    today: Optional[date] = None,
) -> ChainResult:
    """Record a member's notice of leaving.

    A cancellation due today or earlier takes effect immediately (LEFT,
    VOLUNTARY). A future one is recorded as a self-transition marker on its
    date; the daily cancellation job performs the LEFT transition then.
    """
    async with unit_of_work(db):
        cancel_day = _parse_date(cancellation_date, "cancellation_date")
        received_day = _parse_date(received_date, "cancellation_received_at")
        if cancel_day is None or received_day is None:
            raise StatusValidationError(
                "cancellation_date and cancellation_received_at are required"
            )

        member = await load_member(db, club_id=club_id, member_id=member_id, for_update=True)
        if member.cancellation_date is not None:
            raise ConflictError(
                "A cancellation is already recorded for "
                f"{member.cancellation_date.isoformat()}"
            )
        if member.status not in CANCELLABLE_STATUSES:
            raise ConflictError(
                "Cancellation can only be recorded for active, probation, dormant "
                f"or suspended members. Current status: {member.status.value}"
            )

        today = today or local_today()
        reason = reason or f"Cancellation effective {cancel_day.isoformat()} recorded"
        member.cancellation_date = cancel_day
        member.cancellation_received_at = received_day

        immediate = cancel_day <= today
        result = await _apply_status_change(
            db,
            member=member,
            new_status=MemberStatus.LEFT if immediate else None,
            reason=reason,
            actor_id=actor_id,
            effective_date=cancel_day,
            left_category=LeftCategory.VOLUNTARY if immediate else None,
        )

    logger.info(
        "Cancellation set: member %s cancellation date %s (%s) by %s",
        member_id,
        cancel_day.isoformat(),
        "immediate" if immediate else "scheduled",
        actor_id,
    )
    return result


async def revoke_cancellation(
    db: AsyncSession,
    *,
    club_id: uuid.UUID,
    member_id: uuid.UUID,
    reason: str,
    actor_id: str,
) -> ChainResult:
    """Withdraw a recorded cancellation and restore the prior status."""
    async with unit_of_work(db):
        member = await load_member(db, club_id=club_id, member_id=member_id, for_update=True)
        cancel_day = member.cancellation_date
        if cancel_day is None:
            raise ConflictError("No cancellation is recorded for this member")

        replay = replay_chain(await load_chain(db, member.id))
        revoked = [
            step.transition
            for step in replay.applied
            if step.effective_date == cancel_day
            and (step.to_status == MemberStatus.LEFT or step.from_status == step.to_status)
        ]
        for transition in revoked:
            _soft_delete(transition, actor_id)

        member.cancellation_date = None
        member.cancellation_received_at = None
        await db.flush()

        result = await recalculate_chain(
            db,
            member_id=member.id,
            club_id=club_id,
            actor_id=actor_id,
            triggering_transition_id=revoked[0].id if revoked else None,
        )
        member.status_change_reason = reason

    logger.info(
        "Cancellation revoked: member %s (%d entries removed) by %s",
        member_id,
        len(revoked),
        actor_id,
    )
    return result


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


async def get_status_history(
    db: AsyncSession,
    *,
    club_id: uuid.UUID,
    member_id: uuid.UUID,
) -> list[StatusTransitionResponse]:
    """All entries, deleted ones included, newest first.

    ``from_status`` is filled in for live entries by replaying the chain.
    """
    member = await load_member(db, club_id=club_id, member_id=member_id)
    replay = replay_chain(await load_chain(db, member.id))
    from_statuses = {step.transition.id: step.from_status for step in replay.applied}

    result = await db.execute(
        select(MemberStatusTransition)
        .where(
            MemberStatusTransition.member_id == member.id,
            MemberStatusTransition.club_id == club_id,
        )
        .order_by(
            MemberStatusTransition.effective_date.desc(),
            MemberStatusTransition.created_at.desc(),
        )
    )
    return [
        StatusTransitionResponse.model_validate(transition).model_copy(
            update={"from_status": from_statuses.get(transition.id)}
        )
        for transition in result.scalars().all()
    ]


async def update_status_history_entry(
    db: AsyncSession,
    *,
    club_id: uuid.UUID,
    member_id: uuid.UUID,
    transition_id: uuid.UUID,
    actor_id: str,
    reason: Optional[str] = None,
    effective_date: DateInput = None,
    left_category: Optional[LeftCategory] = None,
) -> ChainResult:
    """Edit a past entry and recalculate with it as the trigger.

    Later entries the edit makes unreachable are cascaded to it. An edit
    that would invalidate the entry itself is rejected.
    """
    async with unit_of_work(db):
        new_day = _parse_date(effective_date, "effective_date")
        member = await load_member(db, club_id=club_id, member_id=member_id, for_update=True)
        transition = await _load_transition(
            db, club_id=club_id, member_id=member.id, transition_id=transition_id
        )

        if left_category is not None:
            if transition.to_status != MemberStatus.LEFT:
                raise StatusValidationError(
                    "left_category can only be set on LEFT transitions"
                )
            transition.left_category = left_category
        if reason is not None:
            transition.reason = reason

        old_day = transition.effective_date
        if new_day is not None and new_day != old_day:
            others = [t for t in await load_chain(db, member.id) if t.id != transition.id]
            await _free_date(db, others, new_day, actor_id)

            if transition.to_status not in PERIODLESS_STATUSES:
                for period in await load_periods(db, member.id):
                    if period.join_date == old_day:
                        period.join_date = new_day
            if member.cancellation_date == old_day:
                member.cancellation_date = new_day
            transition.effective_date = new_day
        await db.flush()

        result = await recalculate_chain(
            db,
            member_id=member.id,
            club_id=club_id,
            actor_id=actor_id,
            triggering_transition_id=transition.id,
        )
        own = next((r for r in result.removed_transitions if r.id == transition.id), None)
        if own is not None:
            raise InvalidTransitionError(own.from_status, own.to_status, allowed(own.from_status))

    logger.info(
        "Status history entry %s updated for member %s by %s",
        transition_id,
        member_id,
        actor_id,
    )
    return result


async def delete_status_history_entry(
    db: AsyncSession,
    *,
    club_id: uuid.UUID,
    member_id: uuid.UUID,
    transition_id: uuid.UUID,
    actor_id: str,
) -> ChainResult:
    """Soft-delete a past entry and recalculate with it as the trigger.

    Entries of a formally received cancellation (the LEFT, or the future
    marker) must go through ``revoke_cancellation`` so the member's
    cancellation fields stay in sync with the chain.
    """
    async with unit_of_work(db):
        member = await load_member(db, club_id=club_id, member_id=member_id, for_update=True)
        transition = await _load_transition(
            db, club_id=club_id, member_id=member.id, transition_id=transition_id
        )

        if (
            member.cancellation_received_at is not None
            and member.cancellation_date == transition.effective_date
        ):
            replay = replay_chain(await load_chain(db, member.id))
            step = next((s for s in replay.applied if s.transition is transition), None)
            is_marker = step is not None and step.from_status == step.to_status
            if transition.to_status == MemberStatus.LEFT or is_marker:
                raise ConflictError(
                    "This entry belongs to a received cancellation. "
                    "Revoke the cancellation instead."
                )

        _soft_delete(transition, actor_id)
        await db.flush()

        result = await recalculate_chain(
            db,
            member_id=member.id,
            club_id=club_id,
            actor_id=actor_id,
            triggering_transition_id=transition.id,
        )

    logger.info(
        "Status history entry %s deleted for member %s by %s",
        transition_id,
        member_id,
        actor_id,
    )
    return result
