"""Status chain recalculation engine.

A member's status is never patched in place. Every mutation re-derives the
whole chain from scratch:

1. Restore stale cascades: entries cascade-deleted by a transition that has
   since been deleted itself become candidates for restoration.
2. Replay the working chain (live entries plus candidates) from PENDING in
   ``(effective_date, created_at)`` order, validating every step against the
   transition graph. Live entries that no longer fit are cascade-deleted;
   candidates that fit again are restored.
3. Re-derive membership period leave dates from the replayed steps.
4. Sync the member projection (status cache, cancellation, version).

With ``dry_run`` nothing is written, but the returned ``ChainResult``
reports exactly what a real run would do.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Optional, Sequence

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.members_service.errors import NotFoundError
from services.members_service.models import (
    DEFAULT_MEMBER_STATUS,
    Member,
    MembershipPeriod,
    MemberStatus,
    MemberStatusTransition,
)
from services.members_service.schemas import (
    ChainResult,
    PeriodChange,
    RemovedTransition,
    RestoredTransition,
)
from services.members_service.services.transition_graph import is_valid_step
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Pure replay
# ---------------------------------------------------------------------------


@dataclass
class ChainStep:
    transition: MemberStatusTransition
    from_status: MemberStatus

    @property
    def to_status(self) -> MemberStatus:
        return self.transition.to_status

    @property
    def effective_date(self) -> date:
        return self.transition.effective_date

    @property
    def enters_left(self) -> bool:
        return (
            self.to_status == MemberStatus.LEFT
            and self.from_status != MemberStatus.LEFT
        )

    @property
    def rejoins(self) -> bool:
        return (
            self.from_status == MemberStatus.LEFT
            and self.to_status != MemberStatus.LEFT
        )


@dataclass
class RejectedStep:
    transition: MemberStatusTransition
    from_status: MemberStatus
    # Last entry applied before this one, if any
    previous_transition_id: Optional[uuid.UUID] = None


@dataclass
class Replay:
    applied: list[ChainStep] = field(default_factory=list)
    rejected: list[RejectedStep] = field(default_factory=list)
    final_status: MemberStatus = DEFAULT_MEMBER_STATUS

    @property
    def left_since(self) -> Optional[date]:
        """Date the chain last entered LEFT, when it ends in LEFT."""
        if self.final_status != MemberStatus.LEFT:
            return None
        entries = [step.effective_date for step in self.applied if step.enters_left]
        return entries[-1] if entries else None

    @property
    def rejoined_on(self) -> Optional[date]:
        """Date of the latest re-entry after LEFT, if any."""
        entries = [step.effective_date for step in self.applied if step.rejoins]
        return entries[-1] if entries else None


def replay_chain(transitions: Iterable[MemberStatusTransition]) -> Replay:
    """Walk an ordered chain from PENDING, splitting valid and invalid entries."""
    result = Replay()
    current = DEFAULT_MEMBER_STATUS
    previous_id: Optional[uuid.UUID] = None

    for transition in transitions:
        if is_valid_step(current, transition.to_status):
            result.applied.append(ChainStep(transition, current))
            current = transition.to_status
            previous_id = transition.id
        else:
            result.rejected.append(RejectedStep(transition, current, previous_id))

    result.final_status = current
    return result


def status_on(steps: Sequence[ChainStep], day: date) -> MemberStatus:
    """Status in effect at the end of ``day``."""
    current = DEFAULT_MEMBER_STATUS
    for step in steps:
        if step.effective_date > day:
            break
        current = step.to_status
    return current


def compute_leave_dates(
    join_dates: Sequence[date], steps: Sequence[ChainStep]
) -> list[Optional[date]]:
    """Leave date each period should have, given periods sorted by join date.

    - A period that starts while the member has already left is closed on
      its own join date.
    - Otherwise it ends when the member next leaves, or when the following
      period starts, whichever comes first.
    - The last period of a member who has not left again stays open.
    """
    left_dates = [step.effective_date for step in steps if step.enters_left]
    leave_dates: list[Optional[date]] = []

    for index, join_date in enumerate(join_dates):
        successor = join_dates[index + 1] if index + 1 < len(join_dates) else None

        if status_on(steps, join_date) == MemberStatus.LEFT:
            leave_dates.append(join_date)
            continue

        left_on = next((day for day in left_dates if day > join_date), None)
        if successor is not None and (left_on is None or left_on >= successor):
            leave_dates.append(successor)
        elif left_on is not None:
            leave_dates.append(left_on)
        else:
            leave_dates.append(None)

    return leave_dates


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


async def load_member(
    db: AsyncSession,
    *,
    club_id: uuid.UUID,
    member_id: uuid.UUID,
    for_update: bool = False,
) -> Member:
    """Member within ``club_id``, optionally row-locked. Raises 404."""
    query = select(Member).where(
        Member.id == member_id,
        Member.club_id == club_id,
        Member.deleted_at.is_(None),
    )
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    member = result.scalar_one_or_none()
    if not member:
        raise NotFoundError("Member not found")
    return member


async def load_chain(
    db: AsyncSession,
    member_id: uuid.UUID,
    include_ids: Iterable[uuid.UUID] = (),
) -> list[MemberStatusTransition]:
    """Live chain in replay order, plus any deleted entries in ``include_ids``."""
    include_ids = list(include_ids)
    live = MemberStatusTransition.deleted_at.is_(None)
    if include_ids:
        live = or_(live, MemberStatusTransition.id.in_(include_ids))

    result = await db.execute(
        select(MemberStatusTransition)
        .where(MemberStatusTransition.member_id == member_id, live)
        .order_by(
            MemberStatusTransition.effective_date.asc(),
            MemberStatusTransition.created_at.asc(),
        )
    )
    return list(result.scalars().all())


async def load_periods(
    db: AsyncSession, member_id: uuid.UUID
) -> list[MembershipPeriod]:
    result = await db.execute(
        select(MembershipPeriod)
        .where(MembershipPeriod.member_id == member_id)
        .order_by(MembershipPeriod.join_date.asc(), MembershipPeriod.created_at.asc())
    )
    return list(result.scalars().all())


async def _find_stale_cascades(
    db: AsyncSession, member_id: uuid.UUID
) -> list[MemberStatusTransition]:
    """Cascade-deleted entries whose causing transition is deleted too."""
    result = await db.execute(
        select(MemberStatusTransition)
        .where(
            MemberStatusTransition.member_id == member_id,
            MemberStatusTransition.deleted_at.is_not(None),
        )
        .order_by(
            MemberStatusTransition.effective_date.asc(),
            MemberStatusTransition.created_at.asc(),
        )
    )
    cascaded = [t for t in result.scalars().all() if t.is_cascaded]
    if not cascaded:
        return []

    cause_ids = {t.deleted_by_transition_id for t in cascaded}
    result = await db.execute(
        select(MemberStatusTransition).where(MemberStatusTransition.id.in_(cause_ids))
    )
    deleted_causes = {t.id for t in result.scalars().all() if t.is_deleted}
    return [t for t in cascaded if t.deleted_by_transition_id in deleted_causes]


# ---------------------------------------------------------------------------
# Recalculation
# ---------------------------------------------------------------------------


async def recalculate_chain(
    db: AsyncSession,
    *,
    member_id: uuid.UUID,
    club_id: uuid.UUID,
    actor_id: str,
    triggering_transition_id: Optional[uuid.UUID] = None,
    dry_run: bool = False,
) -> ChainResult:
    """Re-derive a member's chain, periods and status projection.

    Runs inside the caller's transaction and only flushes; committing or
    rolling back is up to the caller. Entries that become invalid are
    attributed to ``triggering_transition_id`` (or, without one, to the
    last entry applied before them).
    """
    member = await load_member(db, club_id=club_id, member_id=member_id)

    # Pass 1: stale cascades become restore candidates, unless their date is
    # already taken by a live entry.
    live_dates = {
        t.effective_date for t in await load_chain(db, member_id)
    }
    candidates: dict[uuid.UUID, MemberStatusTransition] = {}
    for transition in await _find_stale_cascades(db, member_id):
        if transition.effective_date in live_dates:
            continue
        live_dates.add(transition.effective_date)
        candidates[transition.id] = transition

    # Pass 2: replay live entries and candidates together
    working = await load_chain(db, member_id, include_ids=candidates.keys())
    replay = replay_chain(working)
    now = utc_now()

    restored: list[RestoredTransition] = []
    for step in replay.applied:
        transition = step.transition
        if transition.id not in candidates:
            continue
        restored.append(
            RestoredTransition(
                id=transition.id,
                to_status=transition.to_status,
                effective_date=transition.effective_date,
                reason=transition.reason,
            )
        )
        if not dry_run:
            transition.deleted_at = None
            transition.deleted_by = None
            transition.deleted_by_transition_id = None

    removed: list[RemovedTransition] = []
    for rejected in replay.rejected:
        transition = rejected.transition
        if transition.id in candidates:
            # Still invalid: stays deleted with its original provenance
            continue
        cause = triggering_transition_id
        if cause is None or cause == transition.id:
            cause = rejected.previous_transition_id
        removed.append(
            RemovedTransition(
                id=transition.id,
                from_status=rejected.from_status,
                to_status=transition.to_status,
                effective_date=transition.effective_date,
                reason=transition.reason,
                caused_by_transition_id=cause,
            )
        )
        if not dry_run:
            transition.deleted_at = now
            transition.deleted_by = actor_id
            transition.deleted_by_transition_id = cause

    # Period auto-maintenance runs even for an empty chain
    periods = await load_periods(db, member_id)
    leave_dates = compute_leave_dates([p.join_date for p in periods], replay.applied)
    closed: list[PeriodChange] = []
    reopened: list[PeriodChange] = []
    for period, leave_date in zip(periods, leave_dates):
        if period.leave_date == leave_date:
            continue
        change = PeriodChange(
            id=period.id,
            join_date=period.join_date,
            previous_leave_date=period.leave_date,
            leave_date=leave_date,
        )
        (reopened if leave_date is None else closed).append(change)
        if not dry_run:
            period.leave_date = leave_date

    status_changed = member.status != replay.final_status
    if not dry_run:
        _sync_member_projection(member, replay, actor_id)
        await db.flush()

    result = ChainResult(
        removed_transitions=removed,
        restored_transitions=restored,
        closed_periods=closed,
        reopened_periods=reopened,
        final_member_status=replay.final_status,
        has_changes=bool(removed or restored or closed or reopened or status_changed),
    )

    logger.info(
        "Recalculated chain for member %s%s: status=%s removed=%d restored=%d "
        "closed=%d reopened=%d",
        member_id,
        " (dry run)" if dry_run else "",
        replay.final_status.value,
        len(removed),
        len(restored),
        len(closed),
        len(reopened),
    )
    return result


def _sync_member_projection(member: Member, replay: Replay, actor_id: str) -> None:
    """Write the derived status into the member row.

    LEFT implies a cancellation: without a recorded one, the date the chain
    entered LEFT becomes the cancellation date. Leaving LEFT clears such an
    implicit cancellation. A formally received one is kept until the member
    re-enters after its date; from then on it is history, and a new
    cancellation can be recorded.
    """
    final_status = replay.final_status
    if member.status != final_status:
        member.status = final_status
        member.status_changed_at = utc_now()
        member.status_changed_by = actor_id
    member.status_change_reason = (
        replay.applied[-1].transition.reason if replay.applied else None
    )
    member.version = (member.version or 0) + 1

    rejoined_on = replay.rejoined_on
    if (
        member.cancellation_date is not None
        and rejoined_on is not None
        and member.cancellation_date < rejoined_on
    ):
        member.cancellation_date = None
        member.cancellation_received_at = None

    if final_status == MemberStatus.LEFT:
        if member.cancellation_date is None:
            member.cancellation_date = replay.left_since
    elif (
        member.cancellation_date is not None
        and member.cancellation_received_at is None
    ):
        member.cancellation_date = None
