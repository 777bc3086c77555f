"""Unit tests for chain recalculation against the database.

Chains here are inserted directly through the factories, bypassing the
mutation API, so the engine sees entries it would never have accepted.
"""

import pytest
from libs.common.datetime_utils import utc_now
from services.members_service.models import (
    Member,
    MembershipPeriod,
    MemberStatus,
    MemberStatusTransition,
)
from services.members_service.services.chain_engine import recalculate_chain
from services.members_service.services.member_status import recalculate
from sqlalchemy import select
from tests.factories import (
    ACTOR_ID,
    CLUB_ID,
    MemberFactory,
    MembershipPeriodFactory,
    StatusTransitionFactory,
    d,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _make_member(db, **overrides):
    member = MemberFactory.create(**overrides)
    db.add(member)
    await db.commit()
    return member


async def _add_chain(db, member, *entries):
    transitions = [
        StatusTransitionFactory.create(member, status, d(day), sequence=i)
        for i, (status, day) in enumerate(entries)
    ]
    db.add_all(transitions)
    await db.commit()
    return transitions


async def _live_ids(db, member_id):
    result = await db.execute(
        select(MemberStatusTransition.id).where(
            MemberStatusTransition.member_id == member_id,
            MemberStatusTransition.deleted_at.is_(None),
        )
    )
    return set(result.scalars().all())


async def _reload(db, model, id_):
    result = await db.execute(
        select(model).where(model.id == id_).execution_options(populate_existing=True)
    )
    return result.scalar_one()


# ---------------------------------------------------------------------------
# Graph soundness
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unreachable_entry_is_cascaded(db_session):
    """An entry outside the graph is removed and attributed to its predecessor."""
    member = await _make_member(db_session)
    active, probation, dormant = await _add_chain(
        db_session,
        member,
        (MemberStatus.ACTIVE, "2025-01-01"),
        (MemberStatus.PROBATION, "2025-02-01"),
        (MemberStatus.DORMANT, "2025-03-01"),
    )

    result = await recalculate(
        db_session, club_id=CLUB_ID, member_id=member.id, actor_id=ACTOR_ID
    )

    assert result.final_member_status == MemberStatus.DORMANT
    assert [r.id for r in result.removed_transitions] == [probation.id]
    removed = result.removed_transitions[0]
    assert removed.from_status == MemberStatus.ACTIVE
    assert removed.to_status == MemberStatus.PROBATION
    assert removed.cause == "invalid_transition"
    assert removed.caused_by_transition_id == active.id

    assert await _live_ids(db_session, member.id) == {active.id, dormant.id}
    probation = await _reload(db_session, MemberStatusTransition, probation.id)
    assert probation.is_deleted
    assert probation.is_cascaded
    assert probation.deleted_by == ACTOR_ID


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cascade_is_attributed_to_trigger(db_session):
    member = await _make_member(db_session)
    active, left, dormant = await _add_chain(
        db_session,
        member,
        (MemberStatus.ACTIVE, "2025-01-01"),
        (MemberStatus.LEFT, "2025-02-01"),
        (MemberStatus.DORMANT, "2025-03-01"),
    )

    result = await recalculate_chain(
        db_session,
        member_id=member.id,
        club_id=CLUB_ID,
        actor_id=ACTOR_ID,
        triggering_transition_id=left.id,
    )

    assert [r.id for r in result.removed_transitions] == [dormant.id]
    assert result.removed_transitions[0].from_status == MemberStatus.LEFT
    assert result.removed_transitions[0].caused_by_transition_id == left.id


@pytest.mark.asyncio
@pytest.mark.unit
async def test_replay_follows_effective_date_not_insertion_order(db_session):
    """Backdated entries slot into the chain by their effective date."""
    member = await _make_member(db_session)
    first = StatusTransitionFactory.create(
        member, MemberStatus.ACTIVE, d("2025-01-01"), sequence=0
    )
    second = StatusTransitionFactory.create(
        member, MemberStatus.DORMANT, d("2025-02-01"), sequence=2
    )
    third = StatusTransitionFactory.create(
        member, MemberStatus.SUSPENDED, d("2025-02-02"), sequence=3
    )
    db_session.add_all([third, second, first])
    await db_session.commit()

    result = await recalculate(
        db_session, club_id=CLUB_ID, member_id=member.id, actor_id=ACTOR_ID
    )

    assert result.removed_transitions == []
    assert result.final_member_status == MemberStatus.SUSPENDED


# ---------------------------------------------------------------------------
# Idempotence
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_recalculate_twice_is_a_fixed_point(db_session):
    member = await _make_member(db_session)
    await _add_chain(
        db_session,
        member,
        (MemberStatus.ACTIVE, "2025-01-01"),
        (MemberStatus.PROBATION, "2025-02-01"),
        (MemberStatus.LEFT, "2025-05-01"),
    )
    db_session.add(MembershipPeriodFactory.create(member, d("2025-01-01")))
    await db_session.commit()

    first = await recalculate(
        db_session, club_id=CLUB_ID, member_id=member.id, actor_id=ACTOR_ID
    )
    second = await recalculate(
        db_session, club_id=CLUB_ID, member_id=member.id, actor_id=ACTOR_ID
    )

    assert first.has_changes is True
    assert second.has_changes is False
    assert second.final_member_status == first.final_member_status == MemberStatus.LEFT


@pytest.mark.asyncio
@pytest.mark.unit
async def test_version_increments_on_every_recalculation(db_session):
    member = await _make_member(db_session)
    await _add_chain(db_session, member, (MemberStatus.ACTIVE, "2025-01-01"))

    await recalculate(db_session, club_id=CLUB_ID, member_id=member.id, actor_id=ACTOR_ID)
    await recalculate(db_session, club_id=CLUB_ID, member_id=member.id, actor_id=ACTOR_ID)

    member = await _reload(db_session, Member, member.id)
    assert member.version == 3
    assert member.status == MemberStatus.ACTIVE
    assert member.status_changed_by == ACTOR_ID


# ---------------------------------------------------------------------------
# Cascade restoration
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_stale_cascade_is_restored_when_cause_is_deleted(db_session):
    member = await _make_member(db_session)
    active, left, dormant = await _add_chain(
        db_session,
        member,
        (MemberStatus.ACTIVE, "2025-01-01"),
        (MemberStatus.LEFT, "2025-02-01"),
        (MemberStatus.DORMANT, "2025-03-01"),
    )
    await recalculate_chain(
        db_session,
        member_id=member.id,
        club_id=CLUB_ID,
        actor_id=ACTOR_ID,
        triggering_transition_id=left.id,
    )
    await db_session.commit()

    # Direct delete of the cause
    left.deleted_at = dormant.deleted_at
    left.deleted_by = ACTOR_ID
    await db_session.commit()

    result = await recalculate(
        db_session, club_id=CLUB_ID, member_id=member.id, actor_id=ACTOR_ID
    )

    assert [r.id for r in result.restored_transitions] == [dormant.id]
    assert result.final_member_status == MemberStatus.DORMANT
    assert await _live_ids(db_session, member.id) == {active.id, dormant.id}


@pytest.mark.asyncio
@pytest.mark.unit
async def test_restore_skips_candidate_whose_date_is_taken(db_session):
    member = await _make_member(db_session)
    active, left, dormant = await _add_chain(
        db_session,
        member,
        (MemberStatus.ACTIVE, "2025-01-01"),
        (MemberStatus.LEFT, "2025-02-01"),
        (MemberStatus.DORMANT, "2025-03-01"),
    )
    await recalculate_chain(
        db_session,
        member_id=member.id,
        club_id=CLUB_ID,
        actor_id=ACTOR_ID,
        triggering_transition_id=left.id,
    )
    left.deleted_at = dormant.deleted_at
    left.deleted_by = ACTOR_ID
    db_session.add(
        StatusTransitionFactory.create(
            member, MemberStatus.SUSPENDED, d("2025-03-01"), sequence=10
        )
    )
    await db_session.commit()

    result = await recalculate(
        db_session, club_id=CLUB_ID, member_id=member.id, actor_id=ACTOR_ID
    )

    assert result.restored_transitions == []
    assert result.final_member_status == MemberStatus.SUSPENDED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_only_cascades_of_deleted_causes_are_restored(db_session):
    member = await _make_member(db_session)
    active, dormant, suspended = await _add_chain(
        db_session,
        member,
        (MemberStatus.ACTIVE, "2025-01-01"),
        (MemberStatus.DORMANT, "2025-03-01"),
        (MemberStatus.SUSPENDED, "2025-05-01"),
    )
    # Deleted by hand: no cause
    dormant.deleted_at = utc_now()
    dormant.deleted_by = ACTOR_ID
    # Cascaded by an entry that is still live
    suspended.deleted_at = utc_now()
    suspended.deleted_by = ACTOR_ID
    suspended.deleted_by_transition_id = active.id
    await db_session.commit()

    result = await recalculate(
        db_session, club_id=CLUB_ID, member_id=member.id, actor_id=ACTOR_ID
    )

    assert result.restored_transitions == []
    assert result.final_member_status == MemberStatus.ACTIVE
    assert await _live_ids(db_session, member.id) == {active.id}
    dormant = await _reload(db_session, MemberStatusTransition, dormant.id)
    assert dormant.is_deleted and not dormant.is_cascaded


# ---------------------------------------------------------------------------
# Periods
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_periods_are_kept_contiguous(db_session):
    member = await _make_member(db_session)
    await _add_chain(db_session, member, (MemberStatus.ACTIVE, "2025-01-01"))
    periods = [
        MembershipPeriodFactory.create(member, d("2025-01-01")),
        MembershipPeriodFactory.create(member, d("2025-04-01")),
        MembershipPeriodFactory.create(member, d("2025-09-01")),
    ]
    db_session.add_all(periods)
    await db_session.commit()

    result = await recalculate(
        db_session, club_id=CLUB_ID, member_id=member.id, actor_id=ACTOR_ID
    )

    assert len(result.closed_periods) == 2
    rows = (
        await db_session.execute(
            select(MembershipPeriod)
            .where(MembershipPeriod.member_id == member.id)
            .order_by(MembershipPeriod.join_date)
        )
    ).scalars().all()
    for current, following in zip(rows, rows[1:]):
        assert current.leave_date == following.join_date
    assert rows[-1].leave_date is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_empty_chain_still_normalises_periods(db_session):
    member = await _make_member(db_session)
    period = MembershipPeriodFactory.create(
        member, d("2025-01-01"), leave_date=d("2025-03-01")
    )
    db_session.add(period)
    await db_session.commit()

    result = await recalculate(
        db_session, club_id=CLUB_ID, member_id=member.id, actor_id=ACTOR_ID
    )

    assert result.final_member_status == MemberStatus.PENDING
    assert [p.id for p in result.reopened_periods] == [period.id]
    assert result.reopened_periods[0].previous_leave_date == d("2025-03-01")
    assert result.has_changes is True


# ---------------------------------------------------------------------------
# Dry run
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_dry_run_reports_without_writing(db_session):
    member = await _make_member(db_session)
    _, probation = await _add_chain(
        db_session,
        member,
        (MemberStatus.ACTIVE, "2025-01-01"),
        (MemberStatus.PROBATION, "2025-02-01"),
    )
    before = await _live_ids(db_session, member.id)

    result = await recalculate_chain(
        db_session,
        member_id=member.id,
        club_id=CLUB_ID,
        actor_id=ACTOR_ID,
        dry_run=True,
    )
    await db_session.commit()

    assert [r.id for r in result.removed_transitions] == [probation.id]
    assert result.final_member_status == MemberStatus.ACTIVE
    assert await _live_ids(db_session, member.id) == before
    member = await _reload(db_session, Member, member.id)
    assert member.status == MemberStatus.PENDING
    assert member.version == 1
