"""Daily transition of members whose cancellation date has arrived."""

from datetime import date
from typing import Optional

from libs.common.datetime_utils import local_today
from libs.common.logging import get_logger
from services.members_service.errors import MemberStatusError
from services.members_service.models import (
    LeftCategory,
    Member,
    MemberStatus,
    MemberStatusTransition,
)
from services.members_service.services.member_status import change_status
from sqlalchemy import and_, exists, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

SYSTEM_ACTOR = "SYSTEM"
AUTO_LEFT_REASON = "Automatic exit after cancellation date"


async def process_due_cancellations(
    db: AsyncSession, today: Optional[date] = None
) -> dict[str, int]:
    """
    Move every member whose cancellation date is today or earlier to LEFT.

    Runs across all clubs. Members whose chain already has the LEFT entry on
    their cancellation date are skipped, so a re-entered member with a kept
    cancellation is not picked up again. Each member is its own transaction;
    failures are logged and counted.
    """
    today = today or local_today()
    logger.info("Starting daily cancellation check for %s", today.isoformat())

    left_on_cancellation_date = exists().where(
        and_(
            MemberStatusTransition.member_id == Member.id,
            MemberStatusTransition.effective_date == Member.cancellation_date,
            MemberStatusTransition.to_status == MemberStatus.LEFT,
            MemberStatusTransition.deleted_at.is_(None),
        )
    )
    result = await db.execute(
        select(Member.id, Member.club_id, Member.cancellation_date).where(
            Member.cancellation_date.is_not(None),
            Member.cancellation_date <= today,
            Member.status != MemberStatus.LEFT,
            Member.deleted_at.is_(None),
            ~left_on_cancellation_date,
        )
    )
    due = result.all()
    logger.info("Found %d members with due cancellation dates", len(due))

    transitioned = 0
    failed = 0
    for member_id, club_id, cancellation_date in due:
        try:
            await change_status(
                db,
                club_id=club_id,
                member_id=member_id,
                new_status=MemberStatus.LEFT,
                reason=AUTO_LEFT_REASON,
                actor_id=SYSTEM_ACTOR,
                effective_date=cancellation_date,
                left_category=LeftCategory.VOLUNTARY,
                today=today,
            )
            transitioned += 1
        except (MemberStatusError, SQLAlchemyError) as exc:
            failed += 1
            logger.error(
                "Failed to auto-transition member %s in club %s: %s",
                member_id,
                club_id,
                exc,
            )

    logger.info(
        "Cancellation auto-transition complete: %d transitioned, %d errors",
        transitioned,
        failed,
    )
    return {"transitioned": transitioned, "failed": failed}
