"""Status chain and membership period tables.

``member_status_transitions`` is an append-only audit trail: rows are only
ever soft-deleted, either directly by a user or by the chain engine as a
cascade (``deleted_by_transition_id`` names the cause).
"""

import uuid
from datetime import date, datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.members_service.models.enums import (
    LeftCategory,
    MemberStatus,
    enum_values,
)
from sqlalchemy import Date, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, String, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column


class MemberStatusTransition(Base):
    """One entry of a member's status chain.

    ``from_status`` is deliberately not stored; it only exists as the result
    of replaying the chain in ``(effective_date, created_at)`` order.
    """

    __tablename__ = "member_status_transitions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    member_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("members.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    club_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), index=True, nullable=False
    )

    to_status: Mapped[MemberStatus] = mapped_column(
        SAEnum(
            MemberStatus,
            name="member_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    reason: Mapped[str] = mapped_column(String, nullable=False)
    left_category: Mapped[Optional[LeftCategory]] = mapped_column(
        SAEnum(
            LeftCategory,
            name="left_category_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=True,
    )
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Audit
    actor_id: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    # Soft delete with provenance
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    deleted_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    deleted_by_transition_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("member_status_transitions.id"),
        nullable=True,
    )

    __table_args__ = (
        Index(
            "uq_member_status_transitions_live_date",
            "member_id",
            "effective_date",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
        Index(
            "ix_member_status_transitions_chain_order",
            "member_id",
            "effective_date",
            "created_at",
        ),
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_cascaded(self) -> bool:
        return self.deleted_by_transition_id is not None

    def __repr__(self) -> str:
        return (
            f"<MemberStatusTransition {self.id} {self.to_status} "
            f"on {self.effective_date}>"
        )


class MembershipPeriod(Base):
    """A contiguous interval in which the member held one membership type.

    Open-ended while ``leave_date`` is null. Leave dates are maintained by
    the chain engine, not by callers.
    """

    __tablename__ = "membership_periods"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    member_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("members.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    join_date: Mapped[date] = mapped_column(Date, nullable=False)
    leave_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    membership_type_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )  # FK to membership types (club settings)
    notes: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    def covers(self, day: date) -> bool:
        """True when ``day`` lies in ``[join_date, leave_date)``."""
        return self.join_date <= day and (
            self.leave_date is None or day < self.leave_date
        )

    def __repr__(self) -> str:
        return (
            f"<MembershipPeriod member_id={self.member_id} "
            f"{self.join_date}..{self.leave_date or 'open'}>"
        )
