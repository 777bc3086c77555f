"""Member projection: identity plus the cached lifecycle status."""

import uuid
from datetime import date, datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.members_service.models.enums import (
    DEFAULT_MEMBER_STATUS,
    MemberStatus,
    enum_values,
)
from sqlalchemy import Date, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column


class Member(Base):
    """Core member identity and status.

    ``status`` is a cache of the status chain's derived value and is only
    written by the chain engine. ``version`` increments on every
    chain-driven update so the CRUD layer can detect stale writes.
    """

    __tablename__ = "members"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    club_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), index=True, nullable=False
    )  # FK to clubs service
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[str] = mapped_column(String, nullable=False)

    # Status projection
    status: Mapped[MemberStatus] = mapped_column(
        SAEnum(
            MemberStatus,
            name="member_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=DEFAULT_MEMBER_STATUS,
        nullable=False,
    )
    status_changed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    status_changed_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    status_change_reason: Mapped[Optional[str]] = mapped_column(
        String, nullable=True
    )

    # Cancellation (notice of leaving)
    cancellation_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    cancellation_received_at: Mapped[Optional[date]] = mapped_column(
        Date, nullable=True
    )

    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # Timestamps
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    def __repr__(self):
        return f"<Member {self.id} status={self.status}>"
