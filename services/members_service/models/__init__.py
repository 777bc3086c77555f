"""Members Service models package.

Re-exports all models and enums so that:
  - ``from services.members_service.models import Member`` works
  - Alembic env.py imports see every table
  - SQLAlchemy's mapper registry sees every model class on import

Model definitions are split across:
  - models/member.py: Member status projection
  - models/status.py: status chain and membership periods
"""

from services.members_service.models.enums import (  # noqa: F401
    CANCELLABLE_STATUSES,
    DEFAULT_MEMBER_STATUS,
    LeftCategory,
    MemberStatus,
)
from services.members_service.models.member import Member  # noqa: F401
from services.members_service.models.status import (  # noqa: F401
    MembershipPeriod,
    MemberStatusTransition,
)

__all__ = [
    "CANCELLABLE_STATUSES",
    "DEFAULT_MEMBER_STATUS",
    "LeftCategory",
    "MemberStatus",
    "Member",
    "MemberStatusTransition",
    "MembershipPeriod",
]
