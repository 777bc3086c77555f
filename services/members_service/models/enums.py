"""Enum definitions for members service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class MemberStatus(str, enum.Enum):
    """Lifecycle status of a club membership."""

    PENDING = "PENDING"
    PROBATION = "PROBATION"
    ACTIVE = "ACTIVE"
    DORMANT = "DORMANT"
    SUSPENDED = "SUSPENDED"
    LEFT = "LEFT"


class LeftCategory(str, enum.Enum):
    """Why a member left. Required on every transition to LEFT."""

    VOLUNTARY = "VOLUNTARY"
    EXCLUSION = "EXCLUSION"
    REJECTED = "REJECTED"  # Pending application denied
    DEATH = "DEATH"
    OTHER = "OTHER"


DEFAULT_MEMBER_STATUS = MemberStatus.PENDING

# A cancellation notice can only be recorded for members in one of these
CANCELLABLE_STATUSES = frozenset(
    {
        MemberStatus.ACTIVE,
        MemberStatus.PROBATION,
        MemberStatus.DORMANT,
        MemberStatus.SUSPENDED,
    }
)
