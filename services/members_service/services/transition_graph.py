"""Member lifecycle state machine.

LEFT is not terminal: a member can re-enter via PENDING, PROBATION or ACTIVE.

    PENDING    -> PROBATION, ACTIVE, LEFT
    PROBATION  -> ACTIVE, DORMANT, SUSPENDED, LEFT
    ACTIVE     -> DORMANT, SUSPENDED, LEFT
    DORMANT    -> ACTIVE, PROBATION, SUSPENDED, LEFT
    SUSPENDED  -> ACTIVE, DORMANT, PROBATION, LEFT
    LEFT       -> PENDING, PROBATION, ACTIVE
"""

from types import MappingProxyType

from services.members_service.models.enums import MemberStatus

VALID_TRANSITIONS = MappingProxyType(
    {
        MemberStatus.PENDING: frozenset(
            {MemberStatus.PROBATION, MemberStatus.ACTIVE, MemberStatus.LEFT}
        ),
        MemberStatus.PROBATION: frozenset(
            {
                MemberStatus.ACTIVE,
                MemberStatus.DORMANT,
                MemberStatus.SUSPENDED,
                MemberStatus.LEFT,
            }
        ),
        MemberStatus.ACTIVE: frozenset(
            {MemberStatus.DORMANT, MemberStatus.SUSPENDED, MemberStatus.LEFT}
        ),
        MemberStatus.DORMANT: frozenset(
            {
                MemberStatus.ACTIVE,
                MemberStatus.PROBATION,
                MemberStatus.SUSPENDED,
                MemberStatus.LEFT,
            }
        ),
        MemberStatus.SUSPENDED: frozenset(
            {
                MemberStatus.ACTIVE,
                MemberStatus.DORMANT,
                MemberStatus.PROBATION,
                MemberStatus.LEFT,
            }
        ),
        MemberStatus.LEFT: frozenset(
            {MemberStatus.PENDING, MemberStatus.PROBATION, MemberStatus.ACTIVE}
        ),
    }
)


def allowed(status: MemberStatus) -> frozenset[MemberStatus]:
    """Statuses directly reachable from ``status``."""
    return VALID_TRANSITIONS[status]


def is_valid_step(current: MemberStatus, target: MemberStatus) -> bool:
    """Whether a chain entry moving ``current`` to ``target`` may stay.

    Self-transitions are audit markers (membership type change, future
    cancellation) and never change state, except on LEFT where there is no
    membership left to annotate.
    """
    if target == current:
        return current != MemberStatus.LEFT
    return target in VALID_TRANSITIONS[current]
