"""Members Service schemas package.

Re-exports all schemas so that:
  - ``from services.members_service.schemas import ChainResult`` works
  - All router files use a single import namespace

Schema files:
  - schemas/status.py: status changes, cancellations, history, chain results
"""

from services.members_service.schemas.status import (  # noqa: F401
    BulkChangeStatusRequest,
    BulkStatusChangeResult,
    ChainResult,
    ChangeStatusRequest,
    PeriodChange,
    RemovedTransition,
    RestoredTransition,
    RevokeCancellationRequest,
    SetCancellationRequest,
    SkippedMember,
    StatusTransitionResponse,
    UpdateStatusHistoryRequest,
)

__all__ = [
    "BulkChangeStatusRequest",
    "BulkStatusChangeResult",
    "ChainResult",
    "ChangeStatusRequest",
    "PeriodChange",
    "RemovedTransition",
    "RestoredTransition",
    "RevokeCancellationRequest",
    "SetCancellationRequest",
    "SkippedMember",
    "StatusTransitionResponse",
    "UpdateStatusHistoryRequest",
]
