"""Public exports for members background tasks."""

from services.members_service.tasks.cancellations import process_due_cancellations

__all__ = [
    "process_due_cancellations",
]
