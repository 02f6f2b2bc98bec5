"""
payroll_errors.models -- ORM models for the durable error queue.

Architecture: payroll_errors/models. Imports from payroll_kernel.db.base only.
"""

from payroll_errors.models.error_queue import ErrorQueueItemModel, RetryLogModel

__all__ = [
    "ErrorQueueItemModel",
    "RetryLogModel",
]
