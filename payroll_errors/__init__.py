"""
payroll_errors -- Durable error queue with exponential-backoff retry.

    queue = ErrorQueueService(session, clock)
    entry = queue.add_to_queue("org-1", ErrorQueueData(
        error_type=ErrorType.NETWORK_ERROR,
        error_message="connection refused",
        error_data={"endpoint": "/contributions"},
    ))
    entry.status          # ErrorStatus.PENDING
"""

from payroll_errors.domain.backoff import (
    BackoffPolicy,
    calculate_delay_ms,
    calculate_next_retry_time,
    is_transient_error,
)
from payroll_errors.domain.types import (
    BulkRetryResult,
    ErrorQueueData,
    ErrorQueueEntry,
    ErrorQueuePage,
    ErrorQueueQuery,
    ErrorQueueStats,
    ErrorSeverity,
    ErrorStatus,
    ErrorType,
    QueueOptions,
    RetryLogEntry,
    RetryQueueResult,
    RetryResult,
)
from payroll_errors.retry import with_retry

__all__ = [
    "BackoffPolicy",
    "BulkRetryResult",
    "ErrorQueueData",
    "ErrorQueueEntry",
    "ErrorQueuePage",
    "ErrorQueueQuery",
    "ErrorQueueStats",
    "ErrorSeverity",
    "ErrorStatus",
    "ErrorType",
    "QueueOptions",
    "RetryLogEntry",
    "RetryQueueResult",
    "RetryResult",
    "calculate_delay_ms",
    "calculate_next_retry_time",
    "is_transient_error",
    "with_retry",
]
