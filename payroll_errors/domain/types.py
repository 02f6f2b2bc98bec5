"""
payroll_errors.domain.types -- Pure frozen dataclasses for the error queue.

ZERO I/O.  Frozen dataclasses with str Enum status fields and tuples for
immutable collections; ORM models convert to these through ``to_dto()``.

Invariants enforced:
    - Initial routing is a static table: ``RETRYABLE_ERROR_TYPES`` start in
      PENDING, every other type starts in MANUAL_REVIEW.
    - RESOLVED, IGNORED and FAILED_PERMANENTLY are terminal for the retry
      path; only operator ``trigger_retry`` may reopen FAILED_PERMANENTLY.
    - Severity ordering is explicit (``SEVERITY_RANK``), not alphabetical.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


# =============================================================================
# Enums
# =============================================================================


class ErrorType(str, Enum):
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    RATE_LIMIT_ERROR = "RATE_LIMIT_ERROR"
    API_ERROR = "API_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    MAPPING_ERROR = "MAPPING_ERROR"
    FILE_FORMAT_ERROR = "FILE_FORMAT_ERROR"
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    DATA_INTEGRITY_ERROR = "DATA_INTEGRITY_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class ErrorSeverity(str, Enum):
    CRITICAL = "CRITICAL"
    ERROR = "ERROR"
    WARNING = "WARNING"


class ErrorStatus(str, Enum):
    """Queue item lifecycle status."""

    MANUAL_REVIEW = "MANUAL_REVIEW"  # Needs an operator; never swept
    PENDING = "PENDING"  # Eligible for retry once next_retry_at passes
    RETRYING = "RETRYING"  # Claimed by a sweep
    RESOLVED = "RESOLVED"  # Terminal success
    IGNORED = "IGNORED"  # Terminal operator override
    FAILED_PERMANENTLY = "FAILED_PERMANENTLY"  # Retries exhausted


class RetryResult(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    TRANSIENT_ERROR = "TRANSIENT_ERROR"


RETRYABLE_ERROR_TYPES: frozenset[ErrorType] = frozenset({
    ErrorType.NETWORK_ERROR,
    ErrorType.TIMEOUT_ERROR,
    ErrorType.RATE_LIMIT_ERROR,
    ErrorType.API_ERROR,
})

TERMINAL_STATUSES: frozenset[ErrorStatus] = frozenset({
    ErrorStatus.RESOLVED,
    ErrorStatus.IGNORED,
    ErrorStatus.FAILED_PERMANENTLY,
})

SEVERITY_RANK: dict[ErrorSeverity, int] = {
    ErrorSeverity.CRITICAL: 3,
    ErrorSeverity.ERROR: 2,
    ErrorSeverity.WARNING: 1,
}


def is_retryable(error_type: ErrorType | str) -> bool:
    return ErrorType(error_type) in RETRYABLE_ERROR_TYPES


def is_terminal(status: ErrorStatus | str) -> bool:
    return ErrorStatus(status) in TERMINAL_STATUSES


# =============================================================================
# Inputs
# =============================================================================


@dataclass(frozen=True)
class ErrorQueueData:
    """What failed: the payload handed to ``ErrorQueueService.add_to_queue``.

    ``error_data`` must carry everything a retry handler needs to rebuild
    the original operation; it is stored verbatim in a JSON column.
    """

    error_type: ErrorType
    error_message: str
    error_data: dict[str, Any] = field(default_factory=dict)
    severity: ErrorSeverity = ErrorSeverity.ERROR
    source_system: str | None = None
    destination_system: str | None = None
    record_id: str | None = None
    record_type: str | None = None
    error_stack: str | None = None
    error_code: str | None = None


@dataclass(frozen=True)
class QueueOptions:
    max_retries: int | None = None  # None -> service default
    initial_retry_delay_ms: int | None = None  # None -> backoff(0)
    context: dict[str, Any] | None = None


@dataclass(frozen=True)
class ErrorQueueQuery:
    """Filters and pagination for ``ErrorQueueService.list``."""

    status: ErrorStatus | None = None
    error_type: ErrorType | None = None
    severity: ErrorSeverity | None = None
    source_system: str | None = None
    destination_system: str | None = None
    record_type: str | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    page: int = 1
    limit: int = 20


# =============================================================================
# DTOs
# =============================================================================


@dataclass(frozen=True)
class ErrorQueueEntry:
    """Immutable snapshot of one queue item."""

    id: UUID
    organization_id: str
    error_type: ErrorType
    severity: ErrorSeverity
    status: ErrorStatus
    error_message: str
    error_data: dict[str, Any]
    retry_count: int
    max_retries: int
    created_at: datetime
    updated_at: datetime
    source_system: str | None = None
    destination_system: str | None = None
    record_id: str | None = None
    record_type: str | None = None
    error_stack: str | None = None
    error_code: str | None = None
    next_retry_at: datetime | None = None
    resolution_notes: str | None = None
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    context: dict[str, Any] | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def retries_remaining(self) -> int:
        return max(self.max_retries - self.retry_count, 0)


@dataclass(frozen=True)
class RetryLogEntry:
    """One retry attempt (append-only)."""

    id: UUID
    error_queue_id: UUID
    retry_attempt: int
    retry_at: datetime
    retry_result: RetryResult
    error_message: str | None = None
    response_data: dict[str, Any] | None = None
    duration_ms: int | None = None


@dataclass(frozen=True)
class ErrorQueuePage:
    items: tuple[ErrorQueueEntry, ...]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit


@dataclass(frozen=True)
class ErrorQueueStats:
    total: int
    by_status: dict[str, int]
    by_type: dict[str, int]
    by_severity: dict[str, int]
    pending_retries: int  # PENDING and due now
    failed_permanently: int
    resolved_today: int  # resolved since 00:00 UTC
    average_retry_count: float
    oldest_pending_created_at: datetime | None = None


@dataclass(frozen=True)
class BulkRetryFailure:
    error_id: str
    code: str
    message: str


@dataclass(frozen=True)
class BulkRetryResult:
    """Every requested id lands in exactly one of ``queued`` / ``failed``."""

    queued: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()
    errors: tuple[BulkRetryFailure, ...] = ()

    @property
    def queued_count(self) -> int:
        return len(self.queued)

    @property
    def failed_count(self) -> int:
        return len(self.failed)


@dataclass(frozen=True)
class RetryQueueResult:
    """Outcome counters of one retry sweep."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
        }
