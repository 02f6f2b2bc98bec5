"""
ErrorQueueService -- Durable error queue with a retry state machine.

Contract:
    Persists failed operations as ``ErrorQueueItemModel`` rows, routes them
    to PENDING (retryable) or MANUAL_REVIEW (permanent) on insert, and moves
    them through the state machine on sweep and operator actions.

Architecture: payroll_errors/services.  Imports from payroll_errors.domain,
    payroll_errors.models and kernel utilities.

State machine::

    add_to_queue ──> PENDING ──mark_as_retrying──> RETRYING
         │             ^                              │
         │             └── record_retry_result(fail) ─┤
         v                                            ├─(success)──> RESOLVED
    MANUAL_REVIEW                                     └─(exhausted)─> FAILED_PERMANENTLY

    trigger_retry:  MANUAL_REVIEW | PENDING | FAILED_PERMANENTLY -> PENDING
    resolve/ignore: MANUAL_REVIEW | PENDING | RETRYING -> RESOLVED / IGNORED

Invariants enforced:
    - Every status write is a compare-and-set UPDATE guarded by the status
      the service observed; a lost race raises instead of overwriting.
    - RESOLVED and IGNORED are never left by any path.
    - One RetryLog row per recorded attempt; ``retry_count`` equals the
      number of recorded attempts.
    - All timestamps come from the injected Clock.

Non-goals:
    - Does NOT call ``session.commit()`` -- caller controls boundaries.
    - Does NOT lease items across processes; see RetryProcessor.
"""

from __future__ import annotations

import random
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from payroll_errors.domain.backoff import (
    BackoffPolicy,
    calculate_delay_ms,
    calculate_next_retry_time,
    is_transient_error,
)
from payroll_errors.domain.types import (
    SEVERITY_RANK,
    TERMINAL_STATUSES,
    BulkRetryFailure,
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
    RetryResult,
    is_retryable,
)
from payroll_errors.models.error_queue import ErrorQueueItemModel, RetryLogModel
from payroll_kernel.db.base import as_utc
from payroll_kernel.domain.clock import Clock, SystemClock
from payroll_kernel.exceptions import (
    ErrorItemNotFoundError,
    ErrorQueueError,
    InvalidErrorTransitionError,
    ItemAlreadyClaimedError,
    RetryNotAllowedError,
)
from payroll_kernel.logging_config import LogContext, get_logger

logger = get_logger("errors.queue")

MAX_PAGE_SIZE = 100

_CLOSABLE = (ErrorStatus.MANUAL_REVIEW, ErrorStatus.PENDING, ErrorStatus.RETRYING)


def _as_uuid(error_id: UUID | str) -> UUID:
    if isinstance(error_id, UUID):
        return error_id
    try:
        return UUID(str(error_id))
    except ValueError:
        raise ErrorItemNotFoundError(error_id) from None


class ErrorQueueService:
    """Queue operations for operators and the retry sweep.

    Contract:
        - ``add_to_queue()`` always inserts a new item.
        - ``list()`` / ``get_by_id()`` / ``get_retry_logs()`` / ``get_stats()``
          for queries, scoped by organization.
        - ``trigger_retry()`` / ``bulk_retry()`` / ``resolve()`` / ``ignore()``
          for operators.
        - ``get_ready_for_retry()`` / ``mark_as_retrying()`` /
          ``record_retry_result()`` for the sweep.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        backoff: BackoffPolicy | None = None,
        default_max_retries: int = 5,
        rng: Callable[[], float] = random.random,
    ):
        if default_max_retries < 1:
            raise ValueError("default_max_retries must be at least 1")
        self._session = session
        self._clock = clock or SystemClock()
        self._backoff = backoff or BackoffPolicy()
        self._default_max_retries = default_max_retries
        self._rng = rng

    # -------------------------------------------------------------------------
    # Insert
    # -------------------------------------------------------------------------

    def add_to_queue(
        self,
        organization_id: str,
        data: ErrorQueueData,
        options: QueueOptions | None = None,
    ) -> ErrorQueueEntry:
        """Queue a failed operation.

        Retryable types start PENDING with ``next_retry_at = now + backoff(0)``
        (or ``initial_retry_delay_ms``); all others start in MANUAL_REVIEW.
        """
        options = options or QueueOptions()
        error_type = ErrorType(data.error_type)
        severity = ErrorSeverity(data.severity)
        max_retries = (
            options.max_retries
            if options.max_retries is not None
            else self._default_max_retries
        )
        if max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {max_retries}")

        now = self._clock.now_utc()
        if is_retryable(error_type):
            status = ErrorStatus.PENDING
            delay_ms = (
                options.initial_retry_delay_ms
                if options.initial_retry_delay_ms is not None
                else calculate_delay_ms(0, self._backoff, self._rng)
            )
            next_retry_at: datetime | None = now + timedelta(milliseconds=delay_ms)
        else:
            status = ErrorStatus.MANUAL_REVIEW
            next_retry_at = None

        model = ErrorQueueItemModel(
            organization_id=organization_id,
            error_type=error_type.value,
            severity=severity.value,
            severity_rank=SEVERITY_RANK[severity],
            status=status.value,
            source_system=data.source_system,
            destination_system=data.destination_system,
            record_id=data.record_id,
            record_type=data.record_type,
            error_data=data.error_data,
            error_message=data.error_message,
            error_stack=data.error_stack,
            error_code=data.error_code,
            retry_count=0,
            max_retries=max_retries,
            next_retry_at=next_retry_at,
            context=options.context,
            created_at=now,
            updated_at=now,
        )
        self._session.add(model)
        self._session.flush()

        logger.info(
            "error_queued",
            extra={
                "error_id": str(model.id),
                "organization_id": organization_id,
                "error_type": error_type.value,
                "severity": severity.value,
                "status": status.value,
                "next_retry_at": next_retry_at,
                "max_retries": max_retries,
            },
        )
        return model.to_dto()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def list(
        self,
        organization_id: str,
        query: ErrorQueueQuery | None = None,
    ) -> ErrorQueuePage:
        """Filtered page of items, most severe first, newest first within a severity."""
        query = query or ErrorQueueQuery()
        if query.page < 1:
            raise ValueError(f"page must be at least 1, got {query.page}")
        if not 1 <= query.limit <= MAX_PAGE_SIZE:
            raise ValueError(f"limit must be within [1, {MAX_PAGE_SIZE}], got {query.limit}")

        M = ErrorQueueItemModel
        conditions = [M.organization_id == organization_id]
        if query.status is not None:
            conditions.append(M.status == ErrorStatus(query.status).value)
        if query.error_type is not None:
            conditions.append(M.error_type == ErrorType(query.error_type).value)
        if query.severity is not None:
            conditions.append(M.severity == ErrorSeverity(query.severity).value)
        if query.source_system is not None:
            conditions.append(M.source_system == query.source_system)
        if query.destination_system is not None:
            conditions.append(M.destination_system == query.destination_system)
        if query.record_type is not None:
            conditions.append(M.record_type == query.record_type)
        if query.created_from is not None:
            conditions.append(M.created_at >= query.created_from)
        if query.created_to is not None:
            conditions.append(M.created_at <= query.created_to)

        total = self._session.execute(
            select(func.count()).select_from(M).where(*conditions)
        ).scalar_one()

        rows = self._session.execute(
            select(M)
            .where(*conditions)
            .order_by(M.severity_rank.desc(), M.created_at.desc(), M.id)
            .offset((query.page - 1) * query.limit)
            .limit(query.limit)
        ).scalars().all()

        return ErrorQueuePage(
            items=tuple(r.to_dto() for r in rows),
            total=total,
            page=query.page,
            limit=query.limit,
        )

    def get_by_id(
        self, error_id: UUID | str, organization_id: str | None = None,
    ) -> ErrorQueueEntry:
        return self._load(error_id, organization_id).to_dto()

    def get_retry_logs(
        self, error_id: UUID | str, organization_id: str | None = None,
    ) -> tuple[RetryLogEntry, ...]:
        """Retry attempts for an item, most recent attempt first."""
        model = self._load(error_id, organization_id)
        rows = self._session.execute(
            select(RetryLogModel)
            .where(RetryLogModel.error_queue_id == model.id)
            .order_by(RetryLogModel.retry_attempt.desc())
        ).scalars().all()
        return tuple(r.to_dto() for r in rows)

    def get_stats(self, organization_id: str) -> ErrorQueueStats:
        M = ErrorQueueItemModel
        now = self._clock.now_utc()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        org = M.organization_id == organization_id

        def grouped(column) -> dict[str, int]:
            rows = self._session.execute(
                select(column, func.count()).where(org).group_by(column)
            ).all()
            return {key: count for key, count in rows}

        def count(*conditions) -> int:
            return self._session.execute(
                select(func.count()).select_from(M).where(org, *conditions)
            ).scalar_one()

        by_status = grouped(M.status)
        average = self._session.execute(
            select(func.avg(M.retry_count)).where(org)
        ).scalar_one()
        oldest = self._session.execute(
            select(func.min(M.created_at)).where(org, M.status == ErrorStatus.PENDING.value)
        ).scalar_one()

        return ErrorQueueStats(
            total=sum(by_status.values()),
            by_status=by_status,
            by_type=grouped(M.error_type),
            by_severity=grouped(M.severity),
            pending_retries=count(
                M.status == ErrorStatus.PENDING.value,
                M.next_retry_at <= now,
            ),
            failed_permanently=by_status.get(ErrorStatus.FAILED_PERMANENTLY.value, 0),
            resolved_today=count(
                M.status == ErrorStatus.RESOLVED.value,
                M.resolved_at >= start_of_day,
            ),
            average_retry_count=float(average or 0.0),
            oldest_pending_created_at=as_utc(oldest),
        )

    # -------------------------------------------------------------------------
    # Operator actions
    # -------------------------------------------------------------------------

    def trigger_retry(
        self,
        error_id: UUID | str,
        organization_id: str | None = None,
        actor_id: str | None = None,
    ) -> ErrorQueueEntry:
        """Make an item due immediately, bypassing backoff.

        From FAILED_PERMANENTLY this grants exactly one more attempt.

        Raises:
            RetryNotAllowedError: item is RESOLVED, IGNORED or RETRYING.
        """
        model = self._load(error_id, organization_id)
        status = ErrorStatus(model.status)
        if status in (ErrorStatus.RESOLVED, ErrorStatus.IGNORED):
            raise RetryNotAllowedError(model.id, status.value, f"item is {status.value}")
        if status == ErrorStatus.RETRYING:
            raise RetryNotAllowedError(model.id, status.value, "a retry is already in progress")

        now = self._clock.now_utc()
        values: dict[str, Any] = {
            "status": ErrorStatus.PENDING.value,
            "next_retry_at": now,
        }
        if model.retry_count >= model.max_retries:
            values["max_retries"] = model.retry_count + 1

        entry = self._compare_and_set(model.id, status, ErrorStatus.PENDING, values, now)
        logger.info(
            "error_retry_triggered",
            extra={
                "error_id": str(model.id),
                "from_status": status.value,
                "actor_id": actor_id,
                "max_retries": entry.max_retries,
            },
        )
        return entry

    def bulk_retry(
        self,
        organization_id: str,
        error_ids: Iterable[UUID | str],
        actor_id: str | None = None,
    ) -> BulkRetryResult:
        """Trigger a retry for each id; every id lands in exactly one bucket."""
        queued: list[str] = []
        failed: list[str] = []
        errors: list[BulkRetryFailure] = []
        seen: set[str] = set()

        for raw_id in error_ids:
            key = str(raw_id)
            if key in seen:
                failed.append(key)
                errors.append(BulkRetryFailure(key, "DUPLICATE_ID", "Id appears more than once"))
                continue
            seen.add(key)
            try:
                self.trigger_retry(raw_id, organization_id, actor_id)
            except ErrorQueueError as exc:
                failed.append(key)
                errors.append(BulkRetryFailure(key, exc.code, str(exc)))
            else:
                queued.append(key)

        logger.info(
            "error_bulk_retry",
            extra={
                "organization_id": organization_id,
                "requested": len(queued) + len(failed),
                "queued": len(queued),
                "failed": len(failed),
            },
        )
        return BulkRetryResult(queued=tuple(queued), failed=tuple(failed), errors=tuple(errors))

    def resolve(
        self,
        error_id: UUID | str,
        resolved_by: str,
        notes: str | None = None,
        organization_id: str | None = None,
    ) -> ErrorQueueEntry:
        return self._close(error_id, ErrorStatus.RESOLVED, resolved_by, notes, organization_id)

    def ignore(
        self,
        error_id: UUID | str,
        reason: str,
        ignored_by: str,
        organization_id: str | None = None,
    ) -> ErrorQueueEntry:
        return self._close(error_id, ErrorStatus.IGNORED, ignored_by, reason, organization_id)

    # -------------------------------------------------------------------------
    # Sweep operations
    # -------------------------------------------------------------------------

    def get_ready_for_retry(self, limit: int = 100) -> tuple[ErrorQueueEntry, ...]:
        """Due PENDING items with attempts left, most severe and most overdue first."""
        M = ErrorQueueItemModel
        now = self._clock.now_utc()
        rows = self._session.execute(
            select(M)
            .where(
                M.status == ErrorStatus.PENDING.value,
                M.next_retry_at.is_not(None),
                M.next_retry_at <= now,
                M.retry_count < M.max_retries,
            )
            .order_by(M.severity_rank.desc(), M.next_retry_at.asc(), M.created_at.asc())
            .limit(limit)
        ).scalars().all()
        return tuple(r.to_dto() for r in rows)

    def mark_as_retrying(self, error_id: UUID | str) -> ErrorQueueEntry:
        """Claim an item for a retry attempt (PENDING -> RETRYING).

        Raises:
            ItemAlreadyClaimedError: the item is no longer PENDING.
        """
        uid = _as_uuid(error_id)
        now = self._clock.now_utc()
        if not self._cas(uid, ErrorStatus.PENDING, {"status": ErrorStatus.RETRYING.value}, now):
            current = self._current_status(uid)
            if current is None:
                raise ErrorItemNotFoundError(uid)
            raise ItemAlreadyClaimedError(uid, current)

        logger.debug("error_claimed", extra={"error_id": str(uid)})
        return self._reload(uid).to_dto()

    def record_retry_result(
        self,
        error_id: UUID | str,
        success: bool,
        error_message: str | None = None,
        response_data: dict[str, Any] | None = None,
        duration_ms: int | None = None,
    ) -> ErrorQueueEntry:
        """Record the outcome of a claimed attempt.

        Appends one RetryLog row and moves the item to RESOLVED,
        FAILED_PERMANENTLY or back to PENDING with the next backoff.

        Raises:
            InvalidErrorTransitionError: the item is not RETRYING (for
                example an operator closed it mid-attempt).
        """
        uid = _as_uuid(error_id)
        model = self._reload(uid)
        status = ErrorStatus(model.status)
        if status != ErrorStatus.RETRYING:
            raise InvalidErrorTransitionError(uid, status.value, "RETRY_RESULT")

        now = self._clock.now_utc()
        attempt = model.retry_count + 1

        if success:
            result = RetryResult.SUCCESS
            target = ErrorStatus.RESOLVED
            values: dict[str, Any] = {
                "status": target.value,
                "retry_count": attempt,
                "resolved_at": now,
                "next_retry_at": None,
                "resolution_notes": f"Resolved by automatic retry (attempt {attempt})",
            }
        else:
            result = (
                RetryResult.TRANSIENT_ERROR
                if is_transient_error(error_message)
                else RetryResult.FAILED
            )
            if attempt >= model.max_retries:
                target = ErrorStatus.FAILED_PERMANENTLY
                values = {"status": target.value, "retry_count": attempt, "next_retry_at": None}
            else:
                target = ErrorStatus.PENDING
                values = {
                    "status": target.value,
                    "retry_count": attempt,
                    "next_retry_at": calculate_next_retry_time(
                        attempt, now, self._backoff, self._rng,
                    ),
                }

        entry = self._compare_and_set(uid, ErrorStatus.RETRYING, target, values, now)
        self._session.add(RetryLogModel(
            error_queue_id=uid,
            retry_attempt=attempt,
            retry_at=now,
            retry_result=result.value,
            error_message=error_message,
            response_data=response_data,
            duration_ms=duration_ms,
        ))
        self._session.flush()

        log = logger.info if success else logger.warning
        log(
            "error_retry_recorded",
            extra={
                "error_id": str(uid),
                "retry_attempt": attempt,
                "retry_result": result.value,
                "status": target.value,
                "next_retry_at": entry.next_retry_at,
                "duration_ms": duration_ms,
            },
        )
        return entry

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _close(
        self,
        error_id: UUID | str,
        target: ErrorStatus,
        actor: str,
        notes: str | None,
        organization_id: str | None,
    ) -> ErrorQueueEntry:
        model = self._load(error_id, organization_id)
        status = ErrorStatus(model.status)
        if status in TERMINAL_STATUSES:
            raise InvalidErrorTransitionError(model.id, status.value, target.value)

        now = self._clock.now_utc()
        entry = self._compare_and_set(
            model.id,
            status,
            target,
            {
                "status": target.value,
                "resolution_notes": notes,
                "resolved_by": actor,
                "resolved_at": now,
                "next_retry_at": None,
            },
            now,
        )
        with LogContext.bind(error_id=str(model.id), actor_id=actor):
            logger.info(
                "error_closed",
                extra={"from_status": status.value, "to_status": target.value},
            )
        return entry

    def _load(self, error_id: UUID | str, organization_id: str | None) -> ErrorQueueItemModel:
        uid = _as_uuid(error_id)
        model = self._session.get(ErrorQueueItemModel, uid)
        if model is None or (
            organization_id is not None and model.organization_id != organization_id
        ):
            raise ErrorItemNotFoundError(uid)
        return model

    def _reload(self, uid: UUID) -> ErrorQueueItemModel:
        model = self._session.get(ErrorQueueItemModel, uid, populate_existing=True)
        if model is None:
            raise ErrorItemNotFoundError(uid)
        return model

    def _current_status(self, uid: UUID) -> str | None:
        return self._session.execute(
            select(ErrorQueueItemModel.status).where(ErrorQueueItemModel.id == uid)
        ).scalar_one_or_none()

    def _cas(
        self,
        uid: UUID,
        expected: ErrorStatus,
        values: dict[str, Any],
        now: datetime,
    ) -> bool:
        result = self._session.execute(
            update(ErrorQueueItemModel)
            .where(
                ErrorQueueItemModel.id == uid,
                ErrorQueueItemModel.status == expected.value,
            )
            .values(**values, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _compare_and_set(
        self,
        uid: UUID,
        expected: ErrorStatus,
        target: ErrorStatus,
        values: dict[str, Any],
        now: datetime,
    ) -> ErrorQueueEntry:
        if not self._cas(uid, expected, values, now):
            current = self._current_status(uid) or expected.value
            raise InvalidErrorTransitionError(uid, current, target.value)
        return self._reload(uid).to_dto()
