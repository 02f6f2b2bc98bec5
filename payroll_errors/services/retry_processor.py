"""
RetryProcessor -- Sweeps the error queue and dispatches due items to handlers.

Contract:
    ``process_retry_queue(limit)`` selects due items, and for each one:
    claims it (PENDING -> RETRYING), looks up the handler registered for its
    ``error_type``, runs it, and records the outcome through
    ``ErrorQueueService.record_retry_result``.

Architecture: payroll_errors/services.  Owns its own short transactions via
    an injected session factory: the selection and every per-item step
    commit separately, so a crash mid-sweep leaves earlier items recorded.

Invariants enforced:
    - Single-flight: one sweep per processor at a time; an overlapping call
      returns an all-zero ``RetryQueueResult``.
    - Handler exceptions never escape a sweep; they become recorded failures.
    - Stored response data is JSON-safe: values JSON cannot encode are
      stringified, and a response that still cannot be encoded fails the attempt.
    - A failure while recording one item is logged and counted as ``failed``;
      the sweep moves on to the next item.
    - An item claimed by another sweep, or closed by an operator while its
      handler ran, is counted as ``skipped``.

Non-goals:
    - Does NOT lease items across processes (multi-instance deployments
      rely on the compare-and-set claim only).
    - Does NOT time out handlers -- a handler owns its own I/O timeouts.
"""

from __future__ import annotations

import json
import threading
import time
from typing import Any, Callable, Mapping

from sqlalchemy.orm import Session

from payroll_errors.domain.types import ErrorQueueEntry, ErrorType, RetryQueueResult
from payroll_errors.services.error_queue import ErrorQueueService
from payroll_kernel.db.engine import session_scope
from payroll_kernel.domain.clock import Clock, SystemClock
from payroll_kernel.exceptions import (
    ErrorItemNotFoundError,
    InvalidErrorTransitionError,
    ItemAlreadyClaimedError,
    MappingRetryFailedError,
    RetryHandlerError,
    RetryHandlerNotImplementedError,
)
from payroll_kernel.logging_config import LogContext, get_logger

logger = get_logger("errors.retry")

# A handler re-runs the failed operation described by ``entry.error_data``.
# It returns optional response data on success and raises on failure.
RetryHandler = Callable[[ErrorQueueEntry], Any]


class RetryHandlerRegistry:
    """Maps error types to retry handlers; registering again overwrites."""

    def __init__(self) -> None:
        self._handlers: dict[ErrorType, RetryHandler] = {}

    def register(self, error_type: ErrorType | str, handler: RetryHandler) -> None:
        self._handlers[ErrorType(error_type)] = handler

    def get(self, error_type: ErrorType | str) -> RetryHandler | None:
        return self._handlers.get(ErrorType(error_type))

    def has(self, error_type: ErrorType | str) -> bool:
        return ErrorType(error_type) in self._handlers

    def error_types(self) -> list[ErrorType]:
        return sorted(self._handlers, key=lambda t: t.value)

    def __contains__(self, error_type: object) -> bool:
        try:
            return self.has(error_type)  # type: ignore[arg-type]
        except ValueError:
            return False

    def __len__(self) -> int:
        return len(self._handlers)


# =============================================================================
# Built-in handlers
# =============================================================================


class MappingRetryHandler:
    """Re-runs a mapping from ``{"mapping_config_id", "source_data"}``.

    ``run_mapping(config_id, records, organization_id)`` must execute the
    currently active rule set and return a ``MappingResult``; it is supplied
    by the composition root (``MappingService.apply_mapping`` in production).
    """

    def __init__(self, run_mapping: Callable[[str, list, str], Any]):
        self._run_mapping = run_mapping

    def __call__(self, entry: ErrorQueueEntry) -> dict[str, Any]:
        data = entry.error_data or {}
        config_id = data.get("mapping_config_id")
        source_data = data.get("source_data")
        if not config_id or not isinstance(source_data, list):
            raise RetryHandlerError(
                "Missing mapping_config_id or source_data in error data"
            )

        result = self._run_mapping(config_id, source_data, entry.organization_id)
        if result.metrics.failed_records > 0:
            raise MappingRetryFailedError(config_id, result.metrics.failed_records)
        return {"result": result.metrics.to_dict()}


class NotImplementedRetryHandler:
    """Placeholder for integration retries that live outside this package."""

    def __init__(self, error_type: ErrorType, operation: str):
        self._error_type = error_type
        self._operation = operation

    def __call__(self, entry: ErrorQueueEntry) -> Any:
        logger.info(
            "retry_handler_stub_invoked",
            extra={"error_id": str(entry.id), "error_type": self._error_type.value},
        )
        raise RetryHandlerNotImplementedError(
            self._error_type.value,
            f"{self._operation} retry not implemented - requires integration service",
        )


def default_handlers(mapping_handler: RetryHandler | None = None) -> RetryHandlerRegistry:
    """Registry with the mapping handler and integration stubs."""
    registry = RetryHandlerRegistry()
    if mapping_handler is not None:
        registry.register(ErrorType.MAPPING_ERROR, mapping_handler)
    registry.register(ErrorType.API_ERROR, NotImplementedRetryHandler(ErrorType.API_ERROR, "API"))
    registry.register(
        ErrorType.NETWORK_ERROR, NotImplementedRetryHandler(ErrorType.NETWORK_ERROR, "Network"),
    )
    registry.register(
        ErrorType.TIMEOUT_ERROR, NotImplementedRetryHandler(ErrorType.TIMEOUT_ERROR, "Timeout"),
    )
    registry.register(
        ErrorType.RATE_LIMIT_ERROR,
        NotImplementedRetryHandler(ErrorType.RATE_LIMIT_ERROR, "Rate-limited"),
    )
    return registry


# =============================================================================
# Processor
# =============================================================================


class RetryProcessor:
    """Durable-queue retry sweep.

    Contract:
        - ``process_retry_queue()`` runs one sweep and returns counters.
        - ``process_item()`` runs a single item (claim, dispatch, record)
          and returns ``"succeeded"``, ``"failed"`` or ``"skipped"``.
        - ``register_handler()`` plugs in a handler for an error type.

    Non-goals:
        - Does NOT loop -- ``RetrySweepScheduler`` calls it on an interval.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        handlers: RetryHandlerRegistry | None = None,
        clock: Clock | None = None,
        queue_factory: Callable[[Session], ErrorQueueService] | None = None,
        timer: Callable[[], float] = time.perf_counter,
    ):
        self._session_factory = session_factory
        self._handlers = handlers or RetryHandlerRegistry()
        self._clock = clock or SystemClock()
        self._queue_factory = queue_factory or (
            lambda session: ErrorQueueService(session, self._clock)
        )
        self._timer = timer
        self._lock = threading.Lock()

    @property
    def handlers(self) -> RetryHandlerRegistry:
        return self._handlers

    @property
    def is_processing(self) -> bool:
        return self._lock.locked()

    def register_handler(self, error_type: ErrorType | str, handler: RetryHandler) -> None:
        self._handlers.register(error_type, handler)

    # -------------------------------------------------------------------------
    # Sweep
    # -------------------------------------------------------------------------

    def process_retry_queue(self, limit: int = 50) -> RetryQueueResult:
        if not self._lock.acquire(blocking=False):
            logger.warning("retry_sweep_already_running")
            return RetryQueueResult()

        try:
            started = self._timer()
            with session_scope(self._session_factory) as session:
                due = self._queue_factory(session).get_ready_for_retry(limit)

            logger.info("retry_sweep_started", extra={"due_items": len(due), "limit": limit})

            counts = {"succeeded": 0, "failed": 0, "skipped": 0}
            for entry in due:
                try:
                    outcome = self.process_item(entry)
                except Exception:
                    logger.exception("retry_item_crashed", extra={"error_id": str(entry.id)})
                    outcome = "failed"
                counts[outcome] += 1

            result = RetryQueueResult(processed=len(due), **counts)
            logger.info(
                "retry_sweep_completed",
                extra={
                    **result.to_dict(),
                    "duration_ms": round((self._timer() - started) * 1000.0, 3),
                },
            )
            return result
        finally:
            self._lock.release()

    def process_item(self, entry: ErrorQueueEntry) -> str:
        with LogContext.bind(error_id=str(entry.id), organization_id=entry.organization_id):
            try:
                with session_scope(self._session_factory) as session:
                    claimed = self._queue_factory(session).mark_as_retrying(entry.id)
            except (ItemAlreadyClaimedError, ErrorItemNotFoundError) as exc:
                logger.info("retry_item_skipped", extra={"reason": exc.code})
                return "skipped"

            handler = self._handlers.get(claimed.error_type)
            started = self._timer()
            response: Any = None
            error_message: str | None = None

            if handler is None:
                error_message = f"No handler registered for error type: {claimed.error_type.value}"
                logger.warning(
                    "retry_handler_missing",
                    extra={"error_type": claimed.error_type.value},
                )
            else:
                try:
                    response = handler(claimed)
                except Exception as exc:
                    error_message = str(exc) or type(exc).__name__
                    logger.warning(
                        "retry_handler_failed",
                        extra={
                            "error_type": claimed.error_type.value,
                            "retry_attempt": claimed.retry_count + 1,
                            "error": error_message,
                            "exc_code": getattr(exc, "code", None),
                        },
                    )


            payload: dict[str, Any] | None = None
            if error_message is None:
                try:
                    payload = _response_payload(response)
                except (TypeError, ValueError) as exc:
                    error_message = f"Handler response is not JSON-serializable: {exc}"
                    logger.warning(
                        "retry_response_unserializable",
                        extra={"error_type": claimed.error_type.value, "error": str(exc)},
                    )

            duration_ms = int(round((self._timer() - started) * 1000.0))
            success = error_message is None

            try:
                self._record(claimed.id, success, error_message, payload, duration_ms)
            except (InvalidErrorTransitionError, ErrorItemNotFoundError) as exc:
                # Closed by an operator while the handler ran.
                logger.info("retry_result_discarded", extra={"reason": exc.code})
                return "skipped"
            except Exception as exc:
                logger.exception("retry_result_record_failed")
                # Second attempt stores a failure so the item leaves RETRYING.
                self._record(
                    claimed.id,
                    False,
                    f"Could not record retry result: {str(exc) or type(exc).__name__}",
                    None,
                    duration_ms,
                )
                return "failed"

            if success:
                logger.info(
                    "retry_succeeded",
                    extra={
                        "error_type": claimed.error_type.value,
                        "retry_attempt": claimed.retry_count + 1,
                        "duration_ms": duration_ms,
                    },
                )
                return "succeeded"
            return "failed"

    def _record(
        self,
        error_id: Any,
        success: bool,
        error_message: str | None,
        response_data: dict[str, Any] | None,
        duration_ms: int,
    ) -> None:
        with session_scope(self._session_factory) as session:
            self._queue_factory(session).record_retry_result(
                error_id,
                success,
                error_message=error_message,
                response_data=response_data,
                duration_ms=duration_ms,
            )


def _response_payload(response: Any) -> dict[str, Any] | None:
    """Wrap a handler response as a JSON-safe dict.

    Values JSON cannot encode (datetimes, decimals, UUIDs) are stored as
    ``str(value)``.  Circular structures raise ``ValueError``.
    """
    if response is None:
        return None
    payload = dict(response) if isinstance(response, Mapping) else {"result": response}
    return json.loads(json.dumps(payload, default=str))
