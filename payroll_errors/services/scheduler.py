"""
RetrySweepScheduler -- In-process polling loop for the retry sweep.

Contract:
    Calls ``RetryProcessor.process_retry_queue(limit)`` every
    ``interval_seconds`` on a background thread until stopped.

Architecture: payroll_errors/services.  Wraps a RetryProcessor; owns no
    session of its own.

Invariants enforced:
    - Graceful shutdown: ``stop()`` sets an event checked between sweeps;
      an in-flight sweep completes.
    - A failing sweep is logged and the loop continues.
"""

from __future__ import annotations

import threading

from payroll_errors.domain.types import RetryQueueResult
from payroll_errors.services.retry_processor import RetryProcessor
from payroll_kernel.logging_config import get_logger

logger = get_logger("errors.scheduler")


class RetrySweepScheduler:
    """Background scheduler for retry sweeps.

    Contract:
        - ``tick()`` runs one sweep (public for testing and cron use).
        - ``start()`` / ``stop()`` for background thread operation.

    Non-goals:
        - NOT a distributed scheduler (no leader election).
    """

    def __init__(
        self,
        processor: RetryProcessor,
        interval_seconds: float = 60,
        limit: int = 50,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._processor = processor
        self._interval = interval_seconds
        self._limit = limit
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> RetryQueueResult:
        """Run one sweep; failures are logged and reported as an empty result."""
        try:
            return self._processor.process_retry_queue(self._limit)
        except Exception:
            logger.exception("retry_sweep_tick_failed")
            return RetryQueueResult()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="retry-sweep-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "retry_scheduler_started",
            extra={"interval_seconds": self._interval, "limit": self._limit},
        )

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait up to ``timeout`` seconds for the thread."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("retry_scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(timeout=self._interval)
