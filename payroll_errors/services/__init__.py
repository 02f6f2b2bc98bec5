"""
payroll_errors.services -- Queue state machine, retry sweep and scheduler.

Architecture: payroll_errors/services. Imports from payroll_errors.domain,
payroll_errors.models and payroll_kernel.
"""

from payroll_errors.services.error_queue import ErrorQueueService
from payroll_errors.services.retry_processor import (
    MappingRetryHandler,
    NotImplementedRetryHandler,
    RetryHandler,
    RetryHandlerRegistry,
    RetryProcessor,
    default_handlers,
)
from payroll_errors.services.scheduler import RetrySweepScheduler

__all__ = [
    "ErrorQueueService",
    "MappingRetryHandler",
    "NotImplementedRetryHandler",
    "RetryHandler",
    "RetryHandlerRegistry",
    "RetryProcessor",
    "RetrySweepScheduler",
    "default_handlers",
]
