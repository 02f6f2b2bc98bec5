"""
Runtime wiring (``payroll_services.runtime``).

Responsibility
--------------
Builds every long-lived collaborator from ``AppSettings`` explicitly: the
transformation registry, the mapping engine, retry handlers, the retry
processor and the sweep scheduler.  Nothing in the package is a module-level
singleton; tests build their own runtime around an in-memory database.

Architecture position
---------------------
**Services layer** -- the only module that knows about both
``payroll_mapping`` and ``payroll_errors``.

Failure modes
-------------
* ``ConfigurationError`` for an unknown warning policy.
* SQLAlchemy errors from ``init_engine_from_url`` / ``create_tables``
  propagate.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

from sqlalchemy.orm import Session

import payroll_errors.models  # noqa: F401
import payroll_mapping.models  # noqa: F401
from payroll_config.schema import AppSettings
from payroll_errors.domain.backoff import BackoffPolicy
from payroll_errors.services.error_queue import ErrorQueueService
from payroll_errors.services.retry_processor import (
    MappingRetryHandler,
    RetryHandlerRegistry,
    RetryProcessor,
    default_handlers,
)
from payroll_errors.services.scheduler import RetrySweepScheduler
from payroll_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from payroll_kernel.domain.clock import Clock, SystemClock
from payroll_kernel.exceptions import ConfigurationError
from payroll_kernel.logging_config import configure_logging, get_logger
from payroll_mapping.domain.types import MappingResult, WarningPolicy
from payroll_mapping.engine import MappingExecutionEngine
from payroll_mapping.services.mapping_service import MappingService
from payroll_mapping.services.rule_sets import RuleSetService
from payroll_mapping.transformations.registry import TransformationRegistry, default_registry
from payroll_mapping.validation import ValidationRule

logger = get_logger("services.runtime")


@dataclass
class PayrollRuntime:
    """Wired collaborators plus per-session service factories."""

    settings: AppSettings
    clock: Clock
    session_factory: Callable[[], Session]
    registry: TransformationRegistry
    engine: MappingExecutionEngine
    handlers: RetryHandlerRegistry
    processor: RetryProcessor
    scheduler: RetrySweepScheduler
    backoff: BackoffPolicy
    validation_rules: tuple[ValidationRule, ...] = ()
    rng: Callable[[], float] = random.random

    def error_queue(self, session: Session) -> ErrorQueueService:
        return _queue_factory(
            self.clock, self.backoff, self.settings.retry.default_max_retries, self.rng,
        )(session)

    def rule_sets(self, session: Session) -> RuleSetService:
        return RuleSetService(session, self.registry, self.clock)

    def mapping_service(self, session: Session) -> MappingService:
        return MappingService(
            session,
            self.registry,
            self.clock,
            validation_rules=self.validation_rules,
            engine=self.engine,
        )

    def rerun_mapping(
        self,
        config_id: str,
        source_records: Sequence[Mapping[str, Any]],
        organization_id: str,
    ) -> MappingResult:
        """Re-run the active rule set in its own transaction (retry path)."""
        return _rerun_mapping(
            self.session_factory, self.registry, self.clock, self.engine,
            config_id, source_records, organization_id,
        )


def _rerun_mapping(
    session_factory: Callable[[], Session],
    registry: TransformationRegistry,
    clock: Clock,
    engine: MappingExecutionEngine,
    config_id: str,
    source_records: Sequence[Mapping[str, Any]],
    organization_id: str,
) -> MappingResult:
    with session_scope(session_factory) as session:
        report = MappingService(session, registry, clock, engine=engine).apply_mapping(
            config_id, source_records, organization_id, skip_validation=True,
        )
    return report.result


def _queue_factory(
    clock: Clock,
    backoff: BackoffPolicy,
    default_max_retries: int,
    rng: Callable[[], float],
) -> Callable[[Session], ErrorQueueService]:
    def factory(session: Session) -> ErrorQueueService:
        return ErrorQueueService(session, clock, backoff, default_max_retries, rng)

    return factory


def _warning_policy(name: str) -> WarningPolicy:
    try:
        return WarningPolicy(name)
    except ValueError:
        raise ConfigurationError(f"Unknown warning_policy {name!r}") from None


def build_runtime(
    settings: AppSettings | None = None,
    session_factory: Callable[[], Session] | None = None,
    clock: Clock | None = None,
    validation_rules: Sequence[ValidationRule] = (),
    create_schema: bool = False,
    rng: Callable[[], float] = random.random,
) -> PayrollRuntime:
    """
    Build a runtime.

    When ``session_factory`` is None the engine is initialized from
    ``settings.database.url``; ``create_schema`` then creates the tables.
    """
    settings = settings or AppSettings()
    configure_logging(level=settings.logging.level)
    clock = clock or SystemClock()

    if session_factory is None:
        engine = init_engine_from_url(settings.database.url, echo=settings.database.echo)
        if create_schema:
            create_tables(engine)
        session_factory = get_session_factory()

    registry = default_registry()
    mapping_engine = MappingExecutionEngine(
        registry, _warning_policy(settings.mapping.warning_policy),
    )
    backoff = BackoffPolicy.from_settings(settings.retry.backoff)

    def rerun(config_id, source_records, organization_id):
        return _rerun_mapping(
            session_factory, registry, clock, mapping_engine,
            config_id, source_records, organization_id,
        )

    handlers = default_handlers(MappingRetryHandler(rerun))
    queue_factory = _queue_factory(clock, backoff, settings.retry.default_max_retries, rng)
    processor = RetryProcessor(session_factory, handlers, clock, queue_factory=queue_factory)
    scheduler = RetrySweepScheduler(
        processor,
        interval_seconds=settings.retry.sweep_interval_seconds,
        limit=settings.retry.sweep_limit,
    )
    runtime = PayrollRuntime(
        settings=settings,
        clock=clock,
        session_factory=session_factory,
        registry=registry,
        engine=mapping_engine,
        handlers=handlers,
        processor=processor,
        scheduler=scheduler,
        backoff=backoff,
        validation_rules=tuple(validation_rules),
        rng=rng,
    )

    logger.info(
        "runtime_built",
        extra={
            "transformations": len(registry),
            "retry_handlers": [t.value for t in runtime.handlers.error_types()],
            "warning_policy": mapping_engine.warning_policy.value,
            "validation_rules": len(runtime.validation_rules),
        },
    )
    return runtime
