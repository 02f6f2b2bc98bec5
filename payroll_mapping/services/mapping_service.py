"""
MappingService -- Run the active rule set for a config and report the outcome.

Contract:
    ``apply_mapping()`` loads the active version of a config, executes it,
    runs the independent validation pass, logs the execution (unless dry
    run) and returns a ``MappingRunReport``.  ``escalate_failures()`` turns
    the failed records of a report into one MAPPING_ERROR queue item.

Architecture: payroll_mapping/services.  Composes RuleSetService,
    MappingExecutionEngine and ValidationEngine.  The error queue is passed
    in by the caller; this module does not construct one.

Invariants enforced:
    - Mapping and validation are separate passes over the records.
    - Dry runs write nothing, so they never freeze a rule-set version.
    - Escalated payloads carry ``mapping_config_id`` and ``source_data``
      exactly as given, so the retry handler can re-run them.

Non-goals:
    - Does NOT call ``session.commit()`` -- caller controls boundaries.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Mapping, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from payroll_kernel.domain.clock import Clock, SystemClock
from payroll_kernel.logging_config import LogContext, get_logger
from payroll_mapping.domain.types import (
    MappingContext,
    MappingResult,
    MappingRuleSet,
    WarningPolicy,
)
from payroll_mapping.engine import MappingExecutionEngine
from payroll_mapping.services.rule_sets import RuleSetService
from payroll_mapping.transformations.registry import TransformationRegistry
from payroll_mapping.validation import (
    RecordValidationResult,
    ValidationEngine,
    ValidationRule,
)

if TYPE_CHECKING:
    from payroll_errors.domain.types import ErrorQueueEntry
    from payroll_errors.services.error_queue import ErrorQueueService

logger = get_logger("mapping.service")


@dataclass(frozen=True)
class MappingRunReport:
    """Mapping result plus validation outcome for one run."""

    rule_set_id: str
    rule_set_version: int
    result: MappingResult
    validation: tuple[RecordValidationResult, ...] = ()
    accepted_indexes: tuple[int, ...] = ()
    failed_indexes: tuple[int, ...] = ()
    dry_run: bool = False
    execution_log_id: UUID | None = None
    source_system: str = ""
    destination_system: str = ""
    mapping_type: str = ""

    @property
    def accepted_records(self) -> list[dict[str, Any]]:
        return [self.result.data[i] for i in self.accepted_indexes]

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_set_id": self.rule_set_id,
            "rule_set_version": self.rule_set_version,
            "dry_run": self.dry_run,
            "mapping": self.result.to_dict(),
            "validation": [v.to_dict() for v in self.validation],
            "accepted_indexes": list(self.accepted_indexes),
            "failed_indexes": list(self.failed_indexes),
        }


class MappingService:
    """Apply stored rule sets to record batches.

    Contract:
        - ``apply_mapping()`` runs the active version of a config.
        - ``test_mapping()`` runs any rule set as a dry run.
        - ``escalate_failures()`` queues failed records for retry.
    """

    def __init__(
        self,
        session: Session,
        registry: TransformationRegistry,
        clock: Clock | None = None,
        validation_rules: Sequence[ValidationRule] = (),
        warning_policy: WarningPolicy = WarningPolicy.IGNORE_WARNINGS,
        engine: MappingExecutionEngine | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._rule_sets = RuleSetService(session, registry, self._clock)
        self._engine = engine or MappingExecutionEngine(registry, warning_policy)
        self._validator = ValidationEngine(validation_rules)

    @property
    def rule_sets(self) -> RuleSetService:
        return self._rule_sets

    def apply_mapping(
        self,
        config_id: str,
        source_records: Sequence[Mapping[str, Any]],
        organization_id: str | None = None,
        lookup_tables: Mapping[str, Any] | None = None,
        dry_run: bool = False,
        skip_validation: bool = False,
    ) -> MappingRunReport:
        """Run the active version of ``config_id``.

        Raises:
            RuleSetNotFoundError / RuleSetInactiveError: nothing to run.
            RuleSetValidationError: the active version cannot execute.
        """
        rule_set = self._rule_sets.get_active(config_id)
        return self._run(
            rule_set, source_records, organization_id, lookup_tables,
            dry_run=dry_run, skip_validation=skip_validation,
        )

    def test_mapping(
        self,
        rule_set: MappingRuleSet,
        source_records: Sequence[Mapping[str, Any]],
        organization_id: str | None = None,
        lookup_tables: Mapping[str, Any] | None = None,
    ) -> MappingRunReport:
        """Dry run of an arbitrary (possibly unsaved) rule set."""
        return self._run(rule_set, source_records, organization_id, lookup_tables, dry_run=True)

    def escalate_failures(
        self,
        report: MappingRunReport,
        source_records: Sequence[Mapping[str, Any]],
        queue: ErrorQueueService,
        organization_id: str,
    ) -> ErrorQueueEntry | None:
        """Queue one MAPPING_ERROR item holding the failed source records.

        Returns None when the run had no failed records.
        """
        from payroll_errors.domain.types import ErrorQueueData, ErrorSeverity, ErrorType

        if not report.failed_indexes:
            return None

        failed_records = [dict(source_records[i]) for i in report.failed_indexes]
        codes = sorted({e.code for e in report.result.errors})
        entry = queue.add_to_queue(
            organization_id,
            ErrorQueueData(
                error_type=ErrorType.MAPPING_ERROR,
                severity=ErrorSeverity.ERROR,
                error_message=(
                    f"{len(failed_records)} of {report.result.metrics.total_records} "
                    f"records failed mapping with {report.rule_set_id} v{report.rule_set_version}"
                ),
                error_data={
                    "mapping_config_id": report.rule_set_id,
                    "source_data": failed_records,
                },
                error_code=codes[0] if len(codes) == 1 else "MAPPING_FAILED",
                source_system=report.source_system or None,
                destination_system=report.destination_system or None,
                record_type=report.mapping_type or None,
            ),
        )
        logger.info(
            "mapping_failures_escalated",
            extra={
                "rule_set_id": report.rule_set_id,
                "error_id": str(entry.id),
                "failed_records": len(failed_records),
            },
        )
        return entry

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run(
        self,
        rule_set: MappingRuleSet,
        source_records: Sequence[Mapping[str, Any]],
        organization_id: str | None,
        lookup_tables: Mapping[str, Any] | None,
        dry_run: bool = False,
        skip_validation: bool = False,
    ) -> MappingRunReport:
        context = MappingContext(
            organization_id=organization_id,
            lookup_tables=dict(lookup_tables or {}),
        )
        with LogContext.bind(rule_set_id=rule_set.id, organization_id=organization_id):
            result = self._engine.execute(rule_set, source_records, context)

            validation: tuple[RecordValidationResult, ...] = ()
            if not skip_validation:
                validation = self._validator.validate(result.data, rule_set.mapping_type)

            failed = self._failed_indexes(result)
            invalid = {v.record_index for v in validation if not v.valid}
            accepted = tuple(
                i for i in range(len(result.data)) if i not in failed and i not in invalid
            )

            log_id = None
            if not dry_run:
                log_id = self._rule_sets.record_execution(rule_set, result, organization_id).id

            logger.info(
                "mapping_run_completed",
                extra={
                    "rule_set_version": rule_set.version,
                    "dry_run": dry_run,
                    "accepted_records": len(accepted),
                    "failed_records": len(failed),
                    "invalid_records": len(invalid),
                },
            )

        return MappingRunReport(
            rule_set_id=rule_set.id,
            rule_set_version=rule_set.version,
            result=result,
            validation=validation,
            accepted_indexes=accepted,
            failed_indexes=tuple(sorted(failed)),
            dry_run=dry_run,
            execution_log_id=log_id,
            source_system=rule_set.source_system,
            destination_system=rule_set.destination_system,
            mapping_type=rule_set.mapping_type.value,
        )

    def _failed_indexes(self, result: MappingResult) -> set[int]:
        failed = {e.record_index for e in result.errors}
        if self._engine.warning_policy == WarningPolicy.WARNINGS_FAIL_RECORD:
            failed |= {w.record_index for w in result.warnings}
        return failed
