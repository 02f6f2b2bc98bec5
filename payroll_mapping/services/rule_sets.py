"""
RuleSetService -- Versioned persistence and activation of mapping rule sets.

Contract:
    Stores ``MappingRuleSet`` revisions keyed by ``(config_id, version)``,
    keeps at most one active version per config, and records executions.

Architecture: payroll_mapping/services.  Imports from payroll_mapping.domain,
    payroll_mapping.models, the rule validator and kernel utilities.

Invariants enforced:
    - A version referenced by an execution log is immutable: ``update()``
      writes a new version instead of editing it.
    - Activation validates against the transformation registry first and
      raises ``RuleSetValidationError`` without touching any row.
    - At most one active version per ``config_id``.
    - All timestamps from the injected Clock.

Non-goals:
    - Does NOT call ``session.commit()`` -- caller controls boundaries.
"""

from __future__ import annotations

from dataclasses import replace

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from payroll_kernel.domain.clock import Clock, SystemClock
from payroll_kernel.exceptions import RuleSetInactiveError, RuleSetNotFoundError
from payroll_kernel.logging_config import LogContext, get_logger
from payroll_mapping.domain.types import (
    MappingResult,
    MappingRules,
    MappingRuleSet,
    summarize_errors,
)
from payroll_mapping.loader import rules_to_dict
from payroll_mapping.models.rule_set import MappingExecutionLogModel, MappingRuleSetModel
from payroll_mapping.rule_validator import RuleSetValidationResult, ensure_valid
from payroll_mapping.transformations.registry import TransformationRegistry

logger = get_logger("mapping.rule_sets")


class RuleSetService:
    """Create, version, activate and look up mapping rule sets.

    Contract:
        - ``create()`` stores a new inactive version.
        - ``update()`` edits in place while unreferenced, else adds version+1.
        - ``activate()`` / ``deactivate()`` switch the active version.
        - ``get()`` / ``get_active()`` / ``list_versions()`` for queries.
        - ``record_execution()`` logs a run and thereby freezes the version.
    """

    def __init__(
        self,
        session: Session,
        registry: TransformationRegistry,
        clock: Clock | None = None,
    ):
        self._session = session
        self._registry = registry
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def create(self, rule_set: MappingRuleSet) -> MappingRuleSet:
        """Store ``rule_set`` as the next version of its config (inactive)."""
        version = self._latest_version(rule_set.id) + 1
        now = self._clock.now_utc()
        model = MappingRuleSetModel(
            config_id=rule_set.id,
            version=version,
            name=rule_set.name,
            organization_id=rule_set.organization_id,
            source_system=rule_set.source_system,
            destination_system=rule_set.destination_system,
            mapping_type=rule_set.mapping_type.value,
            rules=rules_to_dict(rule_set.rules),
            is_active=False,
            created_at=now,
            updated_at=now,
        )
        self._session.add(model)
        self._session.flush()

        logger.info(
            "rule_set_created",
            extra={"rule_set_id": rule_set.id, "rule_set_version": version},
        )
        return model.to_dto()

    def update(
        self,
        config_id: str,
        rules: MappingRules | None = None,
        name: str | None = None,
        source_system: str | None = None,
        destination_system: str | None = None,
    ) -> MappingRuleSet:
        """Change the latest version of a config.

        Unreferenced versions are edited in place (an active one is
        re-validated first); referenced versions are left untouched and the
        change is stored as a new inactive version.
        """
        model = self._load(config_id, None)
        current = model.to_dto()
        changed = replace(
            current,
            rules=rules if rules is not None else current.rules,
            name=name if name is not None else current.name,
            source_system=source_system if source_system is not None else current.source_system,
            destination_system=(
                destination_system if destination_system is not None
                else current.destination_system
            ),
        )

        if self.is_referenced(config_id, model.version):
            created = self.create(replace(changed, is_active=False))
            logger.info(
                "rule_set_versioned",
                extra={
                    "rule_set_id": config_id,
                    "from_version": model.version,
                    "rule_set_version": created.version,
                },
            )
            return created

        if model.is_active:
            ensure_valid(changed, self._registry)

        model.rules = rules_to_dict(changed.rules)
        model.name = changed.name
        model.source_system = changed.source_system
        model.destination_system = changed.destination_system
        model.updated_at = self._clock.now_utc()
        self._session.flush()

        logger.info(
            "rule_set_updated",
            extra={"rule_set_id": config_id, "rule_set_version": model.version},
        )
        return model.to_dto()

    def activate(self, config_id: str, version: int | None = None) -> RuleSetValidationResult:
        """Validate and activate a version (latest when ``version`` is None).

        Returns the validation result so callers can surface warnings.

        Raises:
            RuleSetNotFoundError: unknown config or version.
            RuleSetValidationError: the version has rule-definition errors.
        """
        model = self._load(config_id, version)
        with LogContext.bind(rule_set_id=config_id):
            validation = ensure_valid(model.to_dto(), self._registry)

            now = self._clock.now_utc()
            self._session.execute(
                update(MappingRuleSetModel)
                .where(
                    MappingRuleSetModel.config_id == config_id,
                    MappingRuleSetModel.id != model.id,
                    MappingRuleSetModel.is_active == True,  # noqa: E712
                )
                .values(is_active=False, updated_at=now)
                .execution_options(synchronize_session="fetch")
            )
            model.is_active = True
            model.activated_at = now
            model.updated_at = now
            self._session.flush()

            logger.info(
                "rule_set_activated",
                extra={
                    "rule_set_version": model.version,
                    "warning_count": len(validation.warnings),
                },
            )
        return validation

    def deactivate(self, config_id: str) -> MappingRuleSet | None:
        """Deactivate the active version, if any, and return it."""
        model = self._active_model(config_id)
        if model is None:
            return None
        model.is_active = False
        model.updated_at = self._clock.now_utc()
        self._session.flush()
        logger.info(
            "rule_set_deactivated",
            extra={"rule_set_id": config_id, "rule_set_version": model.version},
        )
        return model.to_dto()

    def record_execution(
        self,
        rule_set: MappingRuleSet,
        result: MappingResult,
        organization_id: str | None = None,
    ) -> MappingExecutionLogModel:
        log = MappingExecutionLogModel(
            config_id=rule_set.id,
            rule_set_version=rule_set.version,
            organization_id=organization_id,
            total_records=result.metrics.total_records,
            successful_records=result.metrics.successful_records,
            failed_records=result.metrics.failed_records,
            warning_count=len(result.warnings),
            processing_time_ms=result.metrics.processing_time_ms,
            error_summary=summarize_errors(result.errors) or None,
            executed_at=self._clock.now_utc(),
        )
        self._session.add(log)
        self._session.flush()
        return log

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get(self, config_id: str, version: int | None = None) -> MappingRuleSet:
        """A specific version, or the latest one when ``version`` is None."""
        return self._load(config_id, version).to_dto()

    def get_active(self, config_id: str) -> MappingRuleSet:
        """
        Raises:
            RuleSetNotFoundError: no version exists for ``config_id``.
            RuleSetInactiveError: versions exist but none is active.
        """
        model = self._active_model(config_id)
        if model is None:
            if self._latest_version(config_id) == 0:
                raise RuleSetNotFoundError(config_id)
            raise RuleSetInactiveError(config_id)
        return model.to_dto()

    def list_versions(self, config_id: str) -> tuple[MappingRuleSet, ...]:
        rows = self._session.execute(
            select(MappingRuleSetModel)
            .where(MappingRuleSetModel.config_id == config_id)
            .order_by(MappingRuleSetModel.version)
        ).scalars().all()
        return tuple(r.to_dto() for r in rows)

    def is_referenced(self, config_id: str, version: int) -> bool:
        count = self._session.execute(
            select(func.count())
            .select_from(MappingExecutionLogModel)
            .where(
                MappingExecutionLogModel.config_id == config_id,
                MappingExecutionLogModel.rule_set_version == version,
            )
        ).scalar_one()
        return count > 0

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _latest_version(self, config_id: str) -> int:
        latest = self._session.execute(
            select(func.max(MappingRuleSetModel.version))
            .where(MappingRuleSetModel.config_id == config_id)
        ).scalar_one()
        return latest or 0

    def _active_model(self, config_id: str) -> MappingRuleSetModel | None:
        return self._session.execute(
            select(MappingRuleSetModel).where(
                MappingRuleSetModel.config_id == config_id,
                MappingRuleSetModel.is_active == True,  # noqa: E712
            )
        ).scalar_one_or_none()

    def _load(self, config_id: str, version: int | None) -> MappingRuleSetModel:
        if version is None:
            version = self._latest_version(config_id)
        model = self._session.execute(
            select(MappingRuleSetModel).where(
                MappingRuleSetModel.config_id == config_id,
                MappingRuleSetModel.version == version,
            )
        ).scalar_one_or_none()
        if model is None:
            raise RuleSetNotFoundError(config_id, version or None)
        return model
