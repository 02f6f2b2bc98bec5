"""
ORM models for mapping rule sets and their execution logs.

Contract:
    MappingRuleSetModel stores one row per ``(config_id, version)``; the rule
    body is a JSON column produced by ``loader.rules_to_dict``.
    MappingExecutionLogModel records one row per non-dry-run execution.
    ``to_dto()`` returns frozen domain objects.

Architecture: payroll_mapping/models. Imports from payroll_kernel.db.base only
(plus the mapping loader inside ``to_dto``).

Invariants enforced:
    - ``(config_id, version)`` is UNIQUE.
    - A version with at least one execution log is referenced and its row is
      never edited again (enforced by ``RuleSetService.update``).
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, DateTime, Float, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from payroll_kernel.db.base import Base, as_utc

if TYPE_CHECKING:
    from payroll_mapping.domain.types import MappingRuleSet


class MappingRuleSetModel(Base):
    """One version of a mapping configuration."""

    __tablename__ = "mapping_rule_sets"

    __table_args__ = (
        UniqueConstraint("config_id", "version", name="uq_mapping_rule_sets_config_version"),
        Index("ix_mapping_rule_sets_config_active", "config_id", "is_active"),
        Index("ix_mapping_rule_sets_organization", "organization_id"),
    )

    config_id: Mapped[str] = mapped_column(String(100), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    organization_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    source_system: Mapped[str] = mapped_column(String(100), nullable=False)
    destination_system: Mapped[str] = mapped_column(String(100), nullable=False)
    mapping_type: Mapped[str] = mapped_column(String(50), nullable=False)
    rules: Mapped[dict] = mapped_column(JSON, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    activated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    def to_dto(self) -> MappingRuleSet:
        from payroll_mapping.domain.types import MappingRuleSet, MappingType
        from payroll_mapping.loader import parse_rules

        return MappingRuleSet(
            id=self.config_id,
            source_system=self.source_system,
            destination_system=self.destination_system,
            mapping_type=MappingType(self.mapping_type),
            rules=parse_rules(self.rules or {}),
            version=self.version,
            is_active=self.is_active,
            name=self.name,
            organization_id=self.organization_id,
        )

    @property
    def activated_at_utc(self) -> datetime | None:
        return as_utc(self.activated_at)


class MappingExecutionLogModel(Base):
    """Outcome summary of one mapping execution against a rule-set version."""

    __tablename__ = "mapping_execution_logs"

    __table_args__ = (
        Index("ix_mapping_execution_logs_config_version", "config_id", "rule_set_version"),
        Index("ix_mapping_execution_logs_executed_at", "executed_at"),
    )

    config_id: Mapped[str] = mapped_column(String(100), nullable=False)
    rule_set_version: Mapped[int] = mapped_column(Integer, nullable=False)
    organization_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    total_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    successful_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    warning_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processing_time_ms: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    error_summary: Mapped[list | None] = mapped_column(JSON, nullable=True)
    executed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
