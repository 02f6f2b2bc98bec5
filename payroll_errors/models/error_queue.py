"""
ORM models for the error queue and its retry log.

Contract:
    ErrorQueueItemModel persists one failed operation and its retry state;
    RetryLogModel is an append-only row per attempt.  Both convert to frozen
    DTOs with ``to_dto()``.

Architecture: payroll_errors/models. Imports from payroll_kernel.db.base only.

Invariants enforced:
    - ``error_data`` is a JSON column written once at insert and never
      updated; retry handlers rebuild the failed operation from it.
    - ``severity_rank`` mirrors ``severity`` so ORDER BY uses real severity
      (CRITICAL > ERROR > WARNING) rather than string order.
    - Queue rows are never deleted; terminal rows are retained.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_kernel.db.base import Base, UUIDString, as_utc

if TYPE_CHECKING:
    from payroll_errors.domain.types import ErrorQueueEntry, RetryLogEntry


class ErrorQueueItemModel(Base):
    """One queued failure awaiting retry or operator action."""

    __tablename__ = "error_queue_items"

    __table_args__ = (
        Index(
            "ix_error_queue_ready",
            "status", "next_retry_at", "severity_rank",
        ),
        Index("ix_error_queue_org_status", "organization_id", "status"),
        Index("ix_error_queue_org_created", "organization_id", "created_at"),
    )

    organization_id: Mapped[str] = mapped_column(String(100), nullable=False)
    error_type: Mapped[str] = mapped_column(String(50), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    severity_rank: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    source_system: Mapped[str | None] = mapped_column(String(100), nullable=True)
    destination_system: Mapped[str | None] = mapped_column(String(100), nullable=True)
    record_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    record_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_data: Mapped[dict] = mapped_column(JSON, nullable=False)
    error_message: Mapped[str] = mapped_column(Text, nullable=False)
    error_stack: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    next_retry_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    context: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    retry_logs: Mapped[list["RetryLogModel"]] = relationship(
        "RetryLogModel",
        back_populates="item",
        foreign_keys="RetryLogModel.error_queue_id",
        order_by="RetryLogModel.retry_attempt",
    )

    def to_dto(self) -> ErrorQueueEntry:
        from payroll_errors.domain.types import (
            ErrorQueueEntry,
            ErrorSeverity,
            ErrorStatus,
            ErrorType,
        )

        return ErrorQueueEntry(
            id=self.id,
            organization_id=self.organization_id,
            error_type=ErrorType(self.error_type),
            severity=ErrorSeverity(self.severity),
            status=ErrorStatus(self.status),
            error_message=self.error_message,
            error_data=self.error_data or {},
            retry_count=self.retry_count,
            max_retries=self.max_retries,
            created_at=as_utc(self.created_at),
            updated_at=as_utc(self.updated_at),
            source_system=self.source_system,
            destination_system=self.destination_system,
            record_id=self.record_id,
            record_type=self.record_type,
            error_stack=self.error_stack,
            error_code=self.error_code,
            next_retry_at=as_utc(self.next_retry_at),
            resolution_notes=self.resolution_notes,
            resolved_by=self.resolved_by,
            resolved_at=as_utc(self.resolved_at),
            context=self.context,
        )


class RetryLogModel(Base):
    """Append-only record of one retry attempt."""

    __tablename__ = "error_retry_logs"

    __table_args__ = (
        Index("ix_error_retry_logs_item_attempt", "error_queue_id", "retry_attempt"),
    )

    error_queue_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("error_queue_items.id"),
        nullable=False,
    )
    retry_attempt: Mapped[int] = mapped_column(Integer, nullable=False)
    retry_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    retry_result: Mapped[str] = mapped_column(String(30), nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    item: Mapped["ErrorQueueItemModel"] = relationship(
        "ErrorQueueItemModel",
        back_populates="retry_logs",
        foreign_keys=[error_queue_id],
    )

    def to_dto(self) -> RetryLogEntry:
        from payroll_errors.domain.types import RetryLogEntry, RetryResult

        return RetryLogEntry(
            id=self.id,
            error_queue_id=self.error_queue_id,
            retry_attempt=self.retry_attempt,
            retry_at=as_utc(self.retry_at),
            retry_result=RetryResult(self.retry_result),
            error_message=self.error_message,
            response_data=self.response_data,
            duration_ms=self.duration_ms,
        )
