"""
Typed exception hierarchy for the payroll sync packages.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers route on error *type* and *code*, never on message text:

    try:
        rule_sets.activate(config_id, version)
    except RuleSetValidationError as e:
        return {"error": e.code, "problems": list(e.errors)}

Every class carries a ``code`` class attribute (machine-readable, API-safe)
and stores its context as instance attributes.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    PayrollSyncError (base)
    |
    +-- RuleDefinitionError
    |   +-- UnknownTransformationError
    |   +-- InvalidLookupReferenceError
    |   +-- InvalidExpressionError
    |   +-- RuleSetValidationError
    |
    +-- RuleSetError
    |   +-- RuleSetNotFoundError
    |   +-- RuleSetInactiveError
    |
    +-- TransformationError
    |   +-- TransformationInputError
    |
    +-- ExpressionEvaluationError
    |
    +-- ErrorQueueError
    |   +-- ErrorItemNotFoundError
    |   +-- InvalidErrorTransitionError
    |   +-- RetryNotAllowedError
    |   +-- ItemAlreadyClaimedError
    |
    +-- RetryHandlerError
    |   +-- RetryHandlerNotImplementedError
    |   +-- MappingRetryFailedError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | When Raised
----------------|-------------------------------|-------------------------------------
Rule definition | UNKNOWN_TRANSFORMATION        | Transformation name not registered
                | INVALID_LOOKUP_REFERENCE      | Lookup table missing or malformed
                | INVALID_EXPRESSION            | Condition/formula fails to parse
                | RULE_SET_INVALID              | Activation/execution pre-check failed
----------------|-------------------------------|-------------------------------------
Rule set        | RULE_SET_NOT_FOUND            | No rule set for config id / version
                | RULE_SET_INACTIVE             | Config has no active version
----------------|-------------------------------|-------------------------------------
Transformation  | TRANSFORMATION_INPUT_INVALID  | Value cannot be parsed by a function
----------------|-------------------------------|-------------------------------------
Expression      | EXPRESSION_EVALUATION_FAILED  | Non-numeric operand, division by zero
----------------|-------------------------------|-------------------------------------
Error queue     | ERROR_ITEM_NOT_FOUND          | Unknown id (or other organization)
                | INVALID_ERROR_TRANSITION      | Status change not allowed
                | RETRY_NOT_ALLOWED             | Operator retry from a closed state
                | ITEM_ALREADY_CLAIMED          | Another sweep claimed the item
----------------|-------------------------------|-------------------------------------
Retry handler   | RETRY_HANDLER_NOT_IMPLEMENTED | Integration retry not plugged in
                | MAPPING_RETRY_FAILED          | Re-run still has failed records
----------------|-------------------------------|-------------------------------------
Configuration   | CONFIGURATION_ERROR           | Bad settings or rule YAML

Per-record mapping problems (TRANSFORMATION_ERROR, REQUIRED_FIELD_MISSING,
CALCULATION_ERROR) are *data* in a MappingResult, not exceptions.
"""

from __future__ import annotations

from typing import Any, Sequence


class PayrollSyncError(Exception):
    """Base exception for all payroll sync errors."""

    code: str = "PAYROLL_SYNC_ERROR"


# Rule-definition errors (raised at validation / activation time)


class RuleDefinitionError(PayrollSyncError):
    """Base exception for problems in a mapping rule definition."""

    code: str = "RULE_DEFINITION_ERROR"


class UnknownTransformationError(RuleDefinitionError):
    """Transformation name is not registered."""

    code: str = "UNKNOWN_TRANSFORMATION"

    def __init__(self, name: str, available: Sequence[str] = ()):
        self.name = name
        self.available = tuple(available)
        super().__init__(f"Unknown transformation: {name}")


class InvalidLookupReferenceError(RuleDefinitionError):
    """Lookup mapping references a table that cannot be resolved."""

    code: str = "INVALID_LOOKUP_REFERENCE"

    def __init__(self, destination_field: str, table: Any, reason: str):
        self.destination_field = destination_field
        self.table = table
        self.reason = reason
        super().__init__(
            f"Invalid lookup reference for '{destination_field}': {reason}"
        )


class InvalidExpressionError(RuleDefinitionError):
    """Condition or formula does not parse under the restricted grammar."""

    code: str = "INVALID_EXPRESSION"

    def __init__(self, expression: str, message: str, position: int = 0):
        self.expression = expression
        self.message = message
        self.position = position
        super().__init__(f"Invalid expression {expression!r}: {message}")


class RuleSetValidationError(RuleDefinitionError):
    """A rule set failed validation and must not be activated or executed."""

    code: str = "RULE_SET_INVALID"

    def __init__(self, rule_set_id: str, errors: Sequence[str]):
        self.rule_set_id = rule_set_id
        self.errors = tuple(errors)
        super().__init__(
            f"Rule set {rule_set_id} is invalid: {'; '.join(self.errors)}"
        )


# Rule-set lookup errors


class RuleSetError(PayrollSyncError):
    """Base exception for rule-set persistence errors."""

    code: str = "RULE_SET_ERROR"


class RuleSetNotFoundError(RuleSetError):
    """No rule set exists for the given config id (and version)."""

    code: str = "RULE_SET_NOT_FOUND"

    def __init__(self, config_id: str, version: int | None = None):
        self.config_id = config_id
        self.version = version
        suffix = f" v{version}" if version is not None else ""
        super().__init__(f"Rule set not found: {config_id}{suffix}")


class RuleSetInactiveError(RuleSetError):
    """The config exists but has no active version."""

    code: str = "RULE_SET_INACTIVE"

    def __init__(self, config_id: str):
        self.config_id = config_id
        super().__init__(f"Rule set {config_id} has no active version")


# Transformation and expression evaluation errors


class TransformationError(PayrollSyncError):
    """Base exception raised by transformation functions."""

    code: str = "TRANSFORMATION_ERROR"


class TransformationInputError(TransformationError):
    """A transformation could not interpret its input value."""

    code: str = "TRANSFORMATION_INPUT_INVALID"

    def __init__(self, transformation: str, value: Any, reason: str):
        self.transformation = transformation
        self.value = value
        self.reason = reason
        super().__init__(f"{transformation}: {reason} (value={value!r})")


class ExpressionEvaluationError(PayrollSyncError):
    """A parsed expression could not be evaluated against a record."""

    code: str = "EXPRESSION_EVALUATION_FAILED"

    def __init__(self, expression: str, reason: str):
        self.expression = expression
        self.reason = reason
        super().__init__(f"Cannot evaluate {expression!r}: {reason}")


# Error queue errors


class ErrorQueueError(PayrollSyncError):
    """Base exception for error queue operations."""

    code: str = "ERROR_QUEUE_ERROR"


class ErrorItemNotFoundError(ErrorQueueError):
    """Queue item does not exist (or belongs to another organization)."""

    code: str = "ERROR_ITEM_NOT_FOUND"

    def __init__(self, error_id: Any):
        self.error_id = str(error_id)
        super().__init__(f"Error queue item not found: {error_id}")


class InvalidErrorTransitionError(ErrorQueueError):
    """Requested status change is not in the queue state machine."""

    code: str = "INVALID_ERROR_TRANSITION"

    def __init__(self, error_id: Any, from_status: str, to_status: str):
        self.error_id = str(error_id)
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid transition for error {error_id}: {from_status} -> {to_status}"
        )


class RetryNotAllowedError(ErrorQueueError):
    """Operator-initiated retry is not allowed from the current status."""

    code: str = "RETRY_NOT_ALLOWED"

    def __init__(self, error_id: Any, status: str, reason: str):
        self.error_id = str(error_id)
        self.status = status
        self.reason = reason
        super().__init__(f"Retry not allowed for error {error_id}: {reason}")


class ItemAlreadyClaimedError(ErrorQueueError):
    """Compare-and-set claim lost: the item is no longer PENDING."""

    code: str = "ITEM_ALREADY_CLAIMED"

    def __init__(self, error_id: Any, status: str | None):
        self.error_id = str(error_id)
        self.status = status
        super().__init__(
            f"Error {error_id} cannot be claimed (status={status})"
        )


# Retry handler errors


class RetryHandlerError(PayrollSyncError):
    """Base exception raised by retry handlers."""

    code: str = "RETRY_HANDLER_ERROR"


class RetryHandlerNotImplementedError(RetryHandlerError):
    """Integration-specific retry has not been plugged in."""

    code: str = "RETRY_HANDLER_NOT_IMPLEMENTED"

    def __init__(self, error_type: str, message: str):
        self.error_type = error_type
        super().__init__(message)


class MappingRetryFailedError(RetryHandlerError):
    """Re-running a mapping still produced failed records."""

    code: str = "MAPPING_RETRY_FAILED"

    def __init__(self, mapping_config_id: str, failed_records: int):
        self.mapping_config_id = mapping_config_id
        self.failed_records = failed_records
        super().__init__(
            f"Mapping still has {failed_records} failed records"
        )


# Configuration


class ConfigurationError(PayrollSyncError):
    """Settings or rule YAML is malformed."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, message: str, source: str | None = None):
        self.source = source
        super().__init__(message if source is None else f"{source}: {message}")
