"""
payroll_mapping.models -- ORM models for rule-set persistence.

Architecture: payroll_mapping/models. Imports from payroll_kernel.db.base only.
"""

from payroll_mapping.models.rule_set import (
    MappingExecutionLogModel,
    MappingRuleSetModel,
)

__all__ = [
    "MappingExecutionLogModel",
    "MappingRuleSetModel",
]
