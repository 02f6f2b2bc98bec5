"""
payroll_mapping.services -- Rule-set persistence and mapping runs.

Architecture: payroll_mapping/services. Services take a Session and a Clock
and never commit.
"""

from payroll_mapping.services.mapping_service import MappingRunReport, MappingService
from payroll_mapping.services.rule_sets import RuleSetService

__all__ = [
    "MappingRunReport",
    "MappingService",
    "RuleSetService",
]
