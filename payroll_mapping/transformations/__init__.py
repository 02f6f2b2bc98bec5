"""
Named, pure value transformations used by field mappings.

    registry = default_registry()
    registry.transform("to_cents", "50.00")   # 5000
"""

from payroll_mapping.transformations.registry import (
    CaseOutcome,
    FieldDataType,
    TransformationCategory,
    TransformationDefinition,
    TransformationFn,
    TransformationParam,
    TransformationRegistry,
    TransformationStep,
    TransformationTestCase,
    TransformationTestResult,
    default_registry,
)

__all__ = [
    "CaseOutcome",
    "FieldDataType",
    "TransformationCategory",
    "TransformationDefinition",
    "TransformationFn",
    "TransformationParam",
    "TransformationRegistry",
    "TransformationStep",
    "TransformationTestCase",
    "TransformationTestResult",
    "default_registry",
]
