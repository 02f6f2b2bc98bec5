"""
TransformationDefinition, supporting types, and TransformationRegistry.

Contract:
    ``TransformationRegistry`` maps a transformation name to a pure function
    ``(value, params) -> value`` plus its declared metadata.
    ``default_registry()`` returns a fresh registry holding every built-in.

Architecture:
    payroll_mapping/transformations.  Imports only stdlib and
    ``payroll_kernel.exceptions``.  The registry is constructed explicitly by
    the composition root and treated as read-only while a batch executes.

Invariants enforced:
    - One function per name; ``register()`` overwrites (last writer wins).
    - ``transform()`` returns the function's result verbatim and lets its
      exceptions propagate unwrapped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Sequence

from payroll_kernel.exceptions import UnknownTransformationError

TransformationFn = Callable[[Any, Mapping[str, Any]], Any]


class TransformationCategory(str, Enum):
    STRING = "STRING"
    NUMERIC = "NUMERIC"
    DATE = "DATE"
    LOOKUP = "LOOKUP"
    CONDITIONAL = "CONDITIONAL"
    COMPOSITE = "COMPOSITE"
    VALIDATION = "VALIDATION"


class FieldDataType(str, Enum):
    STRING = "STRING"
    NUMBER = "NUMBER"
    DATE = "DATE"
    BOOLEAN = "BOOLEAN"
    ARRAY = "ARRAY"
    OBJECT = "OBJECT"
    ANY = "ANY"


# =============================================================================
# Supporting DTOs
# =============================================================================


@dataclass(frozen=True)
class TransformationParam:
    name: str
    type: str
    required: bool = False
    description: str = ""


@dataclass(frozen=True)
class TransformationDefinition:
    """Declared metadata for one registered transformation."""

    name: str
    display_name: str
    description: str
    category: TransformationCategory
    input_type: FieldDataType = FieldDataType.ANY
    output_type: FieldDataType = FieldDataType.ANY
    params: tuple[TransformationParam, ...] = ()

    @property
    def required_params(self) -> tuple[str, ...]:
        return tuple(p.name for p in self.params if p.required)


@dataclass(frozen=True)
class TransformationStep:
    """One step of an ad hoc ``chain()`` pipeline."""

    name: str
    params: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TransformationTestResult:
    success: bool
    input: Any
    output: Any = None
    error: str | None = None


@dataclass(frozen=True)
class TransformationTestCase:
    input: Any
    expected_output: Any
    params: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CaseOutcome:
    passed: bool
    input: Any
    expected: Any
    actual: Any


# Convenience constructor used by the built-in modules.
def definition(
    name: str,
    display_name: str,
    description: str,
    category: TransformationCategory,
    input_type: FieldDataType = FieldDataType.ANY,
    output_type: FieldDataType = FieldDataType.ANY,
    params: Sequence[TransformationParam] = (),
) -> TransformationDefinition:
    return TransformationDefinition(
        name=name,
        display_name=display_name,
        description=description,
        category=category,
        input_type=input_type,
        output_type=output_type,
        params=tuple(params),
    )


# =============================================================================
# TransformationRegistry
# =============================================================================


class TransformationRegistry:
    """Registry mapping transformation names to pure functions.

    Contract:
        - ``register()`` adds or overwrites an entry.
        - ``transform()`` raises UnknownTransformationError for unknown names.
        - ``chain()`` feeds each output into the next step and stops at the
          first raised error.

    Non-goals:
        - Does NOT wrap function errors -- the mapping engine decides how a
          failure is reported per field.
        - Does NOT validate params -- rule-set validation checks required
          params before a batch runs.
    """

    def __init__(self) -> None:
        self._functions: dict[str, TransformationFn] = {}
        self._definitions: dict[str, TransformationDefinition] = {}

    def register(
        self,
        name: str,
        fn: TransformationFn,
        definition: TransformationDefinition | None = None,
    ) -> None:
        """Register (or replace) a transformation function."""
        if not name:
            raise ValueError("Transformation name must be non-empty")
        self._functions[name] = fn
        if definition is None:
            definition = TransformationDefinition(
                name=name,
                display_name=name,
                description="",
                category=TransformationCategory.COMPOSITE,
            )
        elif definition.name != name:
            definition = TransformationDefinition(
                name=name,
                display_name=definition.display_name,
                description=definition.description,
                category=definition.category,
                input_type=definition.input_type,
                output_type=definition.output_type,
                params=definition.params,
            )
        self._definitions[name] = definition

    def register_all(
        self,
        entries: Iterable[tuple[TransformationDefinition, TransformationFn]],
    ) -> None:
        for defn, fn in entries:
            self.register(defn.name, fn, defn)

    def transform(
        self,
        name: str,
        value: Any,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        """Apply the named transformation to ``value``.

        Raises:
            UnknownTransformationError: If ``name`` is not registered.
        """
        fn = self._functions.get(name)
        if fn is None:
            raise UnknownTransformationError(name, self.names())
        return fn(value, params or {})

    def chain(
        self,
        value: Any,
        steps: Iterable[TransformationStep | Mapping[str, Any]],
    ) -> Any:
        result = value
        for step in steps:
            if isinstance(step, TransformationStep):
                name, params = step.name, step.params
            else:
                name, params = step["name"], step.get("params") or {}
            result = self.transform(name, result, params)
        return result

    def test_transformation(
        self,
        name: str,
        input_value: Any,
        params: Mapping[str, Any] | None = None,
    ) -> TransformationTestResult:
        """Run one transformation and capture the outcome instead of raising."""
        try:
            output = self.transform(name, input_value, params)
        except Exception as exc:
            return TransformationTestResult(
                success=False, input=input_value, error=str(exc),
            )
        return TransformationTestResult(success=True, input=input_value, output=output)

    def validate_test_cases(
        self,
        name: str,
        cases: Iterable[TransformationTestCase],
    ) -> tuple[CaseOutcome, ...]:
        outcomes = []
        for case in cases:
            result = self.test_transformation(name, case.input, case.params)
            outcomes.append(
                CaseOutcome(
                    passed=result.success and result.output == case.expected_output,
                    input=case.input,
                    expected=case.expected_output,
                    actual=result.output if result.success else result.error,
                )
            )
        return tuple(outcomes)

    # -- introspection -------------------------------------------------------

    def get(self, name: str) -> TransformationDefinition | None:
        return self._definitions.get(name)

    def get_function(self, name: str) -> TransformationFn | None:
        return self._functions.get(name)

    def has(self, name: str) -> bool:
        return name in self._functions

    def list(self) -> tuple[TransformationDefinition, ...]:
        """All definitions, sorted by name."""
        return tuple(self._definitions[n] for n in sorted(self._definitions))

    def names(self) -> tuple[str, ...]:
        return tuple(sorted(self._functions))

    def by_category(
        self, category: TransformationCategory,
    ) -> tuple[TransformationDefinition, ...]:
        return tuple(d for d in self.list() if d.category == category)

    def __len__(self) -> int:
        return len(self._functions)

    def __contains__(self, name: object) -> bool:
        return name in self._functions


def default_registry() -> TransformationRegistry:
    """Create a fresh registry holding every built-in transformation."""
    from payroll_mapping.transformations import dates, lookup, numeric, strings, validators

    registry = TransformationRegistry()
    for module in (strings, numeric, dates, lookup, validators):
        registry.register_all(module.TRANSFORMATIONS)
    return registry
