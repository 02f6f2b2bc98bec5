#!/usr/bin/env python3
"""
Dry-run a mapping rule set against a JSON file of source records.

Nothing is written to a database; the rule set is validated, executed and
(optionally) followed by a business-rule validation pass.  The result is
printed as JSON.

Usage:
    python3 scripts/dry_run_mapping.py --rule-set rules.yaml --records data.json [options]

Examples:
    # Map records with an inline-only rule set
    python3 scripts/dry_run_mapping.py --rule-set config/contribution_rules.yaml \
        --records batch.json

    # Supply named lookup tables and validation rules
    python3 scripts/dry_run_mapping.py --rule-set rules.yaml --records batch.json \
        --lookup-tables tables.json --validation-rules config/validation_rules.yaml

Exit status is 0 when every record mapped without errors, 1 when some
records failed, and 2 when the rule set itself is invalid.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from payroll_kernel.exceptions import ConfigurationError, RuleSetValidationError
from payroll_kernel.logging_config import configure_logging
from payroll_mapping.domain.types import MappingContext, WarningPolicy
from payroll_mapping.engine import MappingExecutionEngine
from payroll_mapping.loader import load_rule_set, load_validation_rules
from payroll_mapping.transformations import default_registry
from payroll_mapping.validation import ValidationEngine


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Validate and execute a mapping rule set without persisting anything.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--rule-set", required=True, type=Path, help="Rule set YAML file.")
    parser.add_argument(
        "--records", required=True, type=Path,
        help="JSON file holding a list of source records.",
    )
    parser.add_argument(
        "--lookup-tables", type=Path, default=None,
        help="JSON file mapping table names to tables.",
    )
    parser.add_argument(
        "--validation-rules", type=Path, default=None,
        help="Validation rules YAML file (runs after mapping).",
    )
    parser.add_argument(
        "--warnings-fail-record", action="store_true",
        help="Count records with warnings as failed.",
    )
    parser.add_argument("--log-level", default="WARNING", help="Log level (default: WARNING).")
    return parser.parse_args()


def _load_json(path: Path):
    with open(path) as f:
        return json.load(f)


def main() -> int:
    args = _parse_args()
    configure_logging(level=args.log_level.upper())

    try:
        rule_set = load_rule_set(args.rule_set)
        rules = load_validation_rules(args.validation_rules) if args.validation_rules else ()
    except ConfigurationError as exc:
        print(f"CONFIGURATION ERROR: {exc}", file=sys.stderr)
        return 2

    records = _load_json(args.records)
    if not isinstance(records, list):
        print("--records must contain a JSON list", file=sys.stderr)
        return 2
    tables = _load_json(args.lookup_tables) if args.lookup_tables else {}

    policy = (
        WarningPolicy.WARNINGS_FAIL_RECORD
        if args.warnings_fail_record
        else WarningPolicy.IGNORE_WARNINGS
    )
    engine = MappingExecutionEngine(default_registry(), policy)

    try:
        result = engine.execute(rule_set, records, MappingContext(lookup_tables=tables))
    except RuleSetValidationError as exc:
        print("RULE SET INVALID:", file=sys.stderr)
        for err in exc.errors:
            print(f"  ERROR: {err}", file=sys.stderr)
        return 2

    output = {"mapping": result.to_dict()}
    if rules:
        validation = ValidationEngine(rules).validate(result.data, rule_set.mapping_type)
        output["validation"] = [v.to_dict() for v in validation]

    print(json.dumps(output, indent=2, default=str))
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
