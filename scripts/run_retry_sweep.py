#!/usr/bin/env python3
"""
Run the error-queue retry sweep once, or keep sweeping on an interval.

Usage:
    python3 scripts/run_retry_sweep.py [--config settings.yaml] [--limit N] [--loop]

The database URL comes from the settings file or PAYROLL_DATABASE_URL.
With --loop the sweep scheduler runs until interrupted (Ctrl-C).
"""

from __future__ import annotations

import argparse
import json
import sys
import time
from pathlib import Path

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from payroll_config import load_settings
from payroll_kernel.db.engine import reset_engine
from payroll_services import build_runtime


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Process due error-queue items through their retry handlers.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", type=Path, default=None, help="Settings YAML file.")
    parser.add_argument(
        "--limit", type=int, default=None,
        help="Max items per sweep (default: retry.sweep_limit).",
    )
    parser.add_argument(
        "--loop", action="store_true",
        help="Keep sweeping every retry.sweep_interval_seconds until interrupted.",
    )
    parser.add_argument(
        "--create-schema", action="store_true",
        help="Create tables first (local SQLite databases).",
    )
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    settings = load_settings(args.config)
    runtime = build_runtime(settings, create_schema=args.create_schema)

    try:
        if not args.loop:
            limit = args.limit or settings.retry.sweep_limit
            result = runtime.processor.process_retry_queue(limit)
            print(json.dumps(result.to_dict()))
            return 0

        runtime.scheduler.start()
        print(
            f"Sweeping every {settings.retry.sweep_interval_seconds}s "
            f"(limit {settings.retry.sweep_limit}); Ctrl-C to stop."
        )
        try:
            while runtime.scheduler.is_running:
                time.sleep(1)
        except KeyboardInterrupt:
            pass
        runtime.scheduler.stop()
        return 0
    finally:
        reset_engine()


if __name__ == "__main__":
    sys.exit(main())
