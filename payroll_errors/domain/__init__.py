"""payroll_errors.domain -- Pure error-queue types and backoff math (ZERO I/O)."""
