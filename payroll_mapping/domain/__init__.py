"""payroll_mapping.domain -- Pure mapping types (ZERO I/O)."""
