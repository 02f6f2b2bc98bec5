"""
payroll_services -- Composition root.

    runtime = build_runtime(load_settings("settings.yaml"))
    runtime.scheduler.start()

Dependency direction:
    payroll_services/ -> payroll_mapping/, payroll_errors/, payroll_config/
    payroll_mapping/, payroll_errors/ -> payroll_services/ (FORBIDDEN)
"""

from payroll_services.runtime import PayrollRuntime, build_runtime

__all__ = ["PayrollRuntime", "build_runtime"]
