"""
payroll_kernel -- shared infrastructure for the payroll sync packages.

Structured logging, the typed exception hierarchy, SQLAlchemy base and
engine management, and the injectable clock.  Has no dependency on
payroll_mapping, payroll_errors or payroll_services.
"""
