"""
Utility helpers used by the migration tool.

This subpackage exposes structured error reporting, field value mappers,
read-only lookup maps and pre-flight checks for both CMS endpoints.
"""

from .errors import ERRORS, MigrationTimeoutError, PreFlightCheckError, report_error, report_ok

__all__ = ["ERRORS", "MigrationTimeoutError", "PreFlightCheckError", "report_error", "report_ok"]
