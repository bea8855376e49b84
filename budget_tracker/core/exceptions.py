from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from budget_tracker.services.violations import ViolationReport


class BudgetTrackerError(Exception):
    """Base error for domain/application exceptions."""


class ValidationError(BudgetTrackerError):
    """Rejected input: unknown or inactive office, malformed or negative amounts."""

    def __init__(self, errors: dict[str, str] | str):
        if isinstance(errors, str):
            errors = {"__all__": errors}
        self.errors = errors
        super().__init__("; ".join(f"{k}: {v}" for k, v in errors.items()))


class ViolationWarning(BudgetTrackerError):
    """Budget exceedance detected; the mutation was deferred, not rejected.

    Resubmitting with ``confirm_violations=True`` commits it anyway.
    """

    def __init__(self, report: "ViolationReport"):
        self.report = report
        codes = ", ".join(v.code for v in report.violations)
        super().__init__(f"Budget violations detected: {codes}")


class AuthorizationError(BudgetTrackerError):
    """Raised when the actor lacks permission for the operation."""


class NotFoundError(BudgetTrackerError):
    """Raised when the target id does not resolve to a live record."""

    def __init__(self, entity: str, entity_id: int | str | None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class ImmutableRecordError(BudgetTrackerError):
    """Raised when code attempts to modify or delete an activity log row."""

    def __init__(self, table: str, operation: str):
        self.table = table
        self.operation = operation
        super().__init__(f"{operation} on {table} is not allowed: activity logs are append-only")
