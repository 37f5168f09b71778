"""
Exception types raised by the recurring-transaction services.

Routes translate these into HTTP errors (see ledgerly/routes/errors.py);
in-process callers can catch them individually.
"""

from typing import Optional


class RecurringTransactionError(Exception):
    """Base exception for recurring-transaction operations."""
    pass


class UnauthenticatedError(RecurringTransactionError):
    """No authenticated user; raised before any query runs."""
    pass


class NotFoundError(RecurringTransactionError):
    """Transaction or rule does not exist or is not owned by the caller."""
    pass


class InvalidScopeError(RecurringTransactionError):
    """An edit carried fields that do not apply to its scope."""
    pass


class InvalidRuleError(RecurringTransactionError):
    """A rule would violate its schedule invariants (e.g. end before start)."""
    pass


class DateConflictError(RecurringTransactionError):
    """A this-only date change collides with another occurrence of the same rule."""

    def __init__(self, rule_id: str, occurrence_date: str):
        self.rule_id = rule_id
        self.occurrence_date = occurrence_date
        super().__init__(
            f"A recurring transaction already exists for {occurrence_date}. "
            "Please choose a different date."
        )


class StoreError(RecurringTransactionError):
    """The data store rejected or failed an operation."""

    def __init__(self, message: str, code: Optional[str] = None):
        self.code = code
        super().__init__(message)
