from __future__ import annotations


class PlanBudgetError(Exception):
    """Base class for errors raised by the budgeting core."""


class ValidationError(PlanBudgetError, ValueError):
    """Raised before any ledger write when an input is out of range."""


class NotFoundError(PlanBudgetError, LookupError):
    """Raised when a referenced category, asset or master does not exist."""


class TransientStoreError(PlanBudgetError, RuntimeError):
    """Raised when the ledger or marker store cannot be reached."""


class ConflictError(PlanBudgetError, RuntimeError):
    """Raised when a ledger write violates a uniqueness or reference constraint."""
