"""Exception types for the checkout core.

Authority denials (invalid code, trial already used, payment not found) are
returned as result objects. Exceptions are reserved for input that must be
rejected before any external call, for ledger transport failures, and for
operations invoked in the wrong flow state.
"""

from __future__ import annotations


class CheckoutError(Exception):
    """Base class for all checkout errors."""


class ValidationError(CheckoutError):
    """Malformed input or invalid plan combination. Fully recoverable."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class DiscountConflictError(ValidationError):
    """A code discount was combined with a discounted commitment term."""


class LedgerError(CheckoutError):
    """A ledger query failed or timed out."""


class FlowStateError(CheckoutError):
    """An operation was invoked in a state that does not allow it."""
