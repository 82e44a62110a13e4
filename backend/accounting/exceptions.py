# accounting/exceptions.py
"""
Ledger error taxonomy.

Every error raised by the journal store, the student sub-ledger, the
posting commands and reconciliation derives from LedgerError and carries:
- code: a stable machine-readable identifier
- details: additional context for the caller / logs

Callers are expected to branch on the class:
- ValidationError / UnknownAccountError: fix the input and try again
- UnbalancedEntryError: programming defect in the posting code, never retried
- PreconditionFailedError / GracePeriodExpiredError: business rejection (4xx)
- TransientConflictError: lock conflict that survived all retry attempts
- IntegrityDriftError: derived balances disagree with the journal store
"""

from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base class for all ledger errors."""

    code = "ledger_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a dictionary for API payloads and logging."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(LedgerError):
    """Missing/invalid field or reference to a non-existent record."""

    code = "validation_error"


class UnknownAccountError(ValidationError):
    """A journal line references an absent or inactive account."""

    code = "unknown_account"


class UnbalancedEntryError(LedgerError):
    """Debits and credits differ for at least one currency of an entry."""

    code = "unbalanced_entry"


class PreconditionFailedError(LedgerError):
    """A business rule rejects the operation (capacity, duplicates, ...)."""

    code = "precondition_failed"


class GracePeriodExpiredError(PreconditionFailedError):
    """Reversal or deletion requested after the grace period."""

    code = "grace_period_expired"


class TransientConflictError(LedgerError):
    """
    Deadlock or lock wait timeout that persisted through every retry.

    Attributes:
        attempts: Number of attempts made
        last_error: The database error from the final attempt
    """

    code = "transient_conflict"

    def __init__(
        self,
        message: str,
        attempts: int = 0,
        last_error: Optional[BaseException] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.attempts = attempts
        self.last_error = last_error
        details = dict(details or {})
        details.setdefault("attempts", attempts)
        if last_error is not None:
            details.setdefault("last_error", str(last_error))
        super().__init__(message, details)


class IntegrityDriftError(LedgerError):
    """
    Materialized balances disagree with a recompute from the journal store.

    Not corrected automatically; run ``manage.py recompute_balances``.
    """

    code = "integrity_drift"
