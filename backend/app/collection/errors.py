"""Domain errors for field collection and settlement.

Two families, mapped to HTTP by the application exception handlers:

  BusinessLogicError (422)       the request itself is wrong; nothing changed
  IntegrityViolationError (409)  ledger / deposit / invoice contract broken;
                                 surfaced to an operator, never auto-corrected

TransientError (503, retryable) is re-exported for callers that wrap I/O.
"""

from app.middleware.exceptions import (
    BusinessLogicError,
    IntegrityViolationError,
    TransientError,
)

__all__ = [
    "EmptyDepositError", "MissingProofError", "InvalidAttachmentError",
    "IncompleteVisitError", "LedgerConflictError", "InvalidPaymentError",
    "OverpaymentError", "AlreadyConfirmedError", "DoubleDepositError",
    "LedgerMismatchError", "IllegalTransitionError", "FieldLockedError",
    "SubmissionInProgressError", "DuplicateSubmissionError",
    "TransientError",
]


# ── Validation ───────────────────────────────────────────────

class EmptyDepositError(BusinessLogicError):
    def __init__(self, message: str = "Nothing collected, nothing to deposit"):
        super().__init__(message, error_code="EMPTY_DEPOSIT")


class MissingProofError(BusinessLogicError):
    def __init__(self, message: str = "Deposit proof attachment is required"):
        super().__init__(message, error_code="MISSING_PROOF")


class InvalidAttachmentError(BusinessLogicError):
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, error_code="INVALID_ATTACHMENT", details=details)


class IncompleteVisitError(BusinessLogicError):
    def __init__(self, message: str):
        super().__init__(message, error_code="INCOMPLETE_VISIT")


class LedgerConflictError(BusinessLogicError):
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, error_code="LEDGER_CONFLICT", details=details)


class InvalidPaymentError(BusinessLogicError):
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, error_code="INVALID_PAYMENT", details=details)


# ── Integrity ────────────────────────────────────────────────

class OverpaymentError(IntegrityViolationError):
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, error_code="OVERPAYMENT", details=details)


class AlreadyConfirmedError(IntegrityViolationError):
    def __init__(self, batch_id: str):
        super().__init__(
            f"Deposit {batch_id} is already confirmed",
            error_code="ALREADY_CONFIRMED",
            details={"deposit_batch_id": batch_id},
        )


class DoubleDepositError(IntegrityViolationError):
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, error_code="DOUBLE_DEPOSIT", details=details)


class LedgerMismatchError(IntegrityViolationError):
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, error_code="LEDGER_MISMATCH", details=details)


class IllegalTransitionError(IntegrityViolationError):
    def __init__(self, current: str, target: str, actor: str):
        super().__init__(
            f"Cannot move assignment from {current} to {target} as {actor}",
            error_code="ILLEGAL_TRANSITION",
            details={"from": current, "to": target, "actor": actor},
        )


class FieldLockedError(IntegrityViolationError):
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, error_code="FIELD_LOCKED", details=details)


class SubmissionInProgressError(IntegrityViolationError):
    def __init__(self, message: str = "A deposit submission is already in progress"):
        super().__init__(message, error_code="SUBMISSION_IN_PROGRESS")


class DuplicateSubmissionError(IntegrityViolationError):
    def __init__(self, message: str = "This deposit has already been submitted"):
        super().__init__(message, error_code="DUPLICATE_SUBMISSION")
