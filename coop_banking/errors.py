"""
Error kinds surfaced by the loan and reporting core.

Each error carries a stable ``kind`` string that callers (and the HTTP layer)
can switch on, plus a human-readable message.
"""


class CoopBankingError(ValueError):
    """Base class for all domain errors"""

    kind = "Error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class NotFoundError(CoopBankingError):
    """Unknown user, loan or installment id"""

    kind = "NotFound"


class InvalidStateError(CoopBankingError):
    """Operation attempted on a loan not in the required status"""

    kind = "InvalidState"


class MissingArgumentError(CoopBankingError):
    kind = "MissingArgument"


class OverpaymentError(CoopBankingError):
    """Payment would exceed the installment's remaining amount"""

    kind = "OverpaymentError"


class ValidationError(CoopBankingError):
    kind = "ValidationError"


class ConcurrentModificationError(CoopBankingError):
    """A conditional write lost the race against another writer"""

    kind = "Conflict"
