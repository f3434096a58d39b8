"""
Ledger Error Module

One error type with a kind discriminant. The API boundary maps each kind to
an HTTP status code through a single table.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """Classes of failure surfaced by the ledger core"""
    NOT_FOUND = "not_found"              # Referenced account does not exist
    NOT_PERMITTED = "not_permitted"      # Type restriction or insufficient funds
    MALFORMED_INPUT = "malformed_input"  # Unparseable tag, amount or body
    CONFLICT = "conflict"                # Transient lock conflict, caller may retry
    UNCLASSIFIED = "unclassified"        # Anything else, including store faults


class LedgerError(Exception):
    """Base error raised by the engine, query service and stores"""

    kind: ErrorKind = ErrorKind.UNCLASSIFIED

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind

    @property
    def is_transient(self) -> bool:
        """Whether the caller may retry the same request"""
        return self.kind == ErrorKind.CONFLICT

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message}


class AccountNotFoundError(LedgerError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, iban: Optional[str]):
        super().__init__(f"Bank account with iban {iban} not found.")
        self.iban = iban


class OperationNotPermittedError(LedgerError):
    kind = ErrorKind.NOT_PERMITTED

    def __init__(self, message: str = "Operation not permitted."):
        super().__init__(message)


class InsufficientFundsError(OperationNotPermittedError):
    """Sufficiency violation; same kind as any other refused operation"""

    def __init__(self):
        super().__init__("Operation failed. Insufficient funds.")


class MalformedInputError(LedgerError):
    kind = ErrorKind.MALFORMED_INPUT


class ConcurrencyConflictError(LedgerError):
    kind = ErrorKind.CONFLICT
