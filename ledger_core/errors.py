"""
Error Taxonomy Module

Typed errors raised inside the ledger and the OperationResult value that
caller-facing operations return for expected rejections.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar


T = TypeVar("T")


class ErrorKind(Enum):
    """Categories of ledger failures"""
    VALIDATION = "validation"                  # Bad input, rejected before any mutation
    NOT_FOUND = "not_found"                    # Unknown account or customer
    INSUFFICIENT_FUNDS = "insufficient_funds"  # Debit would make a balance negative
    TIMEOUT = "timeout"                        # Account locks not obtained in time
    FATAL = "fatal"                            # Invariant violation or resource exhaustion


class LedgerError(Exception):
    """Base class for all ledger errors"""
    
    kind: ErrorKind = ErrorKind.FATAL
    
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
    
    @property
    def recoverable(self) -> bool:
        return self.kind is not ErrorKind.FATAL


class ValidationError(LedgerError):
    kind = ErrorKind.VALIDATION


class NotFoundError(LedgerError):
    kind = ErrorKind.NOT_FOUND


class AccountNotFoundError(NotFoundError):
    
    def __init__(self, account_number: str):
        super().__init__(f"Account not found: {account_number}")
        self.account_number = account_number


class CustomerNotFoundError(NotFoundError):
    
    def __init__(self, customer_id: str):
        super().__init__(f"Customer not found: {customer_id}")
        self.customer_id = customer_id


class InsufficientFundsError(LedgerError):
    kind = ErrorKind.INSUFFICIENT_FUNDS


class LockTimeoutError(LedgerError):
    kind = ErrorKind.TIMEOUT


class BalanceLimitError(ValidationError):
    """A balance update whose result cannot be held exactly"""
    
    def __init__(self, account_number: str, balance, delta):
        super().__init__(
            f"Balance limit exceeded for {account_number}: balance={balance}, delta={delta}"
        )
        self.account_number = account_number


class FatalError(LedgerError):
    """Non-recoverable failure; any partial mutation has been rolled back"""
    kind = ErrorKind.FATAL


class PreconditionFailed(LedgerError):
    """Raised by AccountStore.apply_delta when its guard rejects the balance"""
    kind = ErrorKind.INSUFFICIENT_FUNDS
    
    def __init__(self, account_number: str, balance, delta):
        super().__init__(
            f"Precondition failed for {account_number}: balance={balance}, delta={delta}"
        )
        self.account_number = account_number
        self.balance = balance
        self.delta = delta


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """
    Outcome of a caller-facing ledger operation.
    
    Exactly one of value/error is meaningful: ok results carry the value,
    failed results carry the LedgerError that caused the rejection.
    """
    value: Optional[T] = None
    error: Optional[LedgerError] = None
    
    @classmethod
    def success(cls, value: T) -> 'OperationResult[T]':
        return cls(value=value)
    
    @classmethod
    def failure(cls, error: LedgerError) -> 'OperationResult[T]':
        return cls(error=error)
    
    @property
    def ok(self) -> bool:
        return self.error is None
    
    @property
    def kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error else None
    
    @property
    def message(self) -> Optional[str]:
        return self.error.message if self.error else None
    
    def unwrap(self) -> T:
        """Return the value, raising the carried error for failed results"""
        if self.error is not None:
            raise self.error
        return self.value
