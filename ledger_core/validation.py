"""
Input Validation Module

Pure validation predicates. Each returns a ValidationResult instead of
raising, and results are composed with combine(); callers turn a failed
result into a ValidationError at the operation boundary.
"""

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional, Union

from .accounts import AccountType, parse_account_type
from .errors import ValidationError
from .money import AmountLike, to_amount


EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')


@dataclass(frozen=True)
class ValidationResult:
    """Pass/fail outcome of a validation predicate"""
    ok: bool
    reason: Optional[str] = None
    
    def __bool__(self) -> bool:
        return self.ok
    
    def to_error(self) -> ValidationError:
        return ValidationError(self.reason or "Invalid input")


PASSED = ValidationResult(True)


def failed(reason: str) -> ValidationResult:
    return ValidationResult(False, reason)


def validate_name(name: Optional[str]) -> ValidationResult:
    if not isinstance(name, str) or not name.strip():
        return failed("Name is required")
    return PASSED


def validate_email(email: Optional[str]) -> ValidationResult:
    if not isinstance(email, str) or not email.strip():
        return failed("Email is required")
    if not EMAIL_PATTERN.match(email.strip()):
        return failed(f"Invalid email format: {email}")
    return PASSED


def validate_account_type(account_type: Union[AccountType, str, None]) -> ValidationResult:
    if parse_account_type(account_type) is None:
        return failed("Account type must be savings or current")
    return PASSED


def validate_amount(amount: Optional[AmountLike], precision: int = 2,
                    max_amount: Optional[Decimal] = None) -> ValidationResult:
    """Amount must parse, be strictly positive and respect the configured ceiling"""
    if amount is None:
        return failed("Amount is required")
    try:
        value = to_amount(amount, precision)
    except ValueError as e:
        return failed(str(e))
    
    if value <= 0:
        return failed("Amount must be positive")
    if max_amount is not None and value > max_amount:
        return failed(f"Amount {value} exceeds maximum transaction amount {max_amount}")
    return PASSED


def validate_distinct_accounts(from_account: str, to_account: str) -> ValidationResult:
    if from_account == to_account:
        return failed("Cannot transfer to the same account")
    return PASSED


Check = Union[ValidationResult, Callable[[], ValidationResult]]


def combine(*checks: Check) -> ValidationResult:
    """
    Compose validation results; the first failure wins.
    
    Callables are evaluated lazily, so later checks can assume earlier
    ones passed.
    """
    for check in checks:
        result = check() if callable(check) else check
        if not result.ok:
            return result
    return PASSED
