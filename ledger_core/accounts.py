"""
Account Store Module

Holds account records keyed by account number and exposes the per-account
locks and the precondition-gated balance update (apply_delta) that the
ledger engine builds on. A balance is never negative and is only changed
through apply_delta.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, replace
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional, Union
from enum import Enum
import threading
import uuid

from .storage import StorageInterface, StorageRecord, DuplicateRecordError
from .errors import (
    AccountNotFoundError, BalanceLimitError, FatalError, LockTimeoutError, PreconditionFailed
)
from .money import ZERO, exact_add


Precondition = Callable[[Decimal], bool]


class AccountType(Enum):
    """Account products offered by the ledger"""
    SAVINGS = "savings"
    CURRENT = "current"


def parse_account_type(value: Union[AccountType, str, None]) -> Optional[AccountType]:
    """Resolve an AccountType from an enum member or a case-insensitive name"""
    if isinstance(value, AccountType):
        return value
    if isinstance(value, str):
        try:
            return AccountType(value.strip().lower())
        except ValueError:
            return None
    return None


def always(balance: Decimal) -> bool:
    """Precondition that accepts any balance (deposits, credits)"""
    return True


def covers(amount: Decimal) -> Precondition:
    """Precondition that the current balance can fund a debit of amount"""
    def check(balance: Decimal) -> bool:
        return balance - amount >= 0
    return check


@dataclass(frozen=True)
class Account(StorageRecord):
    """
    Customer account. customer_id is a lookup key into the directory,
    never an embedded customer.
    """
    account_number: str
    customer_id: str
    account_type: AccountType
    balance: Decimal = ZERO
    updated_at: Optional[datetime] = None
    
    @classmethod
    def from_dict(cls, data: Dict) -> 'Account':
        updated_at = data.get('updated_at')
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            account_number=data['account_number'],
            customer_id=data['customer_id'],
            account_type=AccountType(data['account_type']),
            balance=Decimal(data['balance']),
            updated_at=datetime.fromisoformat(updated_at) if updated_at else None
        )


class AccountStore:
    """
    Account records plus one exclusive lock per account.
    
    Locks are re-entrant, so apply_delta can run on its own (single-account
    operations) or inside locked() while the engine already holds the
    account (transfers).
    """
    
    def __init__(self, storage: StorageInterface, lock_timeout: Optional[float] = None):
        self.storage = storage
        self.table_name = "accounts"
        self.lock_timeout = lock_timeout
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()
    
    def create(self, account_number: str, customer_id: str, account_type: AccountType) -> Account:
        """
        Create a zero-balance account.
        
        Raises:
            FatalError: If the account number is already taken
        """
        now = datetime.now(timezone.utc)
        account = Account(
            id=str(uuid.uuid4()),
            created_at=now,
            account_number=account_number,
            customer_id=customer_id,
            account_type=account_type,
            balance=ZERO,
            updated_at=now
        )
        
        with self._registry_lock:
            try:
                self.storage.insert(self.table_name, account_number, account.to_dict())
            except DuplicateRecordError as e:
                raise FatalError(f"Account number collision: {account_number}") from e
            self._locks[account_number] = threading.RLock()
        
        return account
    
    def exists(self, account_number: str) -> bool:
        return self._lock_for(account_number) is not None
    
    def get(self, account_number: str) -> Optional[Account]:
        """Snapshot of an account, never taken mid-mutation; waits like any read"""
        lock = self._lock_for(account_number)
        if lock is None:
            return None
        with lock:
            return self._load(account_number)
    
    def apply_delta(self, account_number: str, delta: Decimal,
                    precondition: Precondition = always) -> Account:
        """
        Atomically check and update a balance.
        
        Reads the current balance, evaluates precondition(balance) and, if
        it holds, stores balance + delta. Nothing is written when the
        precondition fails.
        
        Returns:
            The account after the update
            
        Raises:
            AccountNotFoundError: If the account does not exist
            PreconditionFailed: If the guard rejects the current balance or
                the update would make the balance negative
            BalanceLimitError: If the new balance cannot be represented
                without rounding
        """
        lock = self._lock_for(account_number)
        if lock is None:
            raise AccountNotFoundError(account_number)
        
        with lock:
            account = self._load(account_number)
            try:
                new_balance = exact_add(account.balance, delta)
            except ArithmeticError as e:
                raise BalanceLimitError(account_number, account.balance, delta) from e
            
            if not precondition(account.balance) or new_balance < 0:
                raise PreconditionFailed(account_number, account.balance, delta)
            
            account = replace(account, balance=new_balance, updated_at=datetime.now(timezone.utc))
            self.storage.save(self.table_name, account_number, account.to_dict())
            return account
    
    @contextmanager
    def locked(self, *account_numbers: str, for_read: bool = False) -> Iterator[None]:
        """
        Hold the exclusive locks of several accounts.
        
        Locks are taken in ascending account-number order, which every
        caller shares, so two operations over the same accounts can never
        wait on each other in a cycle. With a lock timeout configured,
        failing to get any lock releases those already held and raises
        LockTimeoutError before the caller can mutate anything.
        
        Reads (for_read=True, and get) always wait for their locks without
        a timeout. Lock holders never block on anything but other account
        locks, so a read only waits for in-flight operations to finish.
        """
        ordered = sorted(set(account_numbers))
        locks = []
        for number in ordered:
            lock = self._lock_for(number)
            if lock is None:
                raise AccountNotFoundError(number)
            locks.append((number, lock))
        
        timeout = -1 if for_read or self.lock_timeout is None else self.lock_timeout
        acquired = []
        try:
            for number, lock in locks:
                if not lock.acquire(timeout=timeout):
                    raise LockTimeoutError(
                        f"Timed out after {self.lock_timeout}s waiting for account {number}"
                    )
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
    
    def account_numbers(self) -> List[str]:
        with self._registry_lock:
            return sorted(self._locks)
    
    def snapshot(self) -> List[Account]:
        """All accounts ordered by number, read while every account is locked"""
        numbers = self.account_numbers()
        with self.locked(*numbers, for_read=True):
            return [self._load(number) for number in numbers]
    
    def find_by_customer(self, customer_id: str) -> List[Account]:
        records = self.storage.find(self.table_name, {"customer_id": customer_id})
        numbers = sorted(data['account_number'] for data in records)
        with self.locked(*numbers, for_read=True):
            return [self._load(number) for number in numbers]
    
    def _lock_for(self, account_number: str) -> Optional[threading.RLock]:
        with self._registry_lock:
            return self._locks.get(account_number)
    
    def _load(self, account_number: str) -> Account:
        data = self.storage.load(self.table_name, account_number)
        if data is None:
            raise AccountNotFoundError(account_number)
        return Account.from_dict(data)
