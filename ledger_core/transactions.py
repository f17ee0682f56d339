"""
Transaction Log Module

Append-only log of immutable transaction records. The log owns id and
timestamp assignment: ids are unique, timestamps never go backwards, and a
sequence number records insertion order for stable tie-breaks.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence
from enum import Enum
import threading
import uuid

from .storage import StorageInterface, StorageRecord, DuplicateRecordError
from .errors import FatalError


class TransactionType(Enum):
    """Types of balance-affecting events"""
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    TRANSFER_OUT = "transfer_out"
    TRANSFER_IN = "transfer_in"


@dataclass(frozen=True)
class PendingTransaction:
    """A record waiting for the log to assign its id and timestamp"""
    transaction_type: TransactionType
    account_number: str
    amount: Decimal
    note: Optional[str] = None
    counterparty_account: Optional[str] = None


@dataclass(frozen=True)
class Transaction(StorageRecord):
    """Immutable transaction record; created_at is the log timestamp"""
    transaction_type: TransactionType
    account_number: str
    amount: Decimal
    sequence: int
    note: Optional[str] = None
    counterparty_account: Optional[str] = None
    
    @property
    def timestamp(self) -> datetime:
        return self.created_at
    
    @classmethod
    def from_dict(cls, data: Dict) -> 'Transaction':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            transaction_type=TransactionType(data['transaction_type']),
            account_number=data['account_number'],
            amount=Decimal(data['amount']),
            sequence=data['sequence'],
            note=data.get('note'),
            counterparty_account=data.get('counterparty_account')
        )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TransactionLog:
    """
    Append-only transaction log.
    
    There is no update or delete. Appends are serialised by the log's own
    lock; the clock is clamped so a timestamp is never earlier than the
    previous append, even if the wall clock steps back.
    """
    
    def __init__(
        self,
        storage: StorageInterface,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
        clock: Callable[[], datetime] = _utc_now
    ):
        self.storage = storage
        self.table_name = "transactions"
        self._id_factory = id_factory
        self._clock = clock
        self._lock = threading.Lock()
        self._last_timestamp: Optional[datetime] = None
        self._next_sequence = 1
        self._by_account: Dict[str, List[str]] = {}
    
    def append(self, pending: PendingTransaction) -> Transaction:
        """Append one record and return it with id and timestamp assigned"""
        return self.append_many([pending])[0]
    
    def append_many(self, pending: Sequence[PendingTransaction]) -> List[Transaction]:
        """
        Append several records as a single unit.
        
        All records share one timestamp and get consecutive sequence
        numbers. Either every record is stored or none is.
        
        Raises:
            FatalError: If an assigned id collides with an existing record
        """
        with self._lock:
            timestamp = self._clock()
            if self._last_timestamp is not None and timestamp < self._last_timestamp:
                timestamp = self._last_timestamp
            
            records = [
                Transaction(
                    id=self._id_factory(),
                    created_at=timestamp,
                    transaction_type=item.transaction_type,
                    account_number=item.account_number,
                    amount=item.amount,
                    sequence=self._next_sequence + offset,
                    note=item.note,
                    counterparty_account=item.counterparty_account
                )
                for offset, item in enumerate(pending)
            ]
            
            try:
                self.storage.insert_many(
                    self.table_name, [(record.id, record.to_dict()) for record in records]
                )
            except DuplicateRecordError as e:
                raise FatalError(f"Duplicate transaction id: {e.record_id}") from e
            
            self._last_timestamp = timestamp
            self._next_sequence += len(records)
            for record in records:
                self._by_account.setdefault(record.account_number, []).append(record.id)
            return records
    
    def get(self, transaction_id: str) -> Optional[Transaction]:
        data = self.storage.load(self.table_name, transaction_id)
        return Transaction.from_dict(data) if data else None
    
    def find_by_account(self, account_number: str) -> List[Transaction]:
        """
        History of one account, oldest first; equal timestamps keep insertion order.
        
        Reads through the per-account id index, so the cost depends on the
        account's own history rather than the size of the whole log.
        """
        with self._lock:
            ids = list(self._by_account.get(account_number, ()))
        return [self.get(transaction_id) for transaction_id in ids]
    
    def all(self) -> List[Transaction]:
        transactions = [Transaction.from_dict(data) for data in self.storage.load_all(self.table_name)]
        return sorted(transactions, key=lambda t: (t.created_at, t.sequence))
    
    def count(self) -> int:
        return self.storage.count(self.table_name)
