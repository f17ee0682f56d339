"""
Storage Backend Module

Provides the abstract storage interface and the in-memory implementation
the ledger runs on. All monetary values are stored as Decimal strings.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Tuple
from decimal import Decimal
from datetime import datetime
from enum import Enum
import copy
import json
import threading
from dataclasses import dataclass, asdict


class DuplicateRecordError(Exception):
    """Raised when inserting a record whose id already exists in the table"""
    
    def __init__(self, table: str, record_id: str):
        super().__init__(f"Duplicate record id {record_id!r} in table {table!r}")
        self.table = table
        self.record_id = record_id


def _to_storable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    return value


@dataclass(frozen=True)
class StorageRecord:
    """Base class for all stored records; records are immutable snapshots"""
    id: str
    created_at: datetime
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {key: _to_storable(value) for key, value in asdict(self).items()}
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Create instance from dictionary"""
        data = dict(data)
        if isinstance(data.get('created_at'), str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        return cls(**data)


class StorageInterface(ABC):
    """Abstract interface for storage backends"""
    
    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save (insert or replace) a record"""
        pass
    
    @abstractmethod
    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert a new record, raising DuplicateRecordError if the id exists"""
        pass
    
    @abstractmethod
    def insert_many(self, table: str, records: Iterable[Tuple[str, Dict[str, Any]]]) -> None:
        """Insert several records atomically: either all are stored or none"""
        pass
    
    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass
    
    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table in insertion order"""
        pass
    
    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass
    
    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass
    
    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters, in insertion order"""
        pass
    
    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass
    
    @abstractmethod
    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        pass


class InMemoryStorage(StorageInterface):
    """Process-resident storage; dict insertion order is the record order"""
    
    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
    
    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        return self._data.setdefault(table, {})
    
    @staticmethod
    def _copy(data: Dict[str, Any]) -> Dict[str, Any]:
        # Records only hold JSON-compatible values after to_dict()
        return json.loads(json.dumps(data, default=str))
    
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._table(table)[record_id] = self._copy(data)
    
    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        self.insert_many(table, [(record_id, data)])
    
    def insert_many(self, table: str, records: Iterable[Tuple[str, Dict[str, Any]]]) -> None:
        # Serialise everything first so a failure cannot leave a partial batch
        prepared = [(record_id, self._copy(data)) for record_id, data in records]
        
        with self._lock:
            rows = self._table(table)
            seen = set()
            for record_id, _ in prepared:
                if record_id in rows or record_id in seen:
                    raise DuplicateRecordError(table, record_id)
                seen.add(record_id)
            
            for record_id, data in prepared:
                rows[record_id] = data
    
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._table(table).get(record_id)
            return copy.deepcopy(record) if record is not None else None
    
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(list(self._table(table).values()))
    
    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            return self._table(table).pop(record_id, None) is not None
    
    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            return record_id in self._table(table)
    
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            results = []
            for record in self._table(table).values():
                if all(key in record and record[key] == value for key, value in filters.items()):
                    results.append(copy.deepcopy(record))
            return results
    
    def count(self, table: str) -> int:
        with self._lock:
            return len(self._table(table))
    
    def clear_table(self, table: str) -> None:
        with self._lock:
            self._data[table] = {}
