"""
Customer Directory Module

Customer records and account-number allocation. The ledger references
customers by id only; it never owns or embeds them.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import List, Optional
import itertools
import threading
import uuid

from .storage import StorageInterface, StorageRecord
from .errors import CustomerNotFoundError, FatalError
from .validation import combine, validate_email, validate_name


@dataclass(frozen=True)
class Customer(StorageRecord):
    """Customer identity record"""
    name: str
    email: str


class DirectoryService:
    """
    Manages customer records
    """
    
    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "customers"
    
    def create_customer(self, name: str, email: str) -> str:
        """
        Create a customer record
        
        Returns:
            The new customer id
            
        Raises:
            ValidationError: If the name is blank or the email malformed
        """
        result = combine(validate_name(name), validate_email(email))
        if not result.ok:
            raise result.to_error()
        
        customer = Customer(
            id=str(uuid.uuid4()),
            created_at=datetime.now(timezone.utc),
            name=name.strip(),
            email=email.strip()
        )
        self.storage.insert(self.table_name, customer.id, customer.to_dict())
        return customer.id
    
    def remove_customer(self, customer_id: str) -> bool:
        """Undo a customer creation whose account could not be opened"""
        return self.storage.delete(self.table_name, customer_id)
    
    def find_customer(self, customer_id: str) -> Optional[Customer]:
        """Get customer by ID"""
        data = self.storage.load(self.table_name, customer_id)
        return Customer.from_dict(data) if data else None
    
    def require_customer(self, customer_id: str) -> Customer:
        customer = self.find_customer(customer_id)
        if customer is None:
            raise CustomerNotFoundError(customer_id)
        return customer
    
    def find_customers_by_name_contains(self, substring: Optional[str],
                                        case_insensitive: bool = True) -> List[Customer]:
        """Customers whose name contains substring; None or "" matches everyone"""
        query = substring or ""
        if case_insensitive:
            query = query.lower()
        
        matches = []
        for data in self.storage.load_all(self.table_name):
            name = data['name'].lower() if case_insensitive else data['name']
            if query in name:
                matches.append(Customer.from_dict(data))
        return matches


class AccountNumberAllocator:
    """
    Issues fixed-width, zero-padded account numbers: AC000001, AC000002, ...
    
    Running past the width would break the fixed-width format (and with it
    the ordering of account numbers), so it is treated as fatal.
    """
    
    def __init__(self, prefix: str = "AC", width: int = 6, start: int = 1):
        self.prefix = prefix
        self.width = width
        self._counter = itertools.count(start)
        self._lock = threading.Lock()
    
    def next_account_number(self) -> str:
        with self._lock:
            value = next(self._counter)
        
        if value >= 10 ** self.width:
            raise FatalError(
                f"Account number space exhausted for prefix {self.prefix} ({self.width} digits)"
            )
        return f"{self.prefix}{value:0{self.width}d}"
