"""
Bank Service Module

Caller-facing facade over one ledger instance: it owns the storage, the
account store, the transaction log, the customer directory and the
engine, so there is no module-level ledger state.
"""

from decimal import Decimal
from typing import List, Optional, Union

from .accounts import Account, AccountStore, AccountType
from .config import LedgerConfig, get_config
from .directory import AccountNumberAllocator, Customer, DirectoryService
from .engine import LedgerEngine, TransferReceipt
from .errors import FatalError, LedgerError, OperationResult
from .logging_config import get_logger, log_action, setup_logging
from .money import AmountLike
from .storage import InMemoryStorage, StorageInterface
from .transactions import Transaction, TransactionLog
from .validation import combine, validate_account_type, validate_email, validate_name


class BankService:
    """Ledger with all components initialized"""
    
    def __init__(self, config: Optional[LedgerConfig] = None,
                 storage: Optional[StorageInterface] = None):
        self.config = config or get_config()
        self.storage = storage or InMemoryStorage()
        self.logger = get_logger("ledger.service")
        
        self.directory = DirectoryService(self.storage)
        self.accounts = AccountStore(self.storage, lock_timeout=self.config.lock_timeout_seconds)
        self.log = TransactionLog(self.storage)
        self.allocator = AccountNumberAllocator(
            prefix=self.config.account_number_prefix,
            width=self.config.account_number_width
        )
        self.engine = LedgerEngine(self.accounts, self.log, self.allocator, self.config)
    
    @classmethod
    def from_config(cls, config: Optional[LedgerConfig] = None) -> 'BankService':
        """Build a service and install the configured logging on the "ledger" logger"""
        config = config or get_config()
        setup_logging(config.log_level, "ledger", config.log_format)
        return cls(config=config)
    
    def open_account(self, name: str, email: str,
                     account_type: Union[AccountType, str]) -> OperationResult[str]:
        """
        Create a customer and a zero-balance account for them
        
        Returns:
            Result carrying the new account number
        """
        check = combine(
            validate_name(name),
            validate_email(email),
            validate_account_type(account_type)
        )
        if not check.ok:
            log_action(
                self.logger, "warning", f"open_account rejected: {check.reason}",
                action="open_account", extra={"kind": "validation"}
            )
            return OperationResult.failure(check.to_error())
        
        try:
            customer_id = self.directory.create_customer(name, email)
        except FatalError:
            raise
        except LedgerError as e:
            return OperationResult.failure(e)
        
        try:
            result = self.engine.open_account(customer_id, account_type)
        except FatalError:
            self.directory.remove_customer(customer_id)
            log_action(
                self.logger, "error", "open_account failed; customer record removed",
                action="open_account", resource=f"customer:{customer_id}",
                extra={"kind": "fatal"}
            )
            raise
        
        if not result.ok:
            self.directory.remove_customer(customer_id)
            return OperationResult.failure(result.error)
        return OperationResult.success(result.value.account_number)
    
    def get_customer(self, customer_id: str) -> Optional[Customer]:
        return self.directory.find_customer(customer_id)
    
    def get_account(self, account_number: str) -> Optional[Account]:
        return self.engine.get_account(account_number)
    
    def deposit(self, account_number: str, amount: AmountLike,
                note: Optional[str] = None) -> OperationResult[Transaction]:
        return self.engine.deposit(account_number, amount, note)
    
    def withdraw(self, account_number: str, amount: AmountLike,
                 note: Optional[str] = None) -> OperationResult[Transaction]:
        return self.engine.withdraw(account_number, amount, note)
    
    def transfer(self, from_account: str, to_account: str, amount: AmountLike,
                 note: Optional[str] = None) -> OperationResult[TransferReceipt]:
        return self.engine.transfer(from_account, to_account, amount, note)
    
    def list_accounts(self) -> List[Account]:
        return self.engine.list_accounts()
    
    def get_statement(self, account_number: str) -> OperationResult[List[Transaction]]:
        return self.engine.get_statement(account_number)
    
    def total_balance(self) -> Decimal:
        return self.engine.total_balance()
    
    def search_accounts_by_customer_name(self, query: Optional[str]) -> List[Account]:
        """Accounts of every customer whose name contains query (case-insensitive), by account number"""
        accounts = []
        for customer in self.directory.find_customers_by_name_contains(query, case_insensitive=True):
            accounts.extend(self.accounts.find_by_customer(customer.id))
        return sorted(accounts, key=lambda a: a.account_number)
