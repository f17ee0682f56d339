"""
Ledger Engine Module

Orchestrates deposits, withdrawals and transfers against the account store
and the transaction log. Every mutating operation runs through the same
stages: validate, lock, mutate, log, commit. Rejections happen before the
first mutation and leave no trace; a failure after it is rolled back and
raised as FatalError.
"""

from decimal import Decimal
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union
from enum import Enum

from .accounts import Account, AccountStore, AccountType, Precondition, always, covers, parse_account_type
from .config import LedgerConfig, get_config
from .directory import AccountNumberAllocator
from .errors import (
    AccountNotFoundError, FatalError, InsufficientFundsError, LedgerError,
    OperationResult, PreconditionFailed
)
from .logging_config import get_logger, log_action
from .money import AmountLike, ZERO, to_amount
from .transactions import PendingTransaction, Transaction, TransactionLog, TransactionType
from .validation import (
    ValidationResult, combine, validate_account_type, validate_amount,
    validate_distinct_accounts
)


class OperationStage(Enum):
    """Stages a mutating operation passes through"""
    VALIDATING = "validating"
    LOCKING = "locking"
    MUTATING = "mutating"
    LOGGING = "logging"
    COMMITTED = "committed"


@dataclass(frozen=True)
class TransferReceipt:
    """The matching pair of records a committed transfer appends"""
    debit: Transaction   # TransferOut on the source account
    credit: Transaction  # TransferIn on the destination account
    
    @property
    def amount(self) -> Decimal:
        return self.debit.amount


Delta = Tuple[str, Decimal, Precondition]


class LedgerEngine:
    """
    Concurrency-safe ledger operations.
    
    Operations on one account are linearised by that account's lock;
    operations on disjoint accounts run in parallel. Transfers hold both
    accounts' locks, taken in account-number order, for the whole
    mutate-and-log step, so no reader sees the debit without the credit.
    """
    
    def __init__(
        self,
        accounts: AccountStore,
        log: TransactionLog,
        allocator: AccountNumberAllocator,
        config: Optional[LedgerConfig] = None
    ):
        self.accounts = accounts
        self.log = log
        self.allocator = allocator
        self.config = config or get_config()
        self.logger = get_logger("ledger.engine")
        
        self._max_amount = (
            to_amount(self.config.max_transaction_amount, self.config.amount_precision)
            if self.config.max_transaction_amount else None
        )
    
    def open_account(self, customer_id: str,
                     account_type: Union[AccountType, str]) -> OperationResult[Account]:
        """
        Create a zero-balance account for an existing customer reference
        
        Raises:
            FatalError: If the allocator hands out an account number that is
                already in use
        """
        check = validate_account_type(account_type)
        if not check.ok:
            return self._rejected("open_account", None, check.to_error(), OperationStage.VALIDATING)
        
        account_number = self.allocator.next_account_number()
        account = self.accounts.create(account_number, customer_id, parse_account_type(account_type))
        
        log_action(
            self.logger, "info", f"Account opened: {account_number}",
            action="open_account", resource=f"account:{account_number}",
            extra={
                "customer_id": customer_id,
                "account_type": account.account_type.value
            }
        )
        return OperationResult.success(account)
    
    def get_account(self, account_number: str) -> Optional[Account]:
        """Get account by number"""
        return self.accounts.get(account_number)
    
    def list_accounts(self) -> List[Account]:
        """All accounts ordered by account number, from one consistent snapshot"""
        return self.accounts.snapshot()
    
    def total_balance(self) -> Decimal:
        return sum((account.balance for account in self.accounts.snapshot()), ZERO)
    
    def get_statement(self, account_number: str) -> OperationResult[List[Transaction]]:
        """Transaction history of an account, oldest first"""
        try:
            with self.accounts.locked(account_number, for_read=True):
                return OperationResult.success(self.log.find_by_account(account_number))
        except FatalError:
            raise
        except LedgerError as e:
            return self._rejected("get_statement", account_number, e, OperationStage.LOCKING)
    
    def deposit(self, account_number: str, amount: AmountLike,
                note: Optional[str] = None) -> OperationResult[Transaction]:
        """Credit an account and append a Deposit record"""
        return self._single_account(
            "deposit", TransactionType.DEPOSIT, account_number, amount, note,
            debit=False
        )
    
    def withdraw(self, account_number: str, amount: AmountLike,
                 note: Optional[str] = None) -> OperationResult[Transaction]:
        """Debit an account if its balance covers the amount, and append a Withdraw record"""
        return self._single_account(
            "withdraw", TransactionType.WITHDRAW, account_number, amount, note,
            debit=True
        )
    
    def transfer(self, from_account: str, to_account: str, amount: AmountLike,
                 note: Optional[str] = None) -> OperationResult[TransferReceipt]:
        """
        Move funds between two accounts
        
        Debits the source, credits the destination and appends a
        TransferOut/TransferIn pair, all while holding both account locks.
        Self-transfers are rejected even though they would be
        balance-neutral.
        
        Returns:
            Result carrying the TransferReceipt, or the rejection
            
        Raises:
            FatalError: If the transfer could not complete after the first
                balance change; balances have been restored
        """
        action = "transfer"
        stage = OperationStage.VALIDATING
        try:
            value = self._check(
                self._amount_check(amount),
                lambda: validate_distinct_accounts(from_account, to_account),
                amount=amount
            )
            self._require_account(from_account)
            self._require_account(to_account)
            
            stage = OperationStage.LOCKING
            with self.accounts.locked(from_account, to_account):
                stage = OperationStage.MUTATING
                debit, credit = self._mutate_and_log(
                    action,
                    [
                        (from_account, -value, covers(value)),
                        (to_account, value, always),
                    ],
                    [
                        PendingTransaction(
                            transaction_type=TransactionType.TRANSFER_OUT,
                            account_number=from_account,
                            amount=value,
                            note=note,
                            counterparty_account=to_account
                        ),
                        PendingTransaction(
                            transaction_type=TransactionType.TRANSFER_IN,
                            account_number=to_account,
                            amount=value,
                            note=f"Transfer from {from_account}",
                            counterparty_account=from_account
                        ),
                    ]
                )
        except FatalError:
            raise
        except LedgerError as e:
            return self._rejected(action, from_account, e, stage)
        
        log_action(
            self.logger, "info", f"Transfer committed: {from_account} -> {to_account}",
            action=action, resource=f"account:{from_account}",
            extra={
                "from_account": from_account,
                "to_account": to_account,
                "amount": str(value),
                "debit_transaction_id": debit.id,
                "credit_transaction_id": credit.id,
                "stage": OperationStage.COMMITTED.value
            }
        )
        return OperationResult.success(TransferReceipt(debit=debit, credit=credit))
    
    def _single_account(self, action: str, transaction_type: TransactionType,
                        account_number: str, amount: AmountLike, note: Optional[str],
                        debit: bool) -> OperationResult[Transaction]:
        stage = OperationStage.VALIDATING
        try:
            value = self._check(self._amount_check(amount), amount=amount)
            self._require_account(account_number)
            
            stage = OperationStage.LOCKING
            with self.accounts.locked(account_number):
                stage = OperationStage.MUTATING
                delta = (account_number, -value, covers(value)) if debit else (account_number, value, always)
                record, = self._mutate_and_log(
                    action,
                    [delta],
                    [PendingTransaction(
                        transaction_type=transaction_type,
                        account_number=account_number,
                        amount=value,
                        note=note
                    )]
                )
        except FatalError:
            raise
        except LedgerError as e:
            return self._rejected(action, account_number, e, stage)
        
        log_action(
            self.logger, "info", f"{action.capitalize()} committed: {account_number}",
            action=action, resource=f"account:{account_number}",
            extra={
                "amount": str(value),
                "transaction_id": record.id,
                "stage": OperationStage.COMMITTED.value
            }
        )
        return OperationResult.success(record)
    
    def _mutate_and_log(self, action: str, deltas: Sequence[Delta],
                        pending: Sequence[PendingTransaction]) -> List[Transaction]:
        """
        Apply balance deltas in order, then append their records as one unit.
        
        Must be called with every touched account locked. A recoverable
        error before the first delta lands (insufficient funds, balance
        limit) is a plain rejection; any other failure rolls the applied
        deltas back and surfaces as FatalError.
        """
        applied: List[Tuple[str, Decimal]] = []
        stage = OperationStage.MUTATING
        try:
            for account_number, delta, precondition in deltas:
                try:
                    self.accounts.apply_delta(account_number, delta, precondition)
                except PreconditionFailed as e:
                    if applied:
                        raise
                    raise InsufficientFundsError(
                        f"Insufficient balance in account {account_number}: "
                        f"balance {e.balance}, requested {-delta}"
                    ) from e
                applied.append((account_number, delta))
            
            stage = OperationStage.LOGGING
            return self.log.append_many(pending)
        except Exception as exc:
            if not applied and isinstance(exc, LedgerError) and exc.recoverable:
                raise
            self._roll_back(action, applied, exc, stage)
            if isinstance(exc, FatalError):
                raise
            raise FatalError(f"{action} aborted after partial mutation: {exc!r}") from exc
    
    def _roll_back(self, action: str, applied: List[Tuple[str, Decimal]],
                   cause: BaseException, stage: OperationStage) -> None:
        for account_number, delta in reversed(applied):
            try:
                self.accounts.apply_delta(account_number, -delta, always)
            except Exception as rollback_error:
                log_action(
                    self.logger, "critical",
                    f"Rollback failed for {account_number}; ledger is inconsistent",
                    action=action, resource=f"account:{account_number}",
                    extra={"delta": str(delta)}, exc_info=rollback_error
                )
                raise FatalError(
                    f"Rollback of {action} failed on account {account_number}"
                ) from rollback_error
        
        log_action(
            self.logger, "error", f"{action} rolled back after failure: {cause!r}",
            action=action,
            extra={
                "rolled_back": [
                    {"account_number": number, "delta": str(delta)} for number, delta in applied
                ],
                "kind": "fatal",
                "stage": stage.value
            },
            exc_info=cause
        )
    
    def _amount_check(self, amount: AmountLike) -> ValidationResult:
        return validate_amount(amount, self.config.amount_precision, self._max_amount)
    
    def _check(self, *checks, amount: AmountLike) -> Decimal:
        result = combine(*checks)
        if not result.ok:
            raise result.to_error()
        return to_amount(amount, self.config.amount_precision)
    
    def _require_account(self, account_number: str) -> None:
        if not self.accounts.exists(account_number):
            raise AccountNotFoundError(account_number)
    
    def _rejected(self, action: str, account_number: Optional[str], error: LedgerError,
                  stage: OperationStage) -> OperationResult:
        log_action(
            self.logger, "warning", f"{action} rejected: {error.message}",
            action=action,
            resource=f"account:{account_number}" if account_number else None,
            extra={"kind": error.kind.value, "stage": stage.value}
        )
        return OperationResult.failure(error)
