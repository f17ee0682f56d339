"""
Concurrency tests for the ledger engine

Exercises the engine from many threads at once: same-account
linearisation, opposite-direction transfers (deadlock freedom), funds
never going negative, and consistent snapshots while transfers run.
"""

import threading
import time
import random
from decimal import Decimal

from ledger_core.config import LedgerConfig
from ledger_core.errors import ErrorKind
from ledger_core.service import BankService
from ledger_core.transactions import TransactionType


JOIN_TIMEOUT = 30


def run_threads(targets):
    threads = [threading.Thread(target=target) for target in targets]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(JOIN_TIMEOUT)
    stuck = [thread for thread in threads if thread.is_alive()]
    assert not stuck, f"{len(stuck)} threads still running (deadlock?)"


class TestConcurrentOperations:
    
    def setup_method(self):
        self.bank = BankService(config=LedgerConfig())
        self.a = self.bank.open_account("Alice", "a@x.com", "savings").unwrap()
        self.b = self.bank.open_account("Bob", "b@x.com", "current").unwrap()
        self.errors = []
    
    def guarded(self, fn):
        def run():
            try:
                fn()
            except Exception as e:
                self.errors.append(e)
        return run
    
    def test_concurrent_deposits_same_account(self):
        """N deposits of a on one account give N*a and N records"""
        n = 50
        amount = Decimal("10.00")
        
        run_threads([self.guarded(lambda: self.bank.deposit(self.a, amount).unwrap()) for _ in range(n)])
        
        assert self.errors == []
        assert self.bank.get_account(self.a).balance == n * amount
        history = self.bank.get_statement(self.a).unwrap()
        assert len(history) == n
        assert all(t.transaction_type == TransactionType.DEPOSIT for t in history)
    
    def test_concurrent_withdrawals_never_overdraw(self):
        """Only as many withdrawals succeed as the balance can fund"""
        self.bank.deposit(self.a, "100.00").unwrap()
        results = []
        lock = threading.Lock()
        
        def withdraw():
            result = self.bank.withdraw(self.a, "10.00")
            with lock:
                results.append(result)
        
        run_threads([withdraw for _ in range(25)])
        
        succeeded = [r for r in results if r.ok]
        rejected = [r for r in results if not r.ok]
        assert len(succeeded) == 10
        assert all(r.kind == ErrorKind.INSUFFICIENT_FUNDS for r in rejected)
        assert self.bank.get_account(self.a).balance == Decimal("0.00")
        assert len(self.bank.get_statement(self.a).unwrap()) == 11
    
    def test_opposite_transfers_do_not_deadlock(self):
        """A->B and B->A in parallel finish, conserve funds and stay non-negative"""
        self.bank.deposit(self.a, "500.00").unwrap()
        self.bank.deposit(self.b, "500.00").unwrap()
        outcomes = {"ab": 0, "ba": 0}
        lock = threading.Lock()
        
        def move(src, dst, key):
            def run():
                for _ in range(100):
                    result = self.bank.transfer(src, dst, "7.00")
                    if result.ok:
                        with lock:
                            outcomes[key] += 1
                    else:
                        assert result.kind == ErrorKind.INSUFFICIENT_FUNDS
            return run
        
        workers = []
        for _ in range(4):
            workers.append(self.guarded(move(self.a, self.b, "ab")))
            workers.append(self.guarded(move(self.b, self.a, "ba")))
        run_threads(workers)
        
        assert self.errors == []
        balance_a = self.bank.get_account(self.a).balance
        balance_b = self.bank.get_account(self.b).balance
        assert balance_a >= 0 and balance_b >= 0
        assert balance_a + balance_b == Decimal("1000.00")
        assert balance_a == Decimal("500.00") + 7 * (outcomes["ba"] - outcomes["ab"])
        
        outs_a = [t for t in self.bank.get_statement(self.a).unwrap()
                  if t.transaction_type == TransactionType.TRANSFER_OUT]
        ins_b = [t for t in self.bank.get_statement(self.b).unwrap()
                 if t.transaction_type == TransactionType.TRANSFER_IN]
        assert len(outs_a) == len(ins_b) == outcomes["ab"]
    
    def test_snapshot_total_is_conserved_during_transfers(self):
        """Readers never see a debit without its credit"""
        accounts = [self.a, self.b]
        for _ in range(3):
            accounts.append(self.bank.open_account("Carol", "c@x.com", "savings").unwrap())
        for number in accounts:
            self.bank.deposit(number, "100.00").unwrap()
        expected = Decimal("500.00")
        stop = threading.Event()
        totals = []
        
        def shuffle(seed):
            rng = random.Random(seed)
            def run():
                for _ in range(200):
                    src, dst = rng.sample(accounts, 2)
                    self.bank.transfer(src, dst, str(rng.randint(1, 40)))
            return run
        
        def read():
            while not stop.is_set():
                totals.append(sum(a.balance for a in self.bank.list_accounts()))
        
        reader = threading.Thread(target=self.guarded(read))
        reader.start()
        run_threads([self.guarded(shuffle(seed)) for seed in range(6)])
        stop.set()
        reader.join(JOIN_TIMEOUT)
        
        assert self.errors == []
        assert totals
        assert all(total == expected for total in totals)
        assert all(a.balance >= 0 for a in self.bank.list_accounts())
        
        for number in accounts:
            history = self.bank.get_statement(number).unwrap()
            stamps = [(t.timestamp, t.sequence) for t in history]
            assert stamps == sorted(stamps)
    
    def test_transfer_records_always_paired(self):
        accounts = [self.a, self.b]
        self.bank.deposit(self.a, "300.00").unwrap()
        
        def churn():
            for _ in range(50):
                self.bank.transfer(self.a, self.b, "3")
                self.bank.transfer(self.b, self.a, "2")
        
        run_threads([self.guarded(churn) for _ in range(4)])
        
        records = self.bank.log.all()
        outs = [t for t in records if t.transaction_type == TransactionType.TRANSFER_OUT]
        ins = [t for t in records if t.transaction_type == TransactionType.TRANSFER_IN]
        assert len(outs) == len(ins)
        by_sequence = {t.sequence: t for t in records}
        for out in outs:
            partner = by_sequence[out.sequence + 1]
            assert partner.transaction_type == TransactionType.TRANSFER_IN
            assert partner.account_number == out.counterparty_account
            assert partner.amount == out.amount
        assert sum(self.bank.get_account(n).balance for n in accounts) == Decimal("300.00")


class TestLockTimeout:
    
    def test_timed_out_operation_leaves_state_unchanged(self):
        """An operation that cannot get its locks aborts before mutating"""
        bank = BankService(config=LedgerConfig(lock_timeout_seconds=0.05))
        a = bank.open_account("Alice", "a@x.com", "savings").unwrap()
        b = bank.open_account("Bob", "b@x.com", "savings").unwrap()
        bank.deposit(a, "100.00").unwrap()
        
        holding = threading.Event()
        release = threading.Event()
        results = []
        
        def hold():
            with bank.accounts.locked(b):
                holding.set()
                release.wait(JOIN_TIMEOUT)
        
        holder = threading.Thread(target=hold)
        holder.start()
        holding.wait(JOIN_TIMEOUT)
        
        def attempt():
            results.append(bank.transfer(a, b, "10.00"))
            results.append(bank.deposit(b, "10.00"))
        
        run_threads([attempt])
        release.set()
        holder.join(JOIN_TIMEOUT)
        
        assert [r.kind for r in results] == [ErrorKind.TIMEOUT, ErrorKind.TIMEOUT]
        assert bank.get_account(a).balance == Decimal("100.00")
        assert bank.get_account(b).balance == Decimal("0")
        assert len(bank.get_statement(a).unwrap()) == 1
        assert bank.get_statement(b).unwrap() == []
        
        # Once the lock is free the same transfer goes through
        assert bank.transfer(a, b, "10.00").ok
    
    def test_reads_wait_for_busy_accounts_instead_of_timing_out(self):
        """Snapshot reads block until the holder finishes, whatever the lock timeout"""
        bank = BankService(config=LedgerConfig(lock_timeout_seconds=0.01))
        a = bank.open_account("Alice", "a@x.com", "savings").unwrap()
        bank.deposit(a, "25.00").unwrap()
        
        holding = threading.Event()
        
        def hold():
            with bank.accounts.locked(a):
                holding.set()
                time.sleep(0.2)
        
        holder = threading.Thread(target=hold)
        holder.start()
        holding.wait(JOIN_TIMEOUT)
        
        reads = {}
        
        def read():
            reads["list"] = bank.list_accounts()
            reads["total"] = bank.total_balance()
            reads["search"] = bank.search_accounts_by_customer_name("alice")
            reads["statement"] = bank.get_statement(a)
            reads["account"] = bank.get_account(a)
        
        run_threads([read])
        holder.join(JOIN_TIMEOUT)
        
        assert [acc.account_number for acc in reads["list"]] == [a]
        assert reads["total"] == Decimal("25.00")
        assert [acc.balance for acc in reads["search"]] == [Decimal("25.00")]
        assert reads["statement"].ok
        assert len(reads["statement"].value) == 1
        assert reads["account"].balance == Decimal("25.00")
