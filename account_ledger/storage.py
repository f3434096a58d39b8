"""
Ledger Store Module

Provides the abstract ledger store contract and implementations for in-memory
(testing) and SQLite (persistence). All monetary values are stored as Decimal
strings. Every store supports an atomic unit of work that locks the accounts a
money movement touches.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Union
from datetime import datetime, timezone
import sqlite3
import threading
from dataclasses import dataclass, field, replace
from pathlib import Path
from contextlib import contextmanager

from .errors import ConcurrencyConflictError, LedgerError
from .models import Account, AccountType, Transaction
from .logging_config import get_logger


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LedgerStore(ABC):
    """Abstract interface for ledger store backends"""

    @abstractmethod
    def find_account(self, iban: str) -> Optional[Account]:
        """Load an account by IBAN, None when absent"""
        pass

    @abstractmethod
    def find_accounts_by_type(self, account_types: Iterable[AccountType]) -> List[Account]:
        """Load all accounts whose type is in the given set"""
        pass

    @abstractmethod
    def save_account(self, account: Account) -> Account:
        """Insert or update an account keyed by IBAN"""
        pass

    @abstractmethod
    def save_transaction(self, transaction: Transaction) -> Transaction:
        """Insert a transaction; the store assigns id and created_at"""
        pass

    @abstractmethod
    def find_transactions_by_iban(self, iban: str) -> List[Transaction]:
        """Transactions where the IBAN is the source or the destination"""
        pass

    @abstractmethod
    def atomic(self, *ibans: str):
        """
        Context manager for one unit of work.

        Locks the named accounts for the duration of the block. Writes made
        inside the block become visible together on success and not at all
        if the block raises.
        """
        pass

    @abstractmethod
    def count_accounts(self) -> int:
        pass

    @abstractmethod
    def count_transactions(self) -> int:
        pass

    @abstractmethod
    def clear(self) -> None:
        """Remove all accounts and transactions; transaction ids restart at 1"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close store connection"""
        pass


@dataclass
class _UnitOfWork:
    """Writes staged by one thread until its outermost atomic block exits"""
    accounts: Dict[str, dict] = field(default_factory=dict)
    transactions: Dict[int, dict] = field(default_factory=dict)


@dataclass
class _AccountLock:
    """Per-account lock and the number of atomic blocks holding or awaiting it"""
    lock: threading.RLock = field(default_factory=threading.RLock)
    users: int = 0


class InMemoryLedgerStore(LedgerStore):
    """
    In-memory ledger store for testing.

    Each account has its own lock, kept only while an atomic block holds or
    awaits it. ``atomic`` takes the locks of the accounts it is given in
    sorted IBAN order, stages writes in a thread-local unit of
    work and publishes them under the store lock when the block completes.
    """

    def __init__(self, lock_timeout: float = 5.0):
        self._accounts: Dict[str, dict] = {}
        self._transactions: Dict[int, dict] = {}
        self._next_transaction_id = 1
        self._lock = threading.RLock()
        self._account_locks: Dict[str, _AccountLock] = {}
        self._local = threading.local()
        self.lock_timeout = lock_timeout
        self.logger = get_logger("account_ledger.storage")

    @property
    def _unit(self) -> Optional[_UnitOfWork]:
        return getattr(self._local, 'unit', None)

    def _lock_for(self, iban: str) -> threading.RLock:
        """Account lock for ``iban``; each call must be paired with ``_forget_lock``"""
        with self._lock:
            entry = self._account_locks.get(iban)
            if entry is None:
                entry = self._account_locks[iban] = _AccountLock()
            entry.users += 1
            return entry.lock

    def _forget_lock(self, iban: str, release: bool = False) -> None:
        with self._lock:
            entry = self._account_locks[iban]
            if release:
                entry.lock.release()
            entry.users -= 1
            if entry.users == 0:
                del self._account_locks[iban]

    def _acquire_account_locks(self, ibans: Iterable[str]) -> List[str]:
        acquired = []
        for iban in sorted({iban for iban in ibans if iban}):
            lock = self._lock_for(iban)
            if not lock.acquire(timeout=self.lock_timeout):
                self._forget_lock(iban)
                self._release_account_locks(acquired)
                raise ConcurrencyConflictError(
                    f"Timed out waiting for lock on account {iban}. Please retry."
                )
            acquired.append(iban)
        return acquired

    def _release_account_locks(self, ibans: List[str]) -> None:
        for iban in reversed(ibans):
            self._forget_lock(iban, release=True)

    @contextmanager
    def atomic(self, *ibans: str):
        """Context manager for atomic operations"""
        acquired = self._acquire_account_locks(ibans)
        outer = self._unit
        if outer is None:
            self._local.unit = _UnitOfWork()
        try:
            yield
            if outer is None:
                self._publish(self._local.unit)
        finally:
            if outer is None:
                self._local.unit = None
            self._release_account_locks(acquired)

    def _publish(self, unit: _UnitOfWork) -> None:
        with self._lock:
            self._accounts.update(unit.accounts)
            self._transactions.update(unit.transactions)

    def _account_data(self, iban: str) -> Optional[dict]:
        unit = self._unit
        if unit is not None and iban in unit.accounts:
            return unit.accounts[iban]
        with self._lock:
            return self._accounts.get(iban)

    def _visible_accounts(self) -> List[dict]:
        with self._lock:
            merged = dict(self._accounts)
        unit = self._unit
        if unit is not None:
            merged.update(unit.accounts)
        return list(merged.values())

    def _visible_transactions(self) -> List[dict]:
        with self._lock:
            merged = dict(self._transactions)
        unit = self._unit
        if unit is not None:
            merged.update(unit.transactions)
        return [merged[key] for key in sorted(merged)]

    def find_account(self, iban: str) -> Optional[Account]:
        data = self._account_data(iban)
        if data:
            return Account.from_dict(data)
        return None

    def find_accounts_by_type(self, account_types: Iterable[AccountType]) -> List[Account]:
        wanted = {account_type.value for account_type in account_types}
        return [
            Account.from_dict(data) for data in self._visible_accounts()
            if data['type'] in wanted
        ]

    def save_account(self, account: Account) -> Account:
        now = _utcnow()
        existing = self._account_data(account.iban)
        if existing and existing.get('created_at'):
            created_at = datetime.fromisoformat(existing['created_at'])
        else:
            created_at = account.created_at or now
        data = replace(account, created_at=created_at, updated_at=now).to_dict()

        unit = self._unit
        if unit is not None:
            unit.accounts[account.iban] = data
        else:
            with self._lock:
                self._accounts[account.iban] = data
        return Account.from_dict(data)

    def save_transaction(self, transaction: Transaction) -> Transaction:
        with self._lock:
            transaction_id = self._next_transaction_id
            self._next_transaction_id += 1
        data = replace(transaction, id=transaction_id, created_at=_utcnow()).to_dict()

        unit = self._unit
        if unit is not None:
            unit.transactions[transaction_id] = data
        else:
            with self._lock:
                self._transactions[transaction_id] = data
        return Transaction.from_dict(data)

    def find_transactions_by_iban(self, iban: str) -> List[Transaction]:
        return [
            Transaction.from_dict(data) for data in self._visible_transactions()
            if iban in (data['from_iban'], data['to_iban'])
        ]

    def count_accounts(self) -> int:
        with self._lock:
            return len(self._accounts)

    def count_transactions(self) -> int:
        with self._lock:
            return len(self._transactions)

    def clear(self) -> None:
        with self._lock:
            self._accounts = {}
            self._transactions = {}
            self._next_transaction_id = 1

    def close(self) -> None:
        """Close store (no-op for in-memory)"""
        pass


class SQLiteLedgerStore(LedgerStore):
    """
    SQLite ledger store for persistence.

    The connection runs in autocommit mode; ``atomic`` issues
    ``BEGIN IMMEDIATE`` so the write lock is taken before any balance is read.
    A busy or locked database surfaces as ConcurrencyConflictError.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:", lock_timeout: float = 5.0):
        self.db_path = str(db_path)
        self.lock_timeout = lock_timeout
        self._connection = sqlite3.connect(
            self.db_path, check_same_thread=False, isolation_level=None, timeout=lock_timeout
        )
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        self.logger = get_logger("account_ledger.storage")

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")

        self._create_schema()

    def _create_schema(self) -> None:
        """Ensure tables exist with proper schema"""
        with self._lock:
            self._connection.execute("""
                CREATE TABLE IF NOT EXISTS accounts (
                    iban TEXT PRIMARY KEY,
                    type TEXT NOT NULL,
                    balance TEXT NOT NULL,
                    routing_number INTEGER NOT NULL,
                    reference_account_iban TEXT,
                    customer_id TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            self._connection.execute("""
                CREATE INDEX IF NOT EXISTS idx_accounts_type ON accounts(type)
            """)
            self._connection.execute("""
                CREATE TABLE IF NOT EXISTS transactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    from_iban TEXT,
                    to_iban TEXT,
                    amount TEXT NOT NULL,
                    type TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            self._connection.execute("""
                CREATE INDEX IF NOT EXISTS idx_transactions_from_iban ON transactions(from_iban)
            """)
            self._connection.execute("""
                CREATE INDEX IF NOT EXISTS idx_transactions_to_iban ON transactions(to_iban)
            """)

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Run a statement, translating lock contention into a conflict"""
        try:
            return self._connection.execute(sql, params)
        except sqlite3.OperationalError as e:
            message = str(e).lower()
            if "locked" in message or "busy" in message:
                raise ConcurrencyConflictError(f"Ledger store is busy: {e}. Please retry.") from e
            raise

    @contextmanager
    def atomic(self, *ibans: str):
        """Context manager for atomic operations"""
        if not self._lock.acquire(timeout=self.lock_timeout):
            raise ConcurrencyConflictError("Timed out waiting for the ledger store. Please retry.")
        try:
            if self._depth == 0:
                self._execute("BEGIN IMMEDIATE")
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            if self._depth == 0:
                self._execute("COMMIT")
        except BaseException:
            # Only the outermost block owns the transaction
            if self._depth == 0 and self._connection.in_transaction:
                self._connection.execute("ROLLBACK")
            raise
        finally:
            self._lock.release()

    @staticmethod
    def _row_to_account(row: sqlite3.Row) -> Account:
        return Account.from_dict(dict(row))

    @staticmethod
    def _row_to_transaction(row: sqlite3.Row) -> Transaction:
        return Transaction.from_dict(dict(row))

    def find_account(self, iban: str) -> Optional[Account]:
        with self._lock:
            row = self._execute("""
                SELECT * FROM accounts WHERE iban = ?
            """, (iban,)).fetchone()
            if row:
                return self._row_to_account(row)
            return None

    def find_accounts_by_type(self, account_types: Iterable[AccountType]) -> List[Account]:
        values = sorted({account_type.value for account_type in account_types})
        if not values:
            return []
        placeholders = ", ".join("?" for _ in values)
        with self._lock:
            rows = self._execute(f"""
                SELECT * FROM accounts WHERE type IN ({placeholders}) ORDER BY created_at, iban
            """, tuple(values)).fetchall()
            return [self._row_to_account(row) for row in rows]

    def save_account(self, account: Account) -> Account:
        now = _utcnow().isoformat()
        created_at = account.created_at.isoformat() if account.created_at else now
        with self._lock:
            self._execute("""
                INSERT INTO accounts (
                    iban, type, balance, routing_number, reference_account_iban,
                    customer_id, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(iban) DO UPDATE SET
                    type = excluded.type,
                    balance = excluded.balance,
                    routing_number = excluded.routing_number,
                    reference_account_iban = excluded.reference_account_iban,
                    customer_id = excluded.customer_id,
                    updated_at = excluded.updated_at
            """, (
                account.iban, account.type.value, str(account.balance), account.routing_number,
                account.reference_account_iban, account.customer_id, created_at, now
            ))
            return self.find_account(account.iban)

    def save_transaction(self, transaction: Transaction) -> Transaction:
        now = _utcnow()
        with self._lock:
            cursor = self._execute("""
                INSERT INTO transactions (from_iban, to_iban, amount, type, created_at)
                VALUES (?, ?, ?, ?, ?)
            """, (
                transaction.from_iban, transaction.to_iban, str(transaction.amount),
                transaction.type.value, now.isoformat()
            ))
            return replace(transaction, id=cursor.lastrowid, created_at=now)

    def find_transactions_by_iban(self, iban: str) -> List[Transaction]:
        with self._lock:
            rows = self._execute("""
                SELECT * FROM transactions WHERE from_iban = ? OR to_iban = ? ORDER BY id
            """, (iban, iban)).fetchall()
            return [self._row_to_transaction(row) for row in rows]

    def count_accounts(self) -> int:
        with self._lock:
            return self._execute("SELECT COUNT(*) AS count FROM accounts").fetchone()['count']

    def count_transactions(self) -> int:
        with self._lock:
            return self._execute("SELECT COUNT(*) AS count FROM transactions").fetchone()['count']

    def clear(self) -> None:
        with self.atomic():
            self._execute("DELETE FROM transactions")
            self._execute("DELETE FROM accounts")
            self._execute("DELETE FROM sqlite_sequence WHERE name = 'transactions'")

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_store(backend: str = "memory", database_path: Union[str, Path] = ":memory:",
                 lock_timeout: float = 5.0) -> LedgerStore:
    """
    Build a ledger store for the configured backend.

    Args:
        backend: "memory" or "sqlite"
        database_path: SQLite database file (ignored for memory)
        lock_timeout: Seconds to wait for account locks

    Returns:
        LedgerStore instance
    """
    if backend == "memory":
        return InMemoryLedgerStore(lock_timeout=lock_timeout)
    if backend == "sqlite":
        return SQLiteLedgerStore(database_path, lock_timeout=lock_timeout)
    raise LedgerError(f"Unknown storage backend: {backend}")
