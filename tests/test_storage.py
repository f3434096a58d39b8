"""
Tests for ledger store backends and atomic units of work
"""

import pytest
import tempfile
import threading
import time
from decimal import Decimal
from pathlib import Path

from account_ledger.engine import MoneyMovementEngine
from account_ledger.errors import AccountNotFoundError, ConcurrencyConflictError, LedgerError
from account_ledger.models import Account, AccountType, Transaction, TransactionRequest, TransactionType
from account_ledger.storage import (
    InMemoryLedgerStore, SQLiteLedgerStore, LedgerStore, create_store
)


def make_account(iban="iban1", account_type=AccountType.CHECKING, balance="100.00",
                 reference_account_iban=None, customer_id="1"):
    return Account(
        iban=iban,
        type=account_type,
        balance=Decimal(balance),
        routing_number=12345,
        customer_id=customer_id,
        reference_account_iban=reference_account_iban,
    )


def make_transaction(from_iban="iban1", to_iban="iban2", amount="10.00",
                     transaction_type=TransactionType.TRANSFER):
    return Transaction(
        from_iban=from_iban, to_iban=to_iban, amount=Decimal(amount), type=transaction_type
    )


@pytest.fixture(params=["memory", "sqlite"])
def store(request):
    """Each contract test runs against both backends"""
    if request.param == "memory":
        ledger_store = InMemoryLedgerStore(lock_timeout=1.0)
        yield ledger_store
        ledger_store.close()
    else:
        with tempfile.TemporaryDirectory() as temp_dir:
            ledger_store = SQLiteLedgerStore(Path(temp_dir) / "ledger.db", lock_timeout=1.0)
            yield ledger_store
            ledger_store.close()


class TestLedgerStoreContract:
    """Behaviour shared by every LedgerStore"""

    def test_save_and_find_account(self, store: LedgerStore):
        """Saving sets timestamps and the account can be found again"""
        saved = store.save_account(make_account())

        assert saved.created_at is not None
        assert saved.updated_at is not None

        loaded = store.find_account("iban1")
        assert loaded.iban == "iban1"
        assert loaded.type == AccountType.CHECKING
        assert loaded.balance == Decimal("100.00")
        assert loaded.routing_number == 12345
        assert loaded.customer_id == "1"

    def test_find_missing_account(self, store: LedgerStore):
        assert store.find_account("missing") is None

    def test_save_account_is_upsert_by_iban(self, store: LedgerStore):
        """Updating keeps created_at and refreshes updated_at"""
        first = store.save_account(make_account())
        time.sleep(0.01)
        account = store.find_account("iban1")
        account.balance = Decimal("42.125")
        second = store.save_account(account)

        assert store.count_accounts() == 1
        assert second.created_at == first.created_at
        assert second.updated_at > first.updated_at
        assert store.find_account("iban1").balance == Decimal("42.125")

    def test_balance_precision_preserved(self, store: LedgerStore):
        """Stored balances are exact, never rounded or floated"""
        store.save_account(make_account(balance="0.105"))
        assert store.find_account("iban1").balance == Decimal("0.105")

    def test_find_accounts_by_type(self, store: LedgerStore):
        store.save_account(make_account("iban1", AccountType.CHECKING))
        store.save_account(make_account("iban2", AccountType.SAVINGS, reference_account_iban="iban1"))
        store.save_account(make_account("iban3", AccountType.PRIVATE_LOAN))

        accounts = store.find_accounts_by_type({AccountType.CHECKING, AccountType.SAVINGS})
        assert sorted(account.iban for account in accounts) == ["iban1", "iban2"]
        assert store.find_accounts_by_type(set()) == []

    def test_save_transaction_assigns_id(self, store: LedgerStore):
        first = store.save_transaction(make_transaction())
        second = store.save_transaction(make_transaction())

        assert first.id is not None
        assert second.id is not None
        assert first.id != second.id
        assert first.created_at is not None
        assert store.count_transactions() == 2

    def test_find_transactions_by_iban_matches_from_or_to(self, store: LedgerStore):
        store.save_transaction(make_transaction("DE89370400440532013000", "DE75512108001245126199"))
        store.save_transaction(make_transaction("DE75512108001245126199", "DE89370400440532013000"))
        store.save_transaction(make_transaction("iban1", "iban2"))

        transactions = store.find_transactions_by_iban("DE89370400440532013000")
        assert len(transactions) == 2
        assert all(t.involves("DE89370400440532013000") for t in transactions)

    def test_find_transactions_unknown_iban(self, store: LedgerStore):
        store.save_transaction(make_transaction())
        assert store.find_transactions_by_iban("randomIban") == []

    def test_transactions_without_counterparty(self, store: LedgerStore):
        """Deposits have no source and withdrawals no destination"""
        store.save_transaction(make_transaction(None, "iban1", transaction_type=TransactionType.DEPOSIT))
        store.save_transaction(make_transaction("iban1", None, transaction_type=TransactionType.WITHDRAW))

        transactions = store.find_transactions_by_iban("iban1")
        assert {t.type for t in transactions} == {TransactionType.DEPOSIT, TransactionType.WITHDRAW}
        deposit = next(t for t in transactions if t.type == TransactionType.DEPOSIT)
        assert deposit.from_iban is None

    def test_atomic_commits_all_writes(self, store: LedgerStore):
        store.save_account(make_account("iban1"))
        store.save_account(make_account("iban2"))

        with store.atomic("iban1", "iban2"):
            source = store.find_account("iban1")
            destination = store.find_account("iban2")
            source.balance -= Decimal("50")
            destination.balance += Decimal("50")
            store.save_account(source)
            store.save_account(destination)
            store.save_transaction(make_transaction(amount="50"))

        assert store.find_account("iban1").balance == Decimal("50.00")
        assert store.find_account("iban2").balance == Decimal("150.00")
        assert store.count_transactions() == 1

    def test_atomic_rolls_back_on_error(self, store: LedgerStore):
        """A failure inside the unit leaves no write visible"""
        store.save_account(make_account("iban1"))
        store.save_account(make_account("iban2"))

        with pytest.raises(RuntimeError):
            with store.atomic("iban1", "iban2"):
                source = store.find_account("iban1")
                source.balance -= Decimal("50")
                store.save_account(source)
                store.save_transaction(make_transaction(amount="50"))
                raise RuntimeError("store fault after partial writes")

        assert store.find_account("iban1").balance == Decimal("100.00")
        assert store.find_account("iban2").balance == Decimal("100.00")
        assert store.count_transactions() == 0

    def test_atomic_reads_own_writes(self, store: LedgerStore):
        store.save_account(make_account("iban1"))

        with store.atomic("iban1"):
            account = store.find_account("iban1")
            account.balance = Decimal("1.00")
            store.save_account(account)
            assert store.find_account("iban1").balance == Decimal("1.00")

    def test_nested_atomic_joins_outer_unit(self, store: LedgerStore):
        store.save_account(make_account("iban1"))

        with pytest.raises(RuntimeError):
            with store.atomic("iban1"):
                with store.atomic("iban1"):
                    account = store.find_account("iban1")
                    account.balance = Decimal("0")
                    store.save_account(account)
                raise RuntimeError("outer failure")

        assert store.find_account("iban1").balance == Decimal("100.00")

    def test_clear(self, store: LedgerStore):
        store.save_account(make_account())
        store.save_transaction(make_transaction())
        store.clear()
        assert store.count_accounts() == 0
        assert store.count_transactions() == 0

    def test_clear_restarts_transaction_ids(self, store: LedgerStore):
        store.save_transaction(make_transaction())
        store.save_transaction(make_transaction())
        store.clear()

        assert store.save_transaction(make_transaction()).id == 1


class TestInMemoryIsolation:
    """Locking behaviour specific to the in-memory store"""

    def test_uncommitted_writes_are_invisible_to_other_threads(self):
        store = InMemoryLedgerStore()
        store.save_account(make_account("iban1"))
        entered = threading.Event()
        release = threading.Event()

        def writer():
            with store.atomic("iban1"):
                account = store.find_account("iban1")
                account.balance = Decimal("0")
                store.save_account(account)
                entered.set()
                release.wait(timeout=5)

        thread = threading.Thread(target=writer)
        thread.start()
        assert entered.wait(timeout=5)

        assert store.find_account("iban1").balance == Decimal("100.00")

        release.set()
        thread.join(timeout=5)
        assert store.find_account("iban1").balance == Decimal("0")

    def test_lock_timeout_raises_conflict(self):
        """A held account lock surfaces as a retryable conflict"""
        store = InMemoryLedgerStore(lock_timeout=0.05)
        store.save_account(make_account("iban1"))
        entered = threading.Event()
        release = threading.Event()

        def holder():
            with store.atomic("iban1"):
                entered.set()
                release.wait(timeout=5)

        thread = threading.Thread(target=holder)
        thread.start()
        assert entered.wait(timeout=5)

        try:
            with pytest.raises(ConcurrencyConflictError) as exc_info:
                with store.atomic("iban1"):
                    pass
            assert exc_info.value.is_transient
        finally:
            release.set()
            thread.join(timeout=5)

    def test_account_locks_released_after_use(self):
        """Locks for unknown IBANs do not accumulate"""
        store = InMemoryLedgerStore()
        store.save_account(make_account("iban1"))
        engine = MoneyMovementEngine(store)

        for index in range(20):
            with pytest.raises(AccountNotFoundError):
                engine.deposit(TransactionRequest(
                    amount=Decimal("1.00"), type=TransactionType.DEPOSIT, to_iban=f"made-up-{index}"
                ))
        with store.atomic("iban1", "iban2"):
            with store.atomic("iban1"):
                assert set(store._account_locks) == {"iban1", "iban2"}

        assert store._account_locks == {}

    def test_lock_timeout_releases_lock_bookkeeping(self):
        store = InMemoryLedgerStore(lock_timeout=0.05)
        entered = threading.Event()
        release = threading.Event()

        def holder():
            with store.atomic("iban2"):
                entered.set()
                release.wait(timeout=5)

        thread = threading.Thread(target=holder)
        thread.start()
        assert entered.wait(timeout=5)

        try:
            with pytest.raises(ConcurrencyConflictError):
                with store.atomic("iban1", "iban2"):
                    pass
            assert set(store._account_locks) == {"iban2"}
        finally:
            release.set()
            thread.join(timeout=5)

        assert store._account_locks == {}

    def test_returned_records_are_copies(self):
        """Mutating a loaded account does not change the store"""
        store = InMemoryLedgerStore()
        store.save_account(make_account("iban1"))
        account = store.find_account("iban1")
        account.balance = Decimal("0")
        assert store.find_account("iban1").balance == Decimal("100.00")


class TestSQLitePersistence:
    """SQLite specific behaviour"""

    def test_data_survives_reopen(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = Path(temp_dir) / "ledger.db"
            store = SQLiteLedgerStore(db_path)
            store.save_account(make_account("iban1", balance="12.34"))
            store.save_transaction(make_transaction())
            store.close()

            reopened = SQLiteLedgerStore(db_path)
            assert reopened.find_account("iban1").balance == Decimal("12.34")
            assert reopened.count_transactions() == 1
            reopened.close()

    def test_in_memory_database(self):
        store = SQLiteLedgerStore()
        store.save_account(make_account())
        assert store.count_accounts() == 1
        store.close()


class TestCreateStore:
    """Test backend selection"""

    def test_memory_backend(self):
        assert isinstance(create_store("memory"), InMemoryLedgerStore)

    def test_sqlite_backend(self):
        store = create_store("sqlite", ":memory:")
        assert isinstance(store, SQLiteLedgerStore)
        store.close()

    def test_unknown_backend(self):
        with pytest.raises(LedgerError):
            create_store("postgres")
