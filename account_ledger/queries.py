"""
Account Query Module

Read-only lookups over the ledger store: accounts, balances and transaction
history.
"""

from decimal import Decimal
from typing import Iterable, List

from .errors import AccountNotFoundError
from .models import Account, AccountType, Transaction, round_money
from .storage import LedgerStore
from .logging_config import get_logger


class AccountQueryService:
    """Balance, history and account lookups"""

    def __init__(self, store: LedgerStore):
        self.store = store
        self.logger = get_logger("account_ledger.queries")

    def get_account(self, iban: str) -> Account:
        """
        Get an account by IBAN

        Raises:
            AccountNotFoundError: If no account has this IBAN
        """
        account = self.store.find_account(iban)
        if account is None:
            raise AccountNotFoundError(iban)
        return account

    def get_balance(self, iban: str) -> Decimal:
        """Current balance rounded to two decimals (half-to-even)"""
        return round_money(self.get_account(iban).balance)

    def get_account_transaction_history(self, iban: str) -> List[Transaction]:
        """
        Get every transaction where the account is source or destination

        Args:
            iban: Account IBAN

        Returns:
            Transactions in insertion order

        Raises:
            AccountNotFoundError: If no account has this IBAN
        """
        self.get_account(iban)
        transactions = self.store.find_transactions_by_iban(iban)
        self.logger.debug(f"Found {len(transactions)} transactions for {iban}")
        return transactions

    def get_accounts(self, account_types: Iterable[AccountType]) -> List[Account]:
        """Accounts whose type is in the given set; an empty set matches nothing"""
        wanted = set(account_types)
        if not wanted:
            return []
        return self.store.find_accounts_by_type(wanted)
