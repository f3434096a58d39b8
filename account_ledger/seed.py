"""
Initial ledger data loaded at startup.

Run with: python -m account_ledger.seed
"""

from dataclasses import replace
from decimal import Decimal
from typing import List

from .models import Account, AccountType
from .storage import LedgerStore
from .logging_config import get_logger


logger = get_logger("account_ledger.seed")


def initial_accounts() -> List[Account]:
    """The four demo accounts the service starts with"""
    checking = Account(
        iban="DE89370400440532013000",
        type=AccountType.CHECKING,
        balance=Decimal("100.00"),
        routing_number=12345,
        customer_id="1",
    )
    return [
        checking,
        replace(checking, iban="DE75512108001245126199", type=AccountType.SAVINGS,
                reference_account_iban="DE89370400440532013000"),
        replace(checking, iban="DE56500105177124582257", type=AccountType.PRIVATE_LOAN),
        replace(checking, iban="DE07500105176735774838", customer_id="2"),
    ]


def load_initial_data(store: LedgerStore) -> int:
    """
    Save the demo accounts into an empty store.

    Returns:
        Number of accounts written (0 when the store already holds accounts)
    """
    if store.count_accounts() > 0:
        logger.info("Ledger already holds accounts, skipping initial data")
        return 0

    accounts = initial_accounts()
    with store.atomic(*[account.iban for account in accounts]):
        for account in accounts:
            store.save_account(account)

    logger.info(f"Loaded {len(accounts)} initial accounts")
    return len(accounts)


if __name__ == "__main__":
    from .config import get_config
    from .logging_config import setup_logging
    from .storage import create_store

    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format)
    store = create_store(config.storage_backend, config.database_path, config.lock_timeout_seconds)
    try:
        load_initial_data(store)
    finally:
        store.close()
