"""
Ledger system container and request dependencies
"""

from fastapi import Request

from ..config import LedgerConfig
from ..engine import MoneyMovementEngine
from ..queries import AccountQueryService
from ..seed import load_initial_data
from ..storage import LedgerStore, create_store


class LedgerSystem:
    """Ledger components wired around one store"""

    def __init__(self, store: LedgerStore):
        self.store = store
        self.engine = MoneyMovementEngine(store)
        self.query_service = AccountQueryService(store)

    @classmethod
    def from_config(cls, config: LedgerConfig) -> 'LedgerSystem':
        """Build the store the configuration names and load initial data if enabled"""
        store = create_store(
            backend=config.storage_backend,
            database_path=config.database_path,
            lock_timeout=config.lock_timeout_seconds,
        )
        if config.seed_initial_data:
            load_initial_data(store)
        return cls(store)

    def close(self) -> None:
        self.store.close()


# Dependency to get the ledger system attached to the running app
def get_ledger_system(request: Request) -> LedgerSystem:
    return request.app.state.ledger_system
