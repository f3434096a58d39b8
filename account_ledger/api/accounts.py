"""
Account endpoints
"""

from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status

from .dependencies import LedgerSystem, get_ledger_system
from .schemas import AccountModel, BalanceModel, TransactionCommand, TransactionModel
from ..errors import MalformedInputError
from ..models import AccountType


router = APIRouter()


@router.get("")
def get_accounts(
    account_types: Optional[List[str]] = Query(
        None, alias="accountTypes",
        description="Account types, comma-separated or repeated (SAVINGS,CHECKING,PRIVATE_LOAN)"
    ),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get accounts filtered by account types"""
    types = AccountType.parse_many(account_types or [])
    if not types:
        raise MalformedInputError("Query parameter accountTypes is required.")

    accounts = system.query_service.get_accounts(types)
    return [AccountModel.from_account(account).to_wire() for account in accounts]


@router.get("/balance")
def get_balance(
    iban: str = Query(..., description="IBAN"),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get current account balance"""
    balance = system.query_service.get_balance(iban)
    return BalanceModel(iban=iban, balance=str(balance)).to_wire()


@router.get("/transactions")
def get_account_transaction_history(
    iban: str = Query(..., description="IBAN"),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get account transaction history"""
    transactions = system.query_service.get_account_transaction_history(iban)
    return [TransactionModel.from_transaction(txn).to_wire() for txn in transactions]


@router.patch("/transaction", status_code=status.HTTP_204_NO_CONTENT)
def apply_transaction(
    command: TransactionCommand,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Perform a DEPOSIT, WITHDRAW or TRANSFER"""
    system.engine.apply(command.to_request())
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{iban}")
def get_account(
    iban: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get account details"""
    account = system.query_service.get_account(iban)
    return AccountModel.from_account(account).to_wire()
