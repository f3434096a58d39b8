"""
Pydantic schemas for API requests and responses
"""

from datetime import datetime
from typing import Any, Dict, Optional, Union
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..models import Account, Transaction, TransactionRequest, TransactionType, to_decimal


class CamelModel(BaseModel):
    """Wire models use camelCase field names"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class AccountModel(CamelModel):
    iban: str
    type: str = Field(..., description="Account type (CHECKING, SAVINGS, PRIVATE_LOAN)")
    balance: str = Field(..., description="Decimal balance as string, two decimals")
    routing_number: int
    reference_account_iban: Optional[str] = None
    customer_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_account(cls, account: Account) -> 'AccountModel':
        return cls(
            iban=account.iban,
            type=account.type.name,
            balance=str(account.rounded_balance),
            routing_number=account.routing_number,
            reference_account_iban=account.reference_account_iban,
            customer_id=account.customer_id,
            created_at=account.created_at,
            updated_at=account.updated_at,
        )


class TransactionModel(CamelModel):
    id: Optional[int] = None
    from_iban: Optional[str] = None
    to_iban: Optional[str] = None
    amount: str = Field(..., description="Decimal amount as string, two decimals")
    type: str = Field(..., description="Transaction type (DEPOSIT, WITHDRAW, TRANSFER)")
    created_at: Optional[datetime] = None

    @classmethod
    def from_transaction(cls, transaction: Transaction) -> 'TransactionModel':
        return cls(
            id=transaction.id,
            from_iban=transaction.from_iban,
            to_iban=transaction.to_iban,
            amount=str(transaction.rounded_amount),
            type=transaction.type.name,
            created_at=transaction.created_at,
        )


class BalanceModel(CamelModel):
    iban: str
    balance: str = Field(..., description="Decimal balance as string, two decimals")


class TransactionCommand(CamelModel):
    """Body of PATCH /api/v1/accounts/transaction"""
    from_iban: Optional[str] = None
    to_iban: Optional[str] = None
    amount: Union[str, int, float] = Field(..., description="Decimal amount as string or number")
    type: str = Field(..., description="Transaction type (DEPOSIT, WITHDRAW, TRANSFER)")

    def to_request(self) -> TransactionRequest:
        return TransactionRequest(
            from_iban=self.from_iban,
            to_iban=self.to_iban,
            amount=to_decimal(self.amount),
            type=TransactionType.parse(self.type),
        )
