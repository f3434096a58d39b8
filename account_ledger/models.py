"""
Ledger Data Model Module

Accounts, transactions and the per-account-type permission table. All monetary
values are Decimal; rounding to two places (half-to-even) happens only when a
value is read back for display.
"""

from decimal import (
    Context, Decimal, InvalidOperation, MAX_EMAX, MAX_PREC, MIN_EMIN, ROUND_HALF_EVEN, localcontext
)
from datetime import datetime
from dataclasses import dataclass, asdict
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Union
from enum import Enum

from .errors import MalformedInputError


CENTS = Decimal("0.01")

# Largest accepted amount is just below 10**MAX_AMOUNT_INTEGER_DIGITS
MAX_AMOUNT_INTEGER_DIGITS = 30
MAX_AMOUNT_FRACTION_DIGITS = 16

# Addition, subtraction and quantize never round under this context
MONEY_CONTEXT = Context(prec=MAX_PREC, Emax=MAX_EMAX, Emin=MIN_EMIN, rounding=ROUND_HALF_EVEN)


class Operation(Enum):
    """Money movements an account type may perform"""
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    TRANSFER = "transfer"                      # To any account
    REFERENCE_TRANSFER = "reference_transfer"  # Only to the reference account


class AccountType(Enum):
    """Banking account types"""
    CHECKING = "checking"
    SAVINGS = "savings"
    PRIVATE_LOAN = "private-loan"

    @classmethod
    def parse(cls, tag: str) -> 'AccountType':
        """
        Parse an account type tag.

        Accepts the enum name (``PRIVATE_LOAN``) or the wire tag
        (``private-loan``), case-insensitively.

        Raises:
            MalformedInputError: If the tag names no account type
        """
        cleaned = (tag or "").strip()
        for account_type in cls:
            if cleaned.upper() == account_type.name or cleaned.lower() == account_type.value:
                return account_type
        raise MalformedInputError(f"Invalid account type: {tag!r}")

    @classmethod
    def parse_many(cls, tags: Iterable[str]) -> List['AccountType']:
        """Parse tags that may be repeated and/or comma-separated"""
        parsed = []
        for tag in tags:
            for part in tag.split(","):
                if part.strip():
                    parsed.append(cls.parse(part))
        return parsed


class TransactionType(Enum):
    """Types of completed money movements"""
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    TRANSFER = "transfer"

    @classmethod
    def parse(cls, tag: str) -> 'TransactionType':
        cleaned = (tag or "").strip()
        for transaction_type in cls:
            if cleaned.upper() == transaction_type.name or cleaned.lower() == transaction_type.value:
                return transaction_type
        raise MalformedInputError(f"Invalid transaction type: {tag!r}")


# Single source of truth for permission checks
ALLOWED_OPERATIONS: Dict[AccountType, FrozenSet[Operation]] = {
    AccountType.CHECKING: frozenset({Operation.DEPOSIT, Operation.WITHDRAW, Operation.TRANSFER}),
    AccountType.SAVINGS: frozenset({Operation.DEPOSIT, Operation.WITHDRAW, Operation.REFERENCE_TRANSFER}),
    AccountType.PRIVATE_LOAN: frozenset({Operation.DEPOSIT}),
}


def allowed_operations(account_type: AccountType) -> FrozenSet[Operation]:
    """Operations permitted for an account type"""
    return ALLOWED_OPERATIONS.get(account_type, frozenset())


def to_decimal(value: Union[Decimal, str, int, float]) -> Decimal:
    """
    Convert a wire or stored value to an exact Decimal.

    Floats go through ``str`` so that 50.1 becomes Decimal('50.1') rather than
    its binary expansion.

    Raises:
        MalformedInputError: If the value is not a finite number
    """
    if isinstance(value, bool):
        raise MalformedInputError(f"Invalid amount: {value!r}")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise MalformedInputError(f"Invalid amount: {value!r}")
    if not result.is_finite():
        raise MalformedInputError(f"Invalid amount: {value!r}")
    return result


def round_money(value: Decimal) -> Decimal:
    """Quantize to two fractional digits using round-half-to-even"""
    with money_context():
        return value.quantize(CENTS, rounding=ROUND_HALF_EVEN)


def money_context():
    """Decimal context for balance arithmetic, exact at any magnitude"""
    return localcontext(MONEY_CONTEXT)


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    return value


@dataclass
class Account:
    """
    Bank account keyed by its IBAN.

    ``balance`` holds the exact stored value; use ``rounded_balance`` for
    anything shown to a caller.
    """
    iban: str
    type: AccountType
    balance: Decimal
    routing_number: int
    customer_id: str
    reference_account_iban: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not isinstance(self.balance, Decimal):
            self.balance = to_decimal(self.balance)
        if not isinstance(self.type, AccountType):
            self.type = AccountType.parse(self.type)

    @property
    def rounded_balance(self) -> Decimal:
        return round_money(self.balance)

    def allows(self, operation: Operation) -> bool:
        """Check the permission table for this account's type"""
        return operation in allowed_operations(self.type)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        result['type'] = self.type.value
        result['balance'] = str(self.balance)
        result['created_at'] = _format_datetime(self.created_at)
        result['updated_at'] = _format_datetime(self.updated_at)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Account':
        """Create instance from dictionary"""
        return cls(
            iban=data['iban'],
            type=AccountType(data['type']),
            balance=Decimal(str(data['balance'])),
            routing_number=int(data['routing_number']),
            customer_id=str(data['customer_id']),
            reference_account_iban=data.get('reference_account_iban'),
            created_at=_parse_datetime(data.get('created_at')),
            updated_at=_parse_datetime(data.get('updated_at')),
        )


@dataclass
class Transaction:
    """Immutable record of a completed money movement"""
    from_iban: Optional[str]
    to_iban: Optional[str]
    amount: Decimal
    type: TransactionType
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            self.amount = to_decimal(self.amount)

    @property
    def rounded_amount(self) -> Decimal:
        return round_money(self.amount)

    def involves(self, iban: str) -> bool:
        return iban in (self.from_iban, self.to_iban)

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result['type'] = self.type.value
        result['amount'] = str(self.amount)
        result['created_at'] = _format_datetime(self.created_at)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transaction':
        return cls(
            id=data.get('id'),
            from_iban=data.get('from_iban'),
            to_iban=data.get('to_iban'),
            amount=Decimal(str(data['amount'])),
            type=TransactionType(data['type']),
            created_at=_parse_datetime(data.get('created_at')),
        )


@dataclass(frozen=True)
class TransactionRequest:
    """
    Command to move money: ``{from_iban, to_iban, amount, type}``.

    Empty IBAN strings are treated as absent, so a deposit may carry
    ``from_iban=""`` on the wire.
    """
    amount: Decimal
    type: TransactionType
    from_iban: Optional[str] = None
    to_iban: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'amount', to_decimal(self.amount))
        if not isinstance(self.type, TransactionType):
            object.__setattr__(self, 'type', TransactionType.parse(self.type))
        object.__setattr__(self, 'from_iban', self.from_iban or None)
        object.__setattr__(self, 'to_iban', self.to_iban or None)

    def to_transaction(self) -> Transaction:
        """Build the record persisted on success"""
        return Transaction(
            from_iban=self.from_iban,
            to_iban=self.to_iban,
            amount=self.amount,
            type=self.type,
        )
