"""
Money Movement Module

Applies deposits, withdrawals and transfers to accounts. Each movement runs in
one atomic unit of work: the involved accounts are locked, every rule is
checked before anything is written, and the account updates plus the
transaction record become visible together.
"""

from decimal import Decimal
from typing import Callable, Dict, Optional

from .errors import (
    AccountNotFoundError, InsufficientFundsError, MalformedInputError,
    OperationNotPermittedError, LedgerError
)
from .models import (
    MAX_AMOUNT_FRACTION_DIGITS, MAX_AMOUNT_INTEGER_DIGITS, Account, Operation, Transaction,
    TransactionRequest, TransactionType, money_context
)
from .storage import LedgerStore
from .logging_config import get_logger, log_action


class MoneyMovementEngine:
    """
    Applies money movements against a ledger store.

    Check order for every operation: account existence, then permission, then
    sufficiency. All checks run before the first write.
    """

    def __init__(self, store: LedgerStore):
        self.store = store
        self.logger = get_logger("account_ledger.engine")
        self._handlers: Dict[TransactionType, Callable[[TransactionRequest], Transaction]] = {
            TransactionType.DEPOSIT: self.deposit,
            TransactionType.WITHDRAW: self.withdraw,
            TransactionType.TRANSFER: self.transfer,
        }

    def apply(self, request: TransactionRequest) -> Transaction:
        """
        Dispatch a transaction command by its type

        Args:
            request: Transaction command

        Returns:
            Persisted Transaction record
        """
        handler = self._handlers.get(request.type)
        if handler is None:
            raise MalformedInputError(f"Unsupported transaction type: {request.type}")
        return handler(request)

    def deposit(self, request: TransactionRequest) -> Transaction:
        """
        Add money to ``request.to_iban``

        Args:
            request: Transaction command; ``to_iban`` and ``amount`` are used

        Returns:
            Persisted DEPOSIT transaction

        Raises:
            AccountNotFoundError: If the destination account does not exist
            OperationNotPermittedError: If the account type refuses deposits
        """
        self._validate_amount(request.amount)
        self._log_start("deposit", request)

        with self.store.atomic(request.to_iban):
            account = self._find_account(request.to_iban)
            self._check_permitted(account, Operation.DEPOSIT)

            with money_context():
                account.balance = account.balance + request.amount
            self.store.save_account(account)
            transaction = self.store.save_transaction(Transaction(
                from_iban=None,
                to_iban=account.iban,
                amount=request.amount,
                type=TransactionType.DEPOSIT,
            ))

        self._log_done("deposit", transaction)
        return transaction

    def withdraw(self, request: TransactionRequest) -> Transaction:
        """
        Take money out of ``request.from_iban``

        Args:
            request: Transaction command; ``from_iban`` and ``amount`` are used

        Returns:
            Persisted WITHDRAW transaction

        Raises:
            AccountNotFoundError: If the source account does not exist
            OperationNotPermittedError: If the account type refuses withdrawals
                or the balance is lower than the amount
        """
        self._validate_amount(request.amount)
        self._log_start("withdraw", request)

        with self.store.atomic(request.from_iban):
            account = self._find_account(request.from_iban)
            self._check_permitted(account, Operation.WITHDRAW)
            self._check_sufficient_funds(account, request.amount)

            with money_context():
                account.balance = account.balance - request.amount
            self.store.save_account(account)
            transaction = self.store.save_transaction(Transaction(
                from_iban=account.iban,
                to_iban=None,
                amount=request.amount,
                type=TransactionType.WITHDRAW,
            ))

        self._log_done("withdraw", transaction)
        return transaction

    def transfer(self, request: TransactionRequest) -> Transaction:
        """
        Move money from ``request.from_iban`` to ``request.to_iban``

        Permission is decided by the source account's type. A SAVINGS source
        may only send to its reference account.

        Args:
            request: Transaction command

        Returns:
            Persisted TRANSFER transaction

        Raises:
            AccountNotFoundError: If either account does not exist
            OperationNotPermittedError: If the source type refuses the transfer
                or the source balance is lower than the amount
        """
        self._validate_amount(request.amount)
        self._log_start("transfer", request)

        with self.store.atomic(request.from_iban, request.to_iban):
            source = self._find_account(request.from_iban)
            destination = self._find_account(request.to_iban)
            self._check_transfer_permitted(source, destination)
            self._check_sufficient_funds(source, request.amount)

            with money_context():
                source.balance = source.balance - request.amount
                destination.balance = destination.balance + request.amount
            self.store.save_account(source)
            self.store.save_account(destination)
            transaction = self.store.save_transaction(Transaction(
                from_iban=source.iban,
                to_iban=destination.iban,
                amount=request.amount,
                type=TransactionType.TRANSFER,
            ))

        self._log_done("transfer", transaction)
        return transaction

    def _find_account(self, iban: Optional[str]) -> Account:
        account = self.store.find_account(iban) if iban else None
        if account is None:
            self._reject(AccountNotFoundError(iban))
        return account

    def _check_permitted(self, account: Account, operation: Operation) -> None:
        if not account.allows(operation):
            self._reject(OperationNotPermittedError(), account)

    def _check_transfer_permitted(self, source: Account, destination: Account) -> None:
        if source.iban == destination.iban:
            self._reject(OperationNotPermittedError(), source)
        if source.allows(Operation.TRANSFER):
            return
        if (source.allows(Operation.REFERENCE_TRANSFER)
                and destination.iban == source.reference_account_iban):
            return
        self._reject(OperationNotPermittedError(), source)

    def _check_sufficient_funds(self, account: Account, amount: Decimal) -> None:
        if account.balance < amount:
            self._reject(InsufficientFundsError(), account)

    @staticmethod
    def _validate_amount(amount: Decimal) -> None:
        if amount <= 0:
            raise MalformedInputError("Transaction amount must be positive.")
        if amount.adjusted() >= MAX_AMOUNT_INTEGER_DIGITS:
            raise MalformedInputError(
                f"Transaction amount must have at most {MAX_AMOUNT_INTEGER_DIGITS} integer digits."
            )
        if -amount.as_tuple().exponent > MAX_AMOUNT_FRACTION_DIGITS:
            raise MalformedInputError(
                f"Transaction amount must have at most {MAX_AMOUNT_FRACTION_DIGITS} fractional digits."
            )

    def _log_start(self, action: str, request: TransactionRequest) -> None:
        log_action(
            self.logger, "info", f"Performing {action} operation",
            action=action,
            extra={
                "from_iban": request.from_iban,
                "to_iban": request.to_iban,
                "amount": str(request.amount),
            }
        )

    def _log_done(self, action: str, transaction: Transaction) -> None:
        log_action(
            self.logger, "info", f"Completed {action} operation",
            action=action, resource=f"transaction:{transaction.id}",
            extra={
                "from_iban": transaction.from_iban,
                "to_iban": transaction.to_iban,
                "amount": str(transaction.amount),
            }
        )

    def _reject(self, error: LedgerError, account: Optional[Account] = None) -> None:
        """Log a refused operation and raise the error"""
        log_action(
            self.logger, "warning", error.message,
            action="reject", resource=f"account:{account.iban}" if account else None,
            extra={"kind": error.kind.value}
        )
        raise error
