"""
Transfer engine: move money between two bank accounts as one atomic unit.

A transfer posts a withdrawal on the source account and a deposit on the
destination account, each pointing at the other account through
``related_account_id``, and moves both running balances. Either all four
writes commit together or none do.

Preconditions are checked in a fixed order and the first failure wins:

    1. amount > 0                       InvalidAmountError
    2. source != destination            SameAccountError
    3. caller-supplied ids well formed  InvalidTransactionIdError
    4. source exists                    SourceAccountNotFoundError
    5. destination exists               DestinationAccountNotFoundError
    6. caller owns source, destination  AuthorizationError
    7. source balance >= amount         InsufficientFundsError
    8. transaction ids unused           DuplicateTransactionIdError

Steps 4-8 run inside the unit of work against rows locked for update, so the
funds check always sees the balance the commit will be validated against.
Transfers are not idempotent: the same request sent twice without explicit
transaction ids moves the money twice.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional

from bank_book.db.models import BankAccount, TransactionType
from bank_book.errors import (
    DestinationAccountNotFoundError,
    DuplicateTransactionIdError,
    InsufficientFundsError,
    InvalidTransactionIdError,
    SameAccountError,
    SourceAccountNotFoundError,
)
from bank_book.logging_config import get_logger
from bank_book.services.ledger import (
    SYSTEM,
    Initiator,
    apply_entry,
    build_entry,
    ensure_owner,
    normalize_transaction_id,
    require_positive_amount,
    run_atomic,
)

logger = get_logger("bank_book.services.transfer")


@dataclass
class TransferRequest:
    from_account_id: str
    to_account_id: str
    amount: Any
    description: Optional[str] = None
    date: Optional[datetime] = None
    category: Optional[str] = None
    reference: Optional[str] = None
    notes: Optional[str] = None
    withdrawal_transaction_id: Optional[str] = None
    deposit_transaction_id: Optional[str] = None
    initiator: Initiator = field(default=SYSTEM)


@dataclass(frozen=True)
class AccountBalance:
    id: str
    name: str
    new_balance: Decimal


@dataclass(frozen=True)
class TransferResult:
    from_account: AccountBalance
    to_account: AccountBalance
    amount: Decimal
    withdrawal_transaction: str
    deposit_transaction: str
    withdrawal_transaction_id: str
    deposit_transaction_id: str


class TransferEngine:
    def __init__(
        self,
        uow_factory: Callable[[], Any],
        max_retries: int = 3,
        timeout: Optional[float] = None,
    ):
        self._uow_factory = uow_factory
        self._max_retries = max_retries
        self._timeout = timeout

    async def transfer_funds(self, request: TransferRequest) -> TransferResult:
        logger.info(
            "Transfer request from=%s to=%s amount=%s",
            request.from_account_id,
            request.to_account_id,
            request.amount,
        )
        try:
            amount = require_positive_amount(request.amount)
            if request.from_account_id == request.to_account_id:
                raise SameAccountError()
            withdrawal_txn_id = normalize_transaction_id(request.withdrawal_transaction_id)
            deposit_txn_id = normalize_transaction_id(request.deposit_transaction_id)
            if withdrawal_txn_id == deposit_txn_id:
                raise InvalidTransactionIdError(
                    "Withdrawal and deposit transaction ids must be different"
                )

            async def work(uow) -> TransferResult:
                return await self._post(uow, request, amount, withdrawal_txn_id, deposit_txn_id)

            result = await run_atomic(
                self._uow_factory,
                work,
                max_retries=self._max_retries,
                timeout=self._timeout,
                label="transfer",
            )
        except Exception as e:
            logger.warning(
                "Transfer rejected from=%s to=%s amount=%s: %s",
                request.from_account_id,
                request.to_account_id,
                request.amount,
                e,
            )
            raise

        logger.info(
            "Transfer success from=%s to=%s amount=%s withdrawal=%s deposit=%s",
            result.from_account.id,
            result.to_account.id,
            result.amount,
            result.withdrawal_transaction_id,
            result.deposit_transaction_id,
        )
        return result

    async def _post(
        self,
        uow,
        request: TransferRequest,
        amount: Decimal,
        withdrawal_txn_id: str,
        deposit_txn_id: str,
    ) -> TransferResult:
        accounts = await uow.get_accounts_for_update([request.from_account_id, request.to_account_id])
        from_account: Optional[BankAccount] = accounts.get(request.from_account_id)
        if from_account is None:
            raise SourceAccountNotFoundError()
        to_account: Optional[BankAccount] = accounts.get(request.to_account_id)
        if to_account is None:
            raise DestinationAccountNotFoundError()

        ensure_owner(from_account, request.initiator, "source account")
        ensure_owner(to_account, request.initiator, "destination account")

        if Decimal(from_account.current_balance or 0) < amount:
            raise InsufficientFundsError(
                details={"accountId": from_account.id, "requested": str(amount)}
            )

        taken = await uow.find_existing_transaction_ids([withdrawal_txn_id, deposit_txn_id])
        if taken:
            raise DuplicateTransactionIdError(
                f"Transaction id already exists: {', '.join(sorted(taken))}",
                details={"transactionIds": sorted(taken)},
            )

        date = request.date or datetime.now(timezone.utc)
        withdrawal = build_entry(
            from_account,
            TransactionType.WITHDRAWAL,
            amount,
            withdrawal_txn_id,
            request.description or f"Transfer to {to_account.account_name}",
            date,
            request.initiator,
            category=request.category,
            reference=request.reference,
            notes=request.notes,
            related_account=to_account,
        )
        deposit = build_entry(
            to_account,
            TransactionType.DEPOSIT,
            amount,
            deposit_txn_id,
            request.description or f"Transfer from {from_account.account_name}",
            date,
            request.initiator,
            category=request.category,
            reference=request.reference,
            notes=request.notes,
            related_account=from_account,
        )

        uow.mark_posting()
        from_balance = apply_entry(from_account, withdrawal)
        to_balance = apply_entry(to_account, deposit)
        uow.add_all([withdrawal, deposit])

        return TransferResult(
            from_account=AccountBalance(from_account.id, from_account.account_name, from_balance),
            to_account=AccountBalance(to_account.id, to_account.account_name, to_balance),
            amount=amount,
            withdrawal_transaction=withdrawal.id,
            deposit_transaction=deposit.id,
            withdrawal_transaction_id=withdrawal.transaction_id,
            deposit_transaction_id=deposit.transaction_id,
        )
