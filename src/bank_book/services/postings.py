"""
Single-account deposits and withdrawals.

These are the building blocks the transfer engine pairs up; on their own
they back cash-in / cash-out flows such as petty cash replenishment.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional

from bank_book.db.models import BankTransaction, TransactionType
from bank_book.errors import (
    AccountNotFoundError,
    DuplicateTransactionIdError,
    InsufficientFundsError,
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

logger = get_logger("bank_book.services.postings")


@dataclass
class PostingRequest:
    account_id: str
    amount: Any
    description: Optional[str] = None
    date: Optional[datetime] = None
    category: Optional[str] = None
    reference: Optional[str] = None
    notes: Optional[str] = None
    transaction_id: Optional[str] = None
    initiator: Initiator = field(default=SYSTEM)


@dataclass(frozen=True)
class PostingResult:
    transaction: BankTransaction
    new_balance: Decimal


class PostingService:
    def __init__(
        self,
        uow_factory: Callable[[], Any],
        max_retries: int = 3,
        timeout: Optional[float] = None,
    ):
        self._uow_factory = uow_factory
        self._max_retries = max_retries
        self._timeout = timeout

    async def deposit(self, request: PostingRequest) -> PostingResult:
        return await self._post(request, TransactionType.DEPOSIT)

    async def withdraw(self, request: PostingRequest) -> PostingResult:
        return await self._post(request, TransactionType.WITHDRAWAL)

    async def _post(self, request: PostingRequest, txn_type: TransactionType) -> PostingResult:
        logger.info("%s request account=%s amount=%s", txn_type.value, request.account_id, request.amount)
        amount = require_positive_amount(request.amount)
        txn_id = normalize_transaction_id(request.transaction_id)

        async def work(uow) -> PostingResult:
            accounts = await uow.get_accounts_for_update([request.account_id])
            account = accounts.get(request.account_id)
            if account is None:
                raise AccountNotFoundError()
            ensure_owner(account, request.initiator)
            if txn_type is TransactionType.WITHDRAWAL and Decimal(account.current_balance or 0) < amount:
                logger.warning(
                    "Withdrawal rejected - insufficient funds account=%s balance=%s amount=%s",
                    account.id,
                    account.current_balance,
                    amount,
                )
                raise InsufficientFundsError("Insufficient funds in account")
            if await uow.find_existing_transaction_ids([txn_id]):
                raise DuplicateTransactionIdError(f"Transaction id already exists: {txn_id}")

            default_description = "Deposit" if txn_type is TransactionType.DEPOSIT else "Withdrawal"
            entry = build_entry(
                account,
                txn_type,
                amount,
                txn_id,
                request.description or default_description,
                request.date or datetime.now(timezone.utc),
                request.initiator,
                category=request.category,
                reference=request.reference,
                notes=request.notes,
            )
            uow.mark_posting()
            new_balance = apply_entry(account, entry)
            uow.add(entry)
            return PostingResult(transaction=entry, new_balance=new_balance)

        result = await run_atomic(
            self._uow_factory,
            work,
            max_retries=self._max_retries,
            timeout=self._timeout,
            label=txn_type.value,
        )
        logger.info(
            "%s posted account=%s amount=%s txn=%s new_balance=%s",
            txn_type.value,
            request.account_id,
            amount,
            result.transaction.transaction_id,
            result.new_balance,
        )
        return result
