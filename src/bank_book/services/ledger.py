"""
Posting primitives shared by the transfer engine and single-account postings.

``apply_entry`` is the only code path that changes an account's running
balance, and it only runs inside ``run_atomic``, which gives every attempt a
fresh unit of work and retries on optimistic-lock conflicts.
"""

import asyncio
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union
from uuid import uuid4

from bank_book.db.models import BankAccount, BankTransaction, TransactionType
from bank_book.errors import (
    AuthorizationError,
    ConcurrentModificationError,
    InvalidAmountError,
    InvalidTransactionIdError,
    PersistenceError,
)
from bank_book.logging_config import get_logger

logger = get_logger("bank_book.services.ledger")

CENTS = Decimal("0.01")
# largest magnitude a Numeric(15, 2) column holds
MAX_AMOUNT = Decimal("9999999999999.99")
TRANSACTION_ID_MAX_LENGTH = 64
_TRANSACTION_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:\-]*$")

T = TypeVar("T")


@dataclass(frozen=True)
class SystemInitiated:
    """Posting requested by the service itself; ownership is not checked."""

    user_id: None = None


@dataclass(frozen=True)
class UserInitiated:
    """Posting requested by an authenticated user, who must own the accounts."""

    user_id: str


Initiator = Union[SystemInitiated, UserInitiated]

SYSTEM = SystemInitiated()


def quantize_amount(value: Any) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmountError(f"Amount is not a number: {value!r}")
    if not amount.is_finite():
        raise InvalidAmountError(f"Amount is not a number: {value!r}")
    if abs(amount) > MAX_AMOUNT:
        raise InvalidAmountError(f"Amount must not exceed {MAX_AMOUNT}")
    try:
        return amount.quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise InvalidAmountError(f"Amount is not a number: {value!r}")


def require_positive_amount(value: Any) -> Decimal:
    amount = quantize_amount(value)
    if amount <= 0:
        raise InvalidAmountError()
    return amount


def normalize_transaction_id(value: Optional[str]) -> str:
    """Return a caller-supplied id after format checks, or a fresh UUID."""
    if value is None:
        return str(uuid4())
    txn_id = value.strip()
    if not txn_id:
        raise InvalidTransactionIdError("Transaction id cannot be blank")
    if len(txn_id) > TRANSACTION_ID_MAX_LENGTH:
        raise InvalidTransactionIdError(
            f"Transaction id must be at most {TRANSACTION_ID_MAX_LENGTH} characters"
        )
    if not _TRANSACTION_ID_RE.match(txn_id):
        raise InvalidTransactionIdError(
            "Transaction id may contain only letters, digits, '.', '_', ':' and '-'"
        )
    return txn_id


def ensure_owner(account: BankAccount, initiator: Initiator, role: str = "account") -> None:
    if isinstance(initiator, SystemInitiated):
        return
    if account.user_id is not None and account.user_id != initiator.user_id:
        raise AuthorizationError(
            f"User not authorized for {role}",
            details={"accountId": account.id},
        )


def build_entry(
    account: BankAccount,
    txn_type: TransactionType,
    amount: Decimal,
    transaction_id: str,
    description: str,
    date: datetime,
    initiator: Initiator,
    category: Optional[str] = None,
    reference: Optional[str] = None,
    notes: Optional[str] = None,
    related_account: Optional[BankAccount] = None,
) -> BankTransaction:
    now = datetime.now(timezone.utc)
    return BankTransaction(
        id=str(uuid4()),
        transaction_id=transaction_id,
        account_id=account.id,
        user_id=initiator.user_id,
        amount=amount,
        type=txn_type.value,
        date=date,
        description=description,
        category=category or ("Transfer" if related_account is not None else "Uncategorized"),
        reference=reference or "",
        notes=notes or "",
        is_reconciled=False,
        is_transfer=related_account is not None,
        related_account_id=related_account.id if related_account is not None else None,
        attachments=[],
        created_at=now,
        updated_at=now,
    )


def apply_entry(account: BankAccount, entry: BankTransaction) -> Decimal:
    """Move the account's running balance by the entry; return the new balance."""
    current = Decimal(account.current_balance or 0)
    if entry.type == TransactionType.WITHDRAWAL.value:
        new_balance = current - entry.amount
    else:
        new_balance = current + entry.amount
    if abs(new_balance) > MAX_AMOUNT:
        raise InvalidAmountError(f"Balance of account {account.id} would exceed {MAX_AMOUNT}")
    account.current_balance = new_balance.quantize(CENTS)
    account.updated_at = entry.updated_at
    return account.current_balance


async def run_atomic(
    uow_factory: Callable[[], Any],
    work: Callable[[Any], Awaitable[T]],
    max_retries: int = 3,
    timeout: Optional[float] = None,
    label: str = "posting",
) -> T:
    """Run ``work(uow)`` inside a fresh unit of work and commit its writes.

    ``work`` validates and stages its writes; it does not commit. Any
    exception leaves the unit of work uncommitted and it rolls back on exit.
    Validation errors propagate at once; ``ConcurrentModificationError`` is
    retried up to ``max_retries`` times (re-reading balances each time).

    ``timeout`` bounds the read and validation phase only. Once the commit
    has started it runs to completion, so a reported timeout always means
    nothing was posted.
    """
    tries = 0
    while True:
        tries += 1
        try:
            async with uow_factory() as uow:
                try:
                    if timeout is None:
                        result = await work(uow)
                    else:
                        result = await asyncio.wait_for(work(uow), timeout=timeout)
                except asyncio.TimeoutError as e:
                    logger.error("%s timed out after %ss; rolled back", label, timeout)
                    raise PersistenceError(f"{label.capitalize()} timed out; nothing was posted") from e
                await uow.commit()
                return result
        except ConcurrentModificationError:
            if tries > max_retries:
                logger.warning("%s abandoned after %s conflicting attempts", label, tries)
                raise
            logger.info("%s conflicted with a concurrent writer; retry %s/%s", label, tries, max_retries)
