"""
Bank account lifecycle and read-side projections.

Balances are never written here: opening an account seeds current_balance
from opening_balance, and afterwards only postings move it.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from bank_book.db.models import AccountType, BankAccount, BankTransaction
from bank_book.errors import (
    AccountNotFoundError,
    DuplicateAccountError,
    HasDependentTransactionsError,
    TransactionNotFoundError,
    ValidationError,
)
from bank_book.logging_config import get_logger
from bank_book.services.ledger import (
    CENTS,
    SYSTEM,
    Initiator,
    UserInitiated,
    ensure_owner,
    quantize_amount,
    run_atomic,
)

logger = get_logger("bank_book.services.accounts")

UPDATABLE_FIELDS = (
    "account_name",
    "account_number",
    "bank_name",
    "branch_name",
    "account_type",
    "is_active",
)

RECENT_TRANSACTIONS = 10


@dataclass(frozen=True)
class AccountsDashboard:
    total_accounts: int
    active_accounts: int
    total_balance: Decimal
    accounts: List[BankAccount]


@dataclass(frozen=True)
class AccountSummary:
    account: BankAccount
    recent_transactions: List[BankTransaction]
    total_deposits: Decimal
    total_withdrawals: Decimal
    ledger_balance: Decimal

    @property
    def balanced(self) -> bool:
        """True when the running balance matches opening balance plus postings."""
        return self.ledger_balance == Decimal(self.account.current_balance)


@dataclass(frozen=True)
class Reconciliation:
    account: BankAccount
    date: datetime
    statement_balance: Decimal
    system_balance: Decimal
    difference: Decimal


def _validate_account_type(value: Any) -> str:
    try:
        return AccountType(value).value
    except ValueError:
        allowed = ", ".join(t.value for t in AccountType)
        raise ValidationError(f"Account type must be one of: {allowed}")


class AccountService:
    def __init__(self, uow_factory: Callable[[], Any], max_retries: int = 3):
        self._uow_factory = uow_factory
        self._max_retries = max_retries

    async def list_accounts(self) -> List[BankAccount]:
        async with self._uow_factory() as uow:
            return await uow.list_accounts()

    async def dashboard(self) -> AccountsDashboard:
        accounts = await self.list_accounts()
        total = sum((Decimal(a.current_balance or 0) for a in accounts), Decimal("0"))
        return AccountsDashboard(
            total_accounts=len(accounts),
            active_accounts=sum(1 for a in accounts if a.is_active),
            total_balance=total.quantize(CENTS),
            accounts=accounts,
        )

    async def get_account(self, account_id: str) -> BankAccount:
        async with self._uow_factory() as uow:
            return await self._require_account(uow, account_id)

    async def create_account(self, data: Dict[str, Any], initiator: Initiator = SYSTEM) -> BankAccount:
        owner = initiator.user_id if isinstance(initiator, UserInitiated) else data.get("user_id")
        opening_balance = quantize_amount(data.get("opening_balance") or 0)
        account_type = _validate_account_type(data.get("account_type") or AccountType.CHECKING.value)

        async with self._uow_factory() as uow:
            existing = await uow.find_account_by_number(data["account_number"], data["bank_name"], owner)
            if existing is not None:
                logger.warning(
                    "Duplicate account rejected number=%s bank=%s", data["account_number"], data["bank_name"]
                )
                raise DuplicateAccountError()

            now = datetime.now(timezone.utc)
            account = BankAccount(
                id=str(uuid4()),
                user_id=owner,
                account_name=data["account_name"],
                account_number=data["account_number"],
                bank_name=data["bank_name"],
                branch_name=data.get("branch_name"),
                account_type=account_type,
                opening_balance=opening_balance,
                current_balance=opening_balance,
                is_active=True,
                created_at=now,
                updated_at=now,
            )
            uow.add(account)
            await uow.commit()

        logger.info("Created bank account id=%s name=%s", account.id, account.account_name)
        return account

    async def update_account(
        self, account_id: str, changes: Dict[str, Any], initiator: Initiator = SYSTEM
    ) -> BankAccount:
        changes = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS}
        if "account_type" in changes:
            changes["account_type"] = _validate_account_type(changes["account_type"])

        async def work(uow) -> BankAccount:
            account = await self._require_account(uow, account_id)
            ensure_owner(account, initiator)
            applied = dict(changes)
            if "account_number" in applied and await uow.has_transactions(account_id):
                # past postings stay traceable to the number they were made under
                logger.info("Ignoring account_number change on account %s with transactions", account_id)
                applied.pop("account_number")
            for name, value in applied.items():
                setattr(account, name, value)
            account.updated_at = datetime.now(timezone.utc)
            return account

        account = await run_atomic(self._uow_factory, work, max_retries=self._max_retries, label="account update")
        logger.info("Updated bank account id=%s fields=%s", account_id, sorted(changes))
        return account

    async def delete_account(self, account_id: str, initiator: Initiator = SYSTEM) -> None:
        async with self._uow_factory() as uow:
            account = await self._require_account(uow, account_id)
            ensure_owner(account, initiator)
            if await uow.has_transactions(account_id):
                logger.warning("Refused delete of account %s with transactions", account_id)
                raise HasDependentTransactionsError(details={"accountId": account_id})
            await uow.delete(account)
            await uow.commit()
        logger.info("Deleted bank account id=%s", account_id)

    async def account_summary(self, account_id: str) -> AccountSummary:
        async with self._uow_factory() as uow:
            account = await self._require_account(uow, account_id)
            recent = await uow.list_transactions(account_id, limit=RECENT_TRANSACTIONS)
            deposits, withdrawals = await uow.transaction_totals(account_id)

        deposits = deposits.quantize(CENTS)
        withdrawals = withdrawals.quantize(CENTS)
        ledger = (Decimal(account.opening_balance or 0) + deposits - withdrawals).quantize(CENTS)
        return AccountSummary(
            account=account,
            recent_transactions=recent,
            total_deposits=deposits,
            total_withdrawals=withdrawals,
            ledger_balance=ledger,
        )

    async def reconcile(
        self,
        account_id: str,
        statement_balance: Any,
        reconciliation_date: Optional[datetime] = None,
        notes: Optional[str] = None,
        initiator: Initiator = SYSTEM,
    ) -> Reconciliation:
        statement = quantize_amount(statement_balance)

        async def work(uow) -> Reconciliation:
            account = await self._require_account(uow, account_id)
            ensure_owner(account, initiator)
            account.last_reconciled = reconciliation_date or datetime.now(timezone.utc)
            account.reconciliation_notes = notes or ""
            account.updated_at = datetime.now(timezone.utc)
            system_balance = Decimal(account.current_balance)
            return Reconciliation(
                account=account,
                date=account.last_reconciled,
                statement_balance=statement,
                system_balance=system_balance,
                difference=(statement - system_balance).quantize(CENTS),
            )

        result = await run_atomic(self._uow_factory, work, max_retries=self._max_retries, label="reconciliation")
        logger.info(
            "Reconciled account id=%s statement=%s system=%s difference=%s",
            account_id,
            result.statement_balance,
            result.system_balance,
            result.difference,
        )
        return result

    async def list_transactions(self, account_id: str, limit: int = 20) -> List[BankTransaction]:
        async with self._uow_factory() as uow:
            await self._require_account(uow, account_id)
            return await uow.list_transactions(account_id, limit=limit)

    async def set_transaction_reconciled(
        self,
        transaction_pk: str,
        is_reconciled: bool,
        notes: Optional[str] = None,
        initiator: Initiator = SYSTEM,
    ) -> BankTransaction:
        async with self._uow_factory() as uow:
            txn = await uow.get_transaction(transaction_pk)
            if txn is None:
                raise TransactionNotFoundError()
            account = await self._require_account(uow, txn.account_id)
            ensure_owner(account, initiator)
            txn.is_reconciled = is_reconciled
            if notes is not None:
                txn.notes = notes
            txn.updated_at = datetime.now(timezone.utc)
            await uow.commit()
        logger.info("Transaction %s reconciled=%s", txn.transaction_id, is_reconciled)
        return txn

    @staticmethod
    async def _require_account(uow, account_id: str) -> BankAccount:
        account = await uow.get_account(account_id)
        if account is None:
            raise AccountNotFoundError()
        return account
