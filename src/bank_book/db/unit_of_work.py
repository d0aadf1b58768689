"""
Unit of work over one AsyncSession transaction.

Services never touch a session directly: they open a unit of work, read and
stage changes through it, and then ``commit()`` it (postings do this through
``run_atomic``). Leaving the ``async with`` block without a successful
commit rolls everything back, so a failure at any step leaves no partial
state behind.
"""

from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from bank_book.db.immutability import LEDGER_POSTING_FLAG
from bank_book.db.models import BankAccount, BankTransaction, TransactionType
from bank_book.errors import (
    ConcurrentModificationError,
    DuplicateTransactionIdError,
    PersistenceError,
)
from bank_book.logging_config import get_logger

logger = get_logger("bank_book.db.unit_of_work")


def _is_duplicate_transaction_id(error: IntegrityError) -> bool:
    """True when the unique constraint on bank_transactions.transaction_id fired."""
    # sqlite: "UNIQUE constraint failed: bank_transactions.transaction_id"
    # postgres: duplicate key value violates unique constraint "bank_transactions_transaction_id_key"
    text = str(error.orig).lower()
    return "transaction_id" in text and ("unique" in text or "duplicate" in text)


class SqlAlchemyUnitOfWork:
    def __init__(self, session_factory):
        self._session_factory = session_factory
        self.session = None
        self.committed = False

    async def __aenter__(self) -> "SqlAlchemyUnitOfWork":
        self.session = self._session_factory()
        self.committed = False
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is not None and not self.committed:
                await self.rollback()
        finally:
            # close() ends any open transaction without expiring loaded rows,
            # so read-only callers can keep using what they fetched
            await self.session.close()

    # ------------------------------------------------------------------ reads

    async def get_account(self, account_id: str, for_update: bool = False) -> Optional[BankAccount]:
        stmt = select(BankAccount).where(BankAccount.id == account_id)
        if for_update:
            stmt = stmt.with_for_update()
        return await self._scalar(stmt)

    async def get_accounts_for_update(self, account_ids: Iterable[str]) -> Dict[str, BankAccount]:
        """Lock the given accounts, always in ascending id order."""
        found: Dict[str, BankAccount] = {}
        for account_id in sorted(set(account_ids)):
            account = await self.get_account(account_id, for_update=True)
            if account is not None:
                found[account_id] = account
        return found

    async def list_accounts(self) -> List[BankAccount]:
        stmt = select(BankAccount).order_by(BankAccount.created_at.desc(), BankAccount.id)
        return await self._scalars(stmt)

    async def find_account_by_number(
        self, account_number: str, bank_name: str, user_id: Optional[str]
    ) -> Optional[BankAccount]:
        stmt = select(BankAccount).where(
            BankAccount.account_number == account_number,
            BankAccount.bank_name == bank_name,
        )
        if user_id is None:
            stmt = stmt.where(BankAccount.user_id.is_(None))
        else:
            stmt = stmt.where(BankAccount.user_id == user_id)
        return await self._scalar(stmt)

    async def find_existing_transaction_ids(self, transaction_ids: Iterable[str]) -> Set[str]:
        ids = list(transaction_ids)
        if not ids:
            return set()
        stmt = select(BankTransaction.transaction_id).where(BankTransaction.transaction_id.in_(ids))
        return set(await self._scalars(stmt))

    async def has_transactions(self, account_id: str) -> bool:
        stmt = select(BankTransaction.id).where(BankTransaction.account_id == account_id).limit(1)
        return await self._scalar(stmt) is not None

    async def get_transaction(self, pk: str) -> Optional[BankTransaction]:
        return await self._scalar(select(BankTransaction).where(BankTransaction.id == pk))

    async def list_transactions(self, account_id: str, limit: int = 20) -> List[BankTransaction]:
        stmt = (
            select(BankTransaction)
            .where(BankTransaction.account_id == account_id)
            .order_by(BankTransaction.date.desc(), BankTransaction.created_at.desc())
            .limit(limit)
        )
        return await self._scalars(stmt)

    async def transaction_totals(self, account_id: str) -> Tuple[Decimal, Decimal]:
        """Return (total deposits, total withdrawals) for an account."""
        deposits = func.coalesce(
            func.sum(case((BankTransaction.type == TransactionType.DEPOSIT.value, BankTransaction.amount), else_=0)),
            0,
        )
        withdrawals = func.coalesce(
            func.sum(case((BankTransaction.type == TransactionType.WITHDRAWAL.value, BankTransaction.amount), else_=0)),
            0,
        )
        stmt = select(deposits, withdrawals).where(BankTransaction.account_id == account_id)
        try:
            res = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.exception("Totals query failed for account %s", account_id)
            raise PersistenceError() from e
        row = res.one()
        return Decimal(str(row[0])), Decimal(str(row[1]))

    # ----------------------------------------------------------------- writes

    def add(self, obj) -> None:
        self.session.add(obj)

    def add_all(self, objs) -> None:
        self.session.add_all(objs)

    async def delete(self, obj) -> None:
        await self.session.delete(obj)

    def mark_posting(self) -> None:
        """Allow current_balance writes in this unit of work."""
        self.session.info[LEDGER_POSTING_FLAG] = True

    async def commit(self) -> None:
        try:
            await self.session.commit()
        except StaleDataError as e:
            logger.warning("Optimistic lock conflict on commit: %s", e)
            raise ConcurrentModificationError() from e
        except IntegrityError as e:
            if _is_duplicate_transaction_id(e):
                logger.warning("Duplicate transaction id on commit: %s", e.orig)
                raise DuplicateTransactionIdError() from e
            logger.exception("Integrity error on commit: %s", e.orig)
            raise PersistenceError() from e
        except SQLAlchemyError as e:
            logger.exception("Commit failed: %s", e)
            raise PersistenceError() from e
        except OSError as e:
            logger.exception("Commit failed at the storage layer: %s", e)
            raise PersistenceError() from e
        self.committed = True

    async def rollback(self) -> None:
        self.session.info.pop(LEDGER_POSTING_FLAG, None)
        try:
            await self.session.rollback()
        except SQLAlchemyError:
            logger.exception("Rollback failed")

    # ---------------------------------------------------------------- helpers

    async def _scalar(self, stmt):
        try:
            res = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.exception("Query failed: %s", e)
            raise PersistenceError() from e
        return res.scalars().first()

    async def _scalars(self, stmt) -> list:
        try:
            res = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.exception("Query failed: %s", e)
            raise PersistenceError() from e
        return list(res.scalars().all())
