"""
In-memory unit of work for driving the posting services without a database.

Committed state lives in ``InMemoryLedger``; a unit of work hands out
detached copies and publishes its writes only if every write succeeds and no
modified account changed version in the meantime.
"""

from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Optional
from uuid import uuid4

import pytest

from bank_book.db.models import BankAccount
from bank_book.errors import ConcurrentModificationError, DuplicateTransactionIdError, PersistenceError


class InMemoryLedger:
    def __init__(self):
        self.accounts: Dict[str, dict] = {}
        self.transactions: Dict[str, dict] = {}
        # number of writes a commit may apply before it fails
        self.fail_after_writes: Optional[int] = None
        # awaited after every account read, lets tests interleave attempts
        self.after_read: Optional[Callable[[], Awaitable[None]]] = None
        # awaited at the start of every commit
        self.before_commit: Optional[Callable[[], Awaitable[None]]] = None
        self.commits = 0

    def open_account(self, name: str, balance: str, user_id: Optional[str] = None) -> str:
        account_id = str(uuid4())
        self.accounts[account_id] = {
            "id": account_id,
            "account_name": name,
            "user_id": user_id,
            "opening_balance": Decimal(balance),
            "current_balance": Decimal(balance),
            "is_active": True,
            "version": 1,
        }
        return account_id

    def balance(self, account_id: str) -> Decimal:
        return self.accounts[account_id]["current_balance"]

    def transactions_for(self, account_id: str) -> List[dict]:
        return [t for t in self.transactions.values() if t["account_id"] == account_id]

    def unit_of_work(self) -> "InMemoryUnitOfWork":
        return InMemoryUnitOfWork(self)


class InMemoryUnitOfWork:
    def __init__(self, ledger: InMemoryLedger):
        self.ledger = ledger
        self._loaded: Dict[str, tuple] = {}
        self._new: list = []
        self.committed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self._loaded.clear()
        self._new.clear()

    async def get_accounts_for_update(self, account_ids):
        found = {}
        for account_id in sorted(set(account_ids)):
            row = self.ledger.accounts.get(account_id)
            if row is None:
                continue
            account = BankAccount(**row)
            self._loaded[account_id] = (row["version"], row["current_balance"], account)
            found[account_id] = account
        if self.ledger.after_read is not None:
            await self.ledger.after_read()
        return found

    async def find_existing_transaction_ids(self, transaction_ids):
        return {t for t in transaction_ids if t in self.ledger.transactions}

    def mark_posting(self):
        pass

    def add(self, obj):
        self._new.append(obj)

    def add_all(self, objs):
        self._new.extend(objs)

    async def commit(self):
        if self.ledger.before_commit is not None:
            await self.ledger.before_commit()
        accounts = {k: dict(v) for k, v in self.ledger.accounts.items()}
        transactions = dict(self.ledger.transactions)
        writes = 0

        def write():
            nonlocal writes
            if self.ledger.fail_after_writes is not None and writes >= self.ledger.fail_after_writes:
                raise PersistenceError("simulated storage failure")
            writes += 1

        for txn in self._new:
            if txn.transaction_id in transactions:
                raise DuplicateTransactionIdError()
            write()
            transactions[txn.transaction_id] = {
                "id": txn.id,
                "transaction_id": txn.transaction_id,
                "account_id": txn.account_id,
                "amount": txn.amount,
                "type": txn.type,
                "is_transfer": txn.is_transfer,
                "related_account_id": txn.related_account_id,
                "description": txn.description,
                "category": txn.category,
                "user_id": txn.user_id,
            }

        for account_id, (version, loaded_balance, account) in self._loaded.items():
            row = accounts[account_id]
            if account.current_balance == loaded_balance:
                continue
            if row["version"] != version:
                raise ConcurrentModificationError()
            write()
            row["current_balance"] = account.current_balance
            row["version"] = version + 1

        self.ledger.accounts = accounts
        self.ledger.transactions = transactions
        self.ledger.commits += 1
        self.committed = True


@pytest.fixture
def ledger():
    return InMemoryLedger()
