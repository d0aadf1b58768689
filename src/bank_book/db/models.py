# bank_book/db/models.py
import enum
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)

from bank_book.db.session import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class AccountType(str, enum.Enum):
    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT_CARD = "credit-card"
    LOAN = "loan"
    INVESTMENT = "investment"
    OTHER = "other"


class TransactionType(str, enum.Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"


class BankAccount(Base):
    __tablename__ = "bank_accounts"

    id = Column(String(36), primary_key=True, default=new_id)
    # Owning user; accounts opened by the system have none
    user_id = Column(String(64), nullable=True, index=True)
    account_name = Column(String(100), nullable=False)
    account_number = Column(String(20), nullable=False)
    bank_name = Column(String(100), nullable=False)
    branch_name = Column(String(100))
    account_type = Column(String(20), nullable=False, default=AccountType.CHECKING.value)
    opening_balance = Column(Numeric(15, 2), nullable=False, default=0)
    current_balance = Column(Numeric(15, 2), nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    last_reconciled = Column(TIMESTAMP(timezone=True), nullable=True)
    reconciliation_notes = Column(Text, nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), default=utcnow)
    updated_at = Column(TIMESTAMP(timezone=True), default=utcnow)

    # UPDATE ... WHERE version = <loaded>; a concurrent writer raises StaleDataError
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<BankAccount id={self.id} name={self.account_name!r} balance={self.current_balance}>"


class BankTransaction(Base):
    __tablename__ = "bank_transactions"

    id = Column(String(36), primary_key=True, default=new_id)
    transaction_id = Column(String(64), nullable=False, unique=True)
    account_id = Column(String(36), ForeignKey("bank_accounts.id"), nullable=False)
    user_id = Column(String(64), nullable=True)
    amount = Column(Numeric(15, 2), nullable=False)
    type = Column(String(10), nullable=False)
    date = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    description = Column(String(255), nullable=False)
    category = Column(String(100), nullable=False, default="Uncategorized")
    reference = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    is_reconciled = Column(Boolean, nullable=False, default=False)
    is_transfer = Column(Boolean, nullable=False, default=False)
    related_account_id = Column(String(36), ForeignKey("bank_accounts.id"), nullable=True)
    attachments = Column(JSON, nullable=False, default=list)
    created_at = Column(TIMESTAMP(timezone=True), default=utcnow)
    updated_at = Column(TIMESTAMP(timezone=True), default=utcnow)

    __table_args__ = (Index("ix_bank_transactions_account_date", "account_id", "date"),)

    @property
    def signed_amount(self):
        if self.type == TransactionType.WITHDRAWAL.value:
            return -self.amount
        return self.amount

    def __repr__(self) -> str:
        return f"<BankTransaction {self.transaction_id} {self.type} {self.amount} account={self.account_id}>"
