from bank_book.db.models import AccountType, BankAccount, BankTransaction, TransactionType
from bank_book.db.session import Base
from bank_book.db.unit_of_work import SqlAlchemyUnitOfWork

__all__ = [
    "AccountType",
    "Base",
    "BankAccount",
    "BankTransaction",
    "SqlAlchemyUnitOfWork",
    "TransactionType",
]
