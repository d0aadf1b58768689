"""
Typed errors for bank-book operations.

Every error carries a machine-readable ``kind`` and the HTTP status the API
renders it with. All of them are raised before a commit succeeds, so the
operation had no effect and the caller may retry (``retry_safe``).

    BankBookError
    +-- ValidationError (400)
    |   +-- InvalidAmountError
    |   +-- SameAccountError
    |   +-- InvalidTransactionIdError
    |   +-- DuplicateTransactionIdError
    |   +-- DuplicateAccountError
    |   +-- HasDependentTransactionsError
    |   +-- ImmutableRecordError
    +-- NotFoundError (404)
    |   +-- AccountNotFoundError
    |   |   +-- SourceAccountNotFoundError
    |   |   +-- DestinationAccountNotFoundError
    |   +-- TransactionNotFoundError
    +-- AuthorizationError (401)
    +-- InsufficientFundsError (400)
    +-- ConcurrentModificationError (409)
    +-- PersistenceError (500)
"""

from typing import Any, Dict, Optional


class BankBookError(Exception):
    kind = "error"
    status_code = 500
    retry_safe = True
    default_message = "Bank book error"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "kind": self.kind,
            "message": self.message,
            "retrySafe": self.retry_safe,
        }
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(BankBookError):
    kind = "validation"
    status_code = 400
    default_message = "Invalid request"


class InvalidAmountError(ValidationError):
    kind = "invalid-amount"
    default_message = "Amount must be greater than zero"


class SameAccountError(ValidationError):
    kind = "same-account"
    default_message = "Source and destination accounts must be different"


class InvalidTransactionIdError(ValidationError):
    kind = "invalid-transaction-id"
    default_message = "Transaction id is not valid"


class DuplicateTransactionIdError(ValidationError):
    kind = "duplicate-transaction-id"
    default_message = "Transaction id already exists"


class DuplicateAccountError(ValidationError):
    kind = "duplicate-account"
    default_message = "A bank account with this account number already exists for this bank"


class HasDependentTransactionsError(ValidationError):
    kind = "has-dependent-transactions"
    default_message = "Cannot delete account with existing transactions. Deactivate it instead."


class ImmutableRecordError(ValidationError):
    kind = "immutable-record"
    default_message = "Posted records cannot be modified"


class NotFoundError(BankBookError):
    kind = "not-found"
    status_code = 404
    default_message = "Not found"


class AccountNotFoundError(NotFoundError):
    default_message = "Bank account not found"


class SourceAccountNotFoundError(AccountNotFoundError):
    kind = "source-not-found"
    default_message = "Source account not found"


class DestinationAccountNotFoundError(AccountNotFoundError):
    kind = "destination-not-found"
    default_message = "Destination account not found"


class TransactionNotFoundError(NotFoundError):
    default_message = "Bank transaction not found"


class AuthorizationError(BankBookError):
    kind = "unauthorized"
    status_code = 401
    default_message = "User not authorized"


class InsufficientFundsError(BankBookError):
    kind = "insufficient-funds"
    status_code = 400
    default_message = "Insufficient funds in source account"


class ConcurrentModificationError(BankBookError):
    kind = "concurrent-modification"
    status_code = 409
    default_message = "Account was modified concurrently; nothing was posted"


class PersistenceError(BankBookError):
    kind = "persistence-failure"
    status_code = 500
    default_message = "Database error; nothing was posted"
