"""
ORM-level guards for posted records.

Listeners fire during flush, before any SQL is sent:

  BankTransaction  financial fields frozen from creation; never deleted.
                   Reconciliation metadata (is_reconciled, notes) may change.
  BankAccount      opening_balance frozen; current_balance changes only
                   inside a session flagged as a ledger posting.

A violation raises ImmutableRecordError and the flush is aborted.
"""

from sqlalchemy import event
from sqlalchemy.orm import object_session
from sqlalchemy.orm.attributes import get_history

from bank_book.db.models import BankAccount, BankTransaction
from bank_book.errors import ImmutableRecordError
from bank_book.logging_config import get_logger

logger = get_logger("bank_book.db.immutability")

LEDGER_POSTING_FLAG = "ledger_posting"

FROZEN_TRANSACTION_FIELDS = (
    "transaction_id",
    "account_id",
    "amount",
    "type",
    "date",
    "is_transfer",
    "related_account_id",
)


def _check_transaction_update(mapper, connection, target):
    for field in FROZEN_TRANSACTION_FIELDS:
        if get_history(target, field).has_changes():
            logger.warning(
                "Blocked update of %s on transaction %s", field, target.transaction_id
            )
            raise ImmutableRecordError(
                f"Field '{field}' of a posted transaction cannot be changed",
                details={"transactionId": target.transaction_id, "field": field},
            )


def _check_transaction_delete(mapper, connection, target):
    logger.warning("Blocked delete of transaction %s", target.transaction_id)
    raise ImmutableRecordError(
        "Posted transactions cannot be deleted",
        details={"transactionId": target.transaction_id},
    )


def _check_account_update(mapper, connection, target):
    if get_history(target, "opening_balance").has_changes():
        raise ImmutableRecordError(
            "Opening balance cannot be changed", details={"accountId": target.id}
        )
    if get_history(target, "current_balance").has_changes():
        session = object_session(target)
        if session is None or not session.info.get(LEDGER_POSTING_FLAG):
            logger.warning("Blocked direct balance write on account %s", target.id)
            raise ImmutableRecordError(
                "Current balance changes only through postings",
                details={"accountId": target.id},
            )


_LISTENERS = (
    (BankTransaction, "before_update", _check_transaction_update),
    (BankTransaction, "before_delete", _check_transaction_delete),
    (BankAccount, "before_update", _check_account_update),
)


def register_immutability_listeners() -> None:
    """Install the listeners; safe to call more than once."""
    for model, name, fn in _LISTENERS:
        if not event.contains(model, name, fn):
            event.listen(model, name, fn)


def unregister_immutability_listeners() -> None:
    for model, name, fn in _LISTENERS:
        if event.contains(model, name, fn):
            event.remove(model, name, fn)
