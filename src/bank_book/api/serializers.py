from decimal import Decimal
from typing import Any, Dict, Optional

from bank_book.db.models import BankAccount, BankTransaction
from bank_book.services.accounts import AccountsDashboard, AccountSummary, Reconciliation
from bank_book.services.postings import PostingResult
from bank_book.services.transfer import TransferResult


def _money(value: Optional[Decimal]) -> float:
    return float(value) if value is not None else 0.0


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def serialize_account(a: BankAccount) -> Dict[str, Any]:
    return {
        "id": a.id,
        "user_id": a.user_id,
        "account_name": a.account_name,
        "account_number": a.account_number,
        "bank_name": a.bank_name,
        "branch_name": a.branch_name,
        "account_type": a.account_type,
        "opening_balance": _money(a.opening_balance),
        "current_balance": _money(a.current_balance),
        "is_active": bool(a.is_active),
        "last_reconciled": _iso(a.last_reconciled),
        "reconciliation_notes": a.reconciliation_notes,
        "created_at": _iso(a.created_at),
        "updated_at": _iso(a.updated_at),
    }


def serialize_tx(t: BankTransaction) -> Dict[str, Any]:
    return {
        "id": t.id,
        "transaction_id": t.transaction_id,
        "account_id": t.account_id,
        "user_id": t.user_id,
        "amount": _money(t.amount),
        "type": t.type,
        "date": _iso(t.date),
        "description": t.description,
        "category": t.category,
        "reference": t.reference,
        "notes": t.notes,
        "is_reconciled": bool(t.is_reconciled),
        "is_transfer": bool(t.is_transfer),
        "related_account_id": t.related_account_id,
        "attachments": list(t.attachments or []),
        "created_at": _iso(t.created_at),
        "updated_at": _iso(t.updated_at),
    }


def serialize_transfer(r: TransferResult) -> Dict[str, Any]:
    return {
        "from_account": {
            "id": r.from_account.id,
            "name": r.from_account.name,
            "new_balance": _money(r.from_account.new_balance),
        },
        "to_account": {
            "id": r.to_account.id,
            "name": r.to_account.name,
            "new_balance": _money(r.to_account.new_balance),
        },
        "amount": _money(r.amount),
        "withdrawal_transaction": r.withdrawal_transaction,
        "deposit_transaction": r.deposit_transaction,
        "withdrawal_transaction_id": r.withdrawal_transaction_id,
        "deposit_transaction_id": r.deposit_transaction_id,
    }


def serialize_posting(r: PostingResult) -> Dict[str, Any]:
    return {"transaction": serialize_tx(r.transaction), "new_balance": _money(r.new_balance)}


def serialize_dashboard(d: AccountsDashboard) -> Dict[str, Any]:
    return {
        "total_accounts": d.total_accounts,
        "active_accounts": d.active_accounts,
        "total_balance": _money(d.total_balance),
        "accounts": [
            {
                "id": a.id,
                "name": a.account_name,
                "bank": a.bank_name,
                "balance": _money(a.current_balance),
                "is_active": bool(a.is_active),
            }
            for a in d.accounts
        ],
    }


def serialize_summary(s: AccountSummary) -> Dict[str, Any]:
    return {
        "account": serialize_account(s.account),
        "recent_transactions": [serialize_tx(t) for t in s.recent_transactions],
        "summary": {
            "total_deposits": _money(s.total_deposits),
            "total_withdrawals": _money(s.total_withdrawals),
            "ledger_balance": _money(s.ledger_balance),
            "balanced": s.balanced,
        },
    }


def serialize_reconciliation(r: Reconciliation) -> Dict[str, Any]:
    return {
        "account": serialize_account(r.account),
        "reconciliation": {
            "date": _iso(r.date),
            "statement_balance": _money(r.statement_balance),
            "system_balance": _money(r.system_balance),
            "difference": _money(r.difference),
        },
    }
