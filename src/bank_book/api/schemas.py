from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from bank_book.db.models import AccountType


class CamelModel(BaseModel):
    """JSON uses camelCase; Python code uses snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------- requests


class TransferIn(CamelModel):
    from_account_id: str = Field(..., min_length=1, examples=["6b1c0f0e-4d1e-4f55-9c1b-3f0f3c1d2a10"])
    to_account_id: str = Field(..., min_length=1)
    # sign is checked by the engine so a bad amount maps to invalid-amount
    amount: Decimal = Field(..., examples=[300.00])
    description: Optional[str] = Field(None, max_length=255)
    date: Optional[datetime] = None
    category: Optional[str] = Field(None, max_length=100)
    reference: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
    withdrawal_transaction_id: Optional[str] = None
    deposit_transaction_id: Optional[str] = None


class PostingIn(CamelModel):
    amount: Decimal
    description: Optional[str] = Field(None, max_length=255)
    date: Optional[datetime] = None
    category: Optional[str] = Field(None, max_length=100)
    reference: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
    transaction_id: Optional[str] = None


class AccountCreate(CamelModel):
    account_name: str = Field(..., min_length=3, max_length=100)
    account_number: str = Field(..., min_length=1, max_length=20)
    bank_name: str = Field(..., min_length=1, max_length=100)
    branch_name: Optional[str] = Field(None, max_length=100)
    account_type: AccountType = AccountType.CHECKING
    opening_balance: Decimal = Decimal("0")
    user_id: Optional[str] = None


class AccountUpdate(CamelModel):
    """Balances are deliberately absent; unknown fields are rejected."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    account_name: Optional[str] = Field(None, min_length=3, max_length=100)
    account_number: Optional[str] = Field(None, min_length=1, max_length=20)
    bank_name: Optional[str] = Field(None, min_length=1, max_length=100)
    branch_name: Optional[str] = Field(None, max_length=100)
    account_type: Optional[AccountType] = None
    is_active: Optional[bool] = None


class ReconcileIn(CamelModel):
    statement_balance: Decimal
    reconciliation_date: Optional[datetime] = None
    notes: Optional[str] = None


class TransactionReconcileIn(CamelModel):
    is_reconciled: bool = True
    notes: Optional[str] = None


# --------------------------------------------------------------- responses


class AccountOut(CamelModel):
    id: str
    user_id: Optional[str] = None
    account_name: str
    account_number: str
    bank_name: str
    branch_name: Optional[str] = None
    account_type: str
    opening_balance: float
    current_balance: float
    is_active: bool
    last_reconciled: Optional[str] = None
    reconciliation_notes: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class TransactionOut(CamelModel):
    id: str
    transaction_id: str
    account_id: str
    user_id: Optional[str] = None
    amount: float
    type: str
    date: Optional[str] = None
    description: str
    category: Optional[str] = None
    reference: Optional[str] = None
    notes: Optional[str] = None
    is_reconciled: bool
    is_transfer: bool
    related_account_id: Optional[str] = None
    attachments: List[Dict[str, Any]] = []
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class AccountBalanceOut(CamelModel):
    id: str
    name: str
    new_balance: float


class TransferOut(CamelModel):
    msg: str = "Transfer completed successfully"
    from_account: AccountBalanceOut
    to_account: AccountBalanceOut
    amount: float
    withdrawal_transaction: str
    deposit_transaction: str
    withdrawal_transaction_id: str
    deposit_transaction_id: str


class AccountResponse(CamelModel):
    success: bool = True
    data: AccountOut


class AccountListResponse(CamelModel):
    success: bool = True
    count: int
    data: List[AccountOut]


class EmptyResponse(CamelModel):
    success: bool = True
    data: Dict[str, Any] = {}


class DashboardAccountOut(CamelModel):
    id: str
    name: str
    bank: str
    balance: float
    is_active: bool


class DashboardResponse(CamelModel):
    success: bool = True
    total_accounts: int
    active_accounts: int
    total_balance: float
    accounts: List[DashboardAccountOut]


class SummaryTotalsOut(CamelModel):
    total_deposits: float
    total_withdrawals: float
    ledger_balance: float
    balanced: bool


class AccountSummaryOut(CamelModel):
    account: AccountOut
    recent_transactions: List[TransactionOut]
    summary: SummaryTotalsOut


class AccountSummaryResponse(CamelModel):
    success: bool = True
    data: AccountSummaryOut


class ReconciliationOut(CamelModel):
    date: Optional[str] = None
    statement_balance: float
    system_balance: float
    difference: float


class ReconcileResultOut(CamelModel):
    account: AccountOut
    reconciliation: ReconciliationOut


class ReconcileResponse(CamelModel):
    success: bool = True
    data: ReconcileResultOut


class TransactionListResponse(CamelModel):
    success: bool = True
    count: int
    data: List[TransactionOut]


class TransactionResponse(CamelModel):
    success: bool = True
    data: TransactionOut


class PostingOut(CamelModel):
    transaction: TransactionOut
    new_balance: float


class PostingResponse(CamelModel):
    success: bool = True
    data: PostingOut
