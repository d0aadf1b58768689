from fastapi import APIRouter, Depends, Query

from bank_book.logging_config import get_logger
from bank_book.services.accounts import AccountService
from bank_book.services.ledger import Initiator
from .deps import get_account_service, get_initiator
from .schemas import (
    AccountCreate,
    AccountListResponse,
    AccountResponse,
    AccountSummaryResponse,
    AccountUpdate,
    DashboardResponse,
    EmptyResponse,
    ReconcileIn,
    ReconcileResponse,
    TransactionListResponse,
    TransactionReconcileIn,
    TransactionResponse,
)
from .serializers import (
    serialize_account,
    serialize_dashboard,
    serialize_reconciliation,
    serialize_summary,
    serialize_tx,
)

logger = get_logger("bank_book.api.accounts")

router = APIRouter(tags=["bank-book"])


@router.get("/accounts", response_model=AccountListResponse)
async def list_accounts(service: AccountService = Depends(get_account_service)):
    """
    All bank accounts, newest first.
    """
    accounts = await service.list_accounts()
    return {"success": True, "count": len(accounts), "data": [serialize_account(a) for a in accounts]}


@router.get("/accounts/dashboard", response_model=DashboardResponse)
async def accounts_dashboard(service: AccountService = Depends(get_account_service)):
    dashboard = await service.dashboard()
    return {"success": True, **serialize_dashboard(dashboard)}


@router.get("/accounts/{account_id}", response_model=AccountResponse)
async def get_account(account_id: str, service: AccountService = Depends(get_account_service)):
    account = await service.get_account(account_id)
    return {"success": True, "data": serialize_account(account)}


@router.post("/accounts", response_model=AccountResponse, status_code=201)
async def create_account(
    payload: AccountCreate,
    service: AccountService = Depends(get_account_service),
    initiator: Initiator = Depends(get_initiator),
):
    """
    Open a bank account; its running balance starts at the opening balance.
    """
    logger.info("Creating account name=%s bank=%s", payload.account_name, payload.bank_name)
    account = await service.create_account(payload.model_dump(), initiator)
    return {"success": True, "data": serialize_account(account)}


@router.put("/accounts/{account_id}", response_model=AccountResponse)
async def update_account(
    account_id: str,
    payload: AccountUpdate,
    service: AccountService = Depends(get_account_service),
    initiator: Initiator = Depends(get_initiator),
):
    """
    Update descriptive fields. An account number change is ignored once the
    account has transactions.
    """
    changes = payload.model_dump(exclude_unset=True)
    account = await service.update_account(account_id, changes, initiator)
    return {"success": True, "data": serialize_account(account)}


@router.delete("/accounts/{account_id}", response_model=EmptyResponse)
async def delete_account(
    account_id: str,
    service: AccountService = Depends(get_account_service),
    initiator: Initiator = Depends(get_initiator),
):
    await service.delete_account(account_id, initiator)
    return {"success": True, "data": {}}


@router.get("/accounts/{account_id}/summary", response_model=AccountSummaryResponse)
async def account_summary(account_id: str, service: AccountService = Depends(get_account_service)):
    summary = await service.account_summary(account_id)
    return {"success": True, "data": serialize_summary(summary)}


@router.post("/accounts/{account_id}/reconcile", response_model=ReconcileResponse)
async def reconcile_account(
    account_id: str,
    payload: ReconcileIn,
    service: AccountService = Depends(get_account_service),
    initiator: Initiator = Depends(get_initiator),
):
    """
    Record a statement comparison. The system balance is left untouched.
    """
    result = await service.reconcile(
        account_id,
        payload.statement_balance,
        reconciliation_date=payload.reconciliation_date,
        notes=payload.notes,
        initiator=initiator,
    )
    return {"success": True, "data": serialize_reconciliation(result)}


@router.get("/accounts/{account_id}/transactions", response_model=TransactionListResponse)
async def account_transactions(
    account_id: str,
    limit: int = Query(20, ge=1, le=200),
    service: AccountService = Depends(get_account_service),
):
    txs = await service.list_transactions(account_id, limit=limit)
    return {"success": True, "count": len(txs), "data": [serialize_tx(t) for t in txs]}


@router.patch("/transactions/{transaction_pk}/reconcile", response_model=TransactionResponse)
async def reconcile_transaction(
    transaction_pk: str,
    payload: TransactionReconcileIn,
    service: AccountService = Depends(get_account_service),
    initiator: Initiator = Depends(get_initiator),
):
    txn = await service.set_transaction_reconciled(
        transaction_pk, payload.is_reconciled, notes=payload.notes, initiator=initiator
    )
    return {"success": True, "data": serialize_tx(txn)}
