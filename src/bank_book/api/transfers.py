from fastapi import APIRouter, Depends

from bank_book.logging_config import get_logger
from bank_book.services.ledger import Initiator
from bank_book.services.postings import PostingRequest, PostingService
from bank_book.services.transfer import TransferEngine, TransferRequest
from .deps import get_initiator, get_posting_service, get_transfer_engine
from .schemas import PostingIn, PostingResponse, TransferIn, TransferOut
from .serializers import serialize_posting, serialize_transfer

logger = get_logger("bank_book.api.transfers")

router = APIRouter(tags=["bank-book"])


@router.post("/transfer", response_model=TransferOut)
async def transfer_funds(
    payload: TransferIn,
    engine: TransferEngine = Depends(get_transfer_engine),
    initiator: Initiator = Depends(get_initiator),
):
    """
    Move funds between two accounts: one withdrawal, one deposit and both
    balance updates commit together or not at all.
    """
    request = TransferRequest(
        from_account_id=payload.from_account_id,
        to_account_id=payload.to_account_id,
        amount=payload.amount,
        description=payload.description,
        date=payload.date,
        category=payload.category,
        reference=payload.reference,
        notes=payload.notes,
        withdrawal_transaction_id=payload.withdrawal_transaction_id,
        deposit_transaction_id=payload.deposit_transaction_id,
        initiator=initiator,
    )
    result = await engine.transfer_funds(request)
    return {"msg": "Transfer completed successfully", **serialize_transfer(result)}


def _posting_request(account_id: str, payload: PostingIn, initiator: Initiator) -> PostingRequest:
    return PostingRequest(
        account_id=account_id,
        amount=payload.amount,
        description=payload.description,
        date=payload.date,
        category=payload.category,
        reference=payload.reference,
        notes=payload.notes,
        transaction_id=payload.transaction_id,
        initiator=initiator,
    )


@router.post("/accounts/{account_id}/deposit", response_model=PostingResponse, status_code=201)
async def deposit(
    account_id: str,
    payload: PostingIn,
    service: PostingService = Depends(get_posting_service),
    initiator: Initiator = Depends(get_initiator),
):
    result = await service.deposit(_posting_request(account_id, payload, initiator))
    return {"success": True, "data": serialize_posting(result)}


@router.post("/accounts/{account_id}/withdraw", response_model=PostingResponse, status_code=201)
async def withdraw(
    account_id: str,
    payload: PostingIn,
    service: PostingService = Depends(get_posting_service),
    initiator: Initiator = Depends(get_initiator),
):
    result = await service.withdraw(_posting_request(account_id, payload, initiator))
    return {"success": True, "data": serialize_posting(result)}
