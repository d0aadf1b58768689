from bank_book.services.accounts import AccountService
from bank_book.services.ledger import SYSTEM, Initiator, SystemInitiated, UserInitiated
from bank_book.services.postings import PostingRequest, PostingService
from bank_book.services.transfer import TransferEngine, TransferRequest, TransferResult

__all__ = [
    "SYSTEM",
    "AccountService",
    "Initiator",
    "PostingRequest",
    "PostingService",
    "SystemInitiated",
    "TransferEngine",
    "TransferRequest",
    "TransferResult",
    "UserInitiated",
]
