from functools import partial
from typing import Optional

import jwt
from fastapi import Depends, Header, Request

from bank_book.config import Settings
from bank_book.db.unit_of_work import SqlAlchemyUnitOfWork
from bank_book.errors import AuthorizationError
from bank_book.logging_config import get_logger
from bank_book.services.accounts import AccountService
from bank_book.services.ledger import SYSTEM, Initiator, UserInitiated
from bank_book.services.postings import PostingService
from bank_book.services.transfer import TransferEngine

logger = get_logger("bank_book.api.deps")


def get_app_settings(request: Request) -> Settings:
    """
    Settings the running app was created with.
    """
    return request.app.state.settings


def get_session_factory(request: Request):
    """
    Session factory bound to the app's own engine.
    """
    return request.app.state.session_factory


def verify_token(token: str, settings: Settings) -> dict:
    """
    Verify a caller JWT and return its claims.
    """
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.InvalidTokenError as e:
        logger.warning("Rejected bearer token: %s", e)
        raise AuthorizationError("Invalid or expired token")


async def get_initiator(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_app_settings),
) -> Initiator:
    """
    No Authorization header means a system-initiated request; a bearer token
    makes it user-initiated and subject to account ownership checks.
    """
    if not authorization:
        return SYSTEM
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthorizationError("Authorization header must be 'Bearer <token>'")
    claims = verify_token(token.strip(), settings)
    user_id = claims.get("sub") or claims.get("user_id")
    if not user_id:
        raise AuthorizationError("Token has no subject")
    return UserInitiated(user_id=str(user_id))


def get_uow_factory(session_factory=Depends(get_session_factory)):
    return partial(SqlAlchemyUnitOfWork, session_factory)


def get_transfer_engine(
    uow_factory=Depends(get_uow_factory),
    settings: Settings = Depends(get_app_settings),
) -> TransferEngine:
    return TransferEngine(
        uow_factory,
        max_retries=settings.transfer_max_retries,
        timeout=settings.transfer_timeout_seconds,
    )


def get_posting_service(
    uow_factory=Depends(get_uow_factory),
    settings: Settings = Depends(get_app_settings),
) -> PostingService:
    return PostingService(
        uow_factory,
        max_retries=settings.transfer_max_retries,
        timeout=settings.transfer_timeout_seconds,
    )


def get_account_service(
    uow_factory=Depends(get_uow_factory),
    settings: Settings = Depends(get_app_settings),
) -> AccountService:
    return AccountService(uow_factory, max_retries=settings.transfer_max_retries)
