"""
Shared fixtures: a fresh SQLite database per test, unit-of-work factories,
an account factory and an HTTP client bound to the FastAPI app.
"""

import itertools
import os
import tempfile
from decimal import Decimal
from functools import partial

# keep log files out of the working tree; must be set before bank_book.app is imported
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="bank_book_logs_"))

import httpx
import jwt
import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from bank_book.app import create_app
from bank_book.config import Settings
from bank_book.db.immutability import register_immutability_listeners
from bank_book.db.session import init_models, make_session_factory
from bank_book.db.unit_of_work import SqlAlchemyUnitOfWork
from bank_book.services.accounts import AccountService

TEST_JWT_SECRET = "bank-book-test-signing-key-0123456789"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'bank_book.db'}",
        log_dir=tmp_path / "logs",
        jwt_secret=TEST_JWT_SECRET,
        transfer_max_retries=3,
        transfer_timeout_seconds=10.0,
        auto_create_tables=False,
    )


@pytest.fixture
async def engine(settings):
    register_immutability_listeners()
    eng = create_async_engine(settings.database_url, poolclass=NullPool)
    await init_models(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def uow_factory(session_factory):
    return partial(SqlAlchemyUnitOfWork, session_factory)


@pytest.fixture
def account_service(uow_factory):
    return AccountService(uow_factory)


@pytest.fixture
def make_account(account_service):
    numbers = itertools.count(10000001)

    async def _make(name="Main Account", balance="1000.00", user_id=None, **extra):
        data = {
            "account_name": name,
            "account_number": str(next(numbers)),
            "bank_name": "Test Bank",
            "branch_name": "Main Branch",
            "account_type": "checking",
            "opening_balance": Decimal(balance),
            "user_id": user_id,
        }
        data.update(extra)
        return await account_service.create_account(data)

    return _make


@pytest.fixture
async def client(settings, engine):
    # the app opens its own engine on settings.database_url; the engine fixture has created the tables
    app = create_app(settings)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    await app.state.engine.dispose()


@pytest.fixture
def auth_headers():
    def _headers(user_id: str, secret: str = TEST_JWT_SECRET) -> dict:
        token = jwt.encode({"sub": user_id}, secret, algorithm="HS256")
        return {"Authorization": f"Bearer {token}"}

    return _headers
