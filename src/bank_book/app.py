"""
FastAPI application entrypoint for the bank-book service.

This module wires together:
- Logging configuration (rotating file under LOG_DIR)
- CORS and request logging middleware
- Error rendering for BankBookError and request validation failures
- Bank-book routers under /api/bank-book (accounts, postings, transfers)

Run with: uvicorn bank_book.app:app
"""

from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.requests import Request

from bank_book import __version__
from bank_book.api.accounts import router as accounts_router
from bank_book.api.transfers import router as transfers_router
from bank_book.config import Settings, get_settings
from bank_book.db.immutability import register_immutability_listeners
from bank_book.db.session import create_engine_from_settings, init_models, make_session_factory
from bank_book.errors import BankBookError
from bank_book.logging_config import get_logger, setup_logging

API_PREFIX = "/api/bank-book"

logger = get_logger("bank_book")


async def bank_book_error_handler(request: Request, exc: BankBookError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.kind)
    else:
        logger.info("%s %s rejected: %s (%s)", request.method, request.url.path, exc.message, exc.kind)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.to_dict()})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("%s %s invalid body: %s", request.method, request.url.path, exc.errors())
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": {
                "kind": "validation",
                "message": "Request validation failed",
                "retrySafe": True,
                "details": {"errors": jsonable_encoder(exc.errors())},
            },
        },
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    # Configure logging before creating the app
    setup_logging(settings)
    register_immutability_listeners()

    app = FastAPI(title="Fuel Station Bank Book API", version=__version__)

    # one engine per app, built from the settings this app was given
    engine = create_engine_from_settings(settings)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = make_session_factory(engine)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=True,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """
        Lightweight request logger to help trace bank-book traffic.
        """
        logger.info(
            "HTTP %s %s from %s",
            request.method,
            request.url.path,
            request.client.host if request.client else "?",
        )
        response = await call_next(request)
        logger.info("HTTP %s %s -> %s", request.method, request.url.path, response.status_code)
        return response

    app.add_exception_handler(BankBookError, bank_book_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    @app.get("/api/health")
    async def health():
        """
        Simple health check endpoint.
        """
        return {"status": "healthy"}

    app.include_router(accounts_router, prefix=API_PREFIX)
    app.include_router(transfers_router, prefix=API_PREFIX)

    @app.on_event("startup")
    async def on_startup():
        logger.info("Bank book starting up database=%s", settings.database_url.split("@")[-1])
        if settings.auto_create_tables:
            await init_models(engine)

    @app.on_event("shutdown")
    async def on_shutdown():
        try:
            await engine.dispose()
        except Exception:
            logger.exception("Error disposing engine on shutdown")
        logger.info("Bank book shutting down")

    return app


app = create_app()
