import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from coctelera.core.config import DEFAULT_JWT_SECRET, Settings, settings as default_settings
from coctelera.core.exceptions import (
    AccountNotFound,
    DuplicateEmail,
    IllegalStateTransition,
    InvalidConfirmation,
    IssuanceFailed,
    RequestValidationError,
    StoreUnavailable,
)
from coctelera.core.logging_config import setup_logging
from coctelera.db.session import Database
from coctelera.routes.admin import router as admin_router
from coctelera.routes.token import router as token_router
from coctelera.services.notifications import Notifier, build_notifier

setup_logging(default_settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = "5"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            "%s %s -> %s (%.2fms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        return response


def _error(status_code: int, exc, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=exc.to_dict(), headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StoreUnavailable)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailable):
        return _error(503, exc, headers={"Retry-After": RETRY_AFTER_SECONDS})

    @app.exception_handler(IssuanceFailed)
    async def issuance_failed_handler(request: Request, exc: IssuanceFailed):
        logger.error("Token issuance failed on %s %s", request.method, request.url.path)
        return _error(503, exc, headers={"Retry-After": RETRY_AFTER_SECONDS})

    @app.exception_handler(AccountNotFound)
    async def account_not_found_handler(request: Request, exc: AccountNotFound):
        return _error(404, exc)

    @app.exception_handler(DuplicateEmail)
    async def duplicate_email_handler(request: Request, exc: DuplicateEmail):
        return _error(409, exc)

    @app.exception_handler(IllegalStateTransition)
    async def illegal_transition_handler(request: Request, exc: IllegalStateTransition):
        return _error(409, exc)

    @app.exception_handler(InvalidConfirmation)
    async def invalid_confirmation_handler(request: Request, exc: InvalidConfirmation):
        return _error(400, exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=422, content={**exc.to_dict(), "errors": exc.errors})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error",
                "type": type(exc).__name__,
            },
        )


def create_app(
    database: Database | None = None,
    settings: Settings | None = None,
    notifier: Notifier | None = None,
) -> FastAPI:
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = database is None
        app.state.database = database or Database.from_settings(settings)
        try:
            yield
        finally:
            if owned:
                app.state.database.dispose()

    app = FastAPI(title="La Coctelera API access", lifespan=lifespan)
    app.state.settings = settings
    app.state.notifier = notifier or build_notifier(settings)
    if database is not None:
        app.state.database = database

    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(token_router)
    app.include_router(admin_router)
    register_exception_handlers(app)

    if settings.JWT_SECRET_KEY == DEFAULT_JWT_SECRET:
        logger.warning("JWT_SECRET_KEY is set to the default value. Change it in production!")
    if not settings.ADMIN_API_KEY:
        logger.warning("ADMIN_API_KEY is not set; the admin HTTP surface is disabled")

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
