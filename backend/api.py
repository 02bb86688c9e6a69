"""FastAPI entrypoint for the transactions HTTP endpoints."""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from functools import lru_cache
from pathlib import Path
from typing import Any

from fastapi import Body, FastAPI, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import FileResponse, JSONResponse, Response

from backend.factory import build_transaction_service
from backend.repositories.errors import (
    ConnectivityFailure,
    ConstraintViolation,
    NotFound,
    StoreError,
    TransactionFailure,
)
from backend.services.transaction_service import TransactionService
from shared import config as _config
from shared.models import (
    ImportResult,
    TransactionCreateRequest,
    TransactionImportRecord,
    TransactionImportRequest,
)


logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_transaction_service() -> TransactionService:
    """Create and cache the transaction service once per process."""

    return build_transaction_service()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    # Connection and schema failures must stop the process before it serves.
    get_transaction_service()
    logger.info("transactions_service_ready")
    yield


app = FastAPI(title="FinSet Transactions API", lifespan=lifespan)

ALLOW_ORIGINS = _config.cors_allow_origins()


@app.middleware("http")
async def log_api_calls(request: Request, call_next):
    """Log one line per API call with its status and elapsed time."""

    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("api_call_crashed method=%s path=%s", request.method, request.url.path)
        raise

    elapsed_ms = (time.perf_counter() - started) * 1000
    log = logger.warning if response.status_code >= 500 else logger.info
    log(
        "api_call method=%s path=%s status=%s elapsed_ms=%.1f",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOW_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Accept", "Content-Type"],
    max_age=300,
)

logger.info("cors_allow_origins=%s", ALLOW_ORIGINS)


_STORE_ERROR_RESPONSES: tuple[tuple[type[StoreError], int, str | None], ...] = (
    (NotFound, 404, "transaction not found"),
    (ConstraintViolation, 400, None),
    (ConnectivityFailure, 503, "database unreachable"),
    (TransactionFailure, 500, "import failed"),
)


@app.exception_handler(StoreError)
async def handle_store_error(request: Request, exc: StoreError) -> JSONResponse:
    """Translate repository errors into HTTP responses."""

    status_code, detail = 500, "internal error"
    for error_type, mapped_status, mapped_detail in _STORE_ERROR_RESPONSES:
        if isinstance(exc, error_type):
            status_code, detail = mapped_status, mapped_detail or str(exc)
            break

    log = logger.warning if status_code < 500 else logger.error
    log(
        "store_error method=%s path=%s error_type=%s status_code=%s message=%s",
        request.method,
        request.url.path,
        type(exc).__name__,
        status_code,
        str(exc),
    )
    return JSONResponse(status_code=status_code, content={"detail": detail})


def _format_validation_errors(exc: RequestValidationError) -> str:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        message = error.get("msg", "invalid value")
        messages.append(f"{location}: {message}" if location else message)
    return "; ".join(messages) or "invalid request"


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return request validation failures as 400 responses."""

    detail = _format_validation_errors(exc)
    logger.info("request_validation_failed method=%s path=%s detail=%s", request.method, request.url.path, detail)
    return JSONResponse(status_code=400, content={"detail": detail})


@app.exception_handler(Exception)
async def handle_unexpected_exception(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "api_call_unhandled_error method=%s path=%s error_type=%s",
        request.method,
        request.url.path,
        type(exc).__name__,
        exc_info=exc,
    )
    return JSONResponse(status_code=500, content={"detail": "internal error"})


@app.get("/api/health")
def health() -> Any:
    """Healthcheck endpoint, also checking the store."""

    try:
        get_transaction_service().ping()
    except ConnectivityFailure:
        logger.exception("healthcheck_store_unreachable")
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})
    return {"status": "ok"}


@app.get("/api/transactions")
def list_transactions() -> Any:
    return jsonable_encoder(get_transaction_service().list_transactions())


@app.post("/api/transactions", status_code=201)
def create_transaction(payload: TransactionCreateRequest) -> Any:
    transaction = get_transaction_service().create_transaction(payload)
    logger.info("transaction_created id=%s type=%s", transaction.id, transaction.type.value)
    return jsonable_encoder(transaction)


@app.get("/api/transactions/{transaction_id}")
def get_transaction(transaction_id: str) -> Any:
    return jsonable_encoder(get_transaction_service().get_transaction(transaction_id))


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(transaction_id: str) -> Response:
    if not get_transaction_service().delete_transaction(transaction_id):
        raise HTTPException(status_code=404, detail="transaction not found")
    logger.info("transaction_deleted id=%s", transaction_id)
    return Response(status_code=204)


@app.post("/api/import")
def import_transactions(
    payload: TransactionImportRequest | list[TransactionImportRecord] = Body(...),
) -> Any:
    """Import transactions; records whose id already exists are skipped, never overwritten.

    Accepts ``{"transactions": [...]}`` or a bare JSON array.
    """

    records = payload if isinstance(payload, list) else payload.transactions
    try:
        result: ImportResult = get_transaction_service().import_transactions(records)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    logger.info(
        "transactions_imported inserted=%s skipped=%s total=%s",
        result.inserted,
        result.skipped,
        result.total,
    )
    return jsonable_encoder(result)


@app.get("/api/stats")
def get_stats() -> Any:
    return jsonable_encoder(get_transaction_service().stats())


@app.get("/api/monthly-flow")
def get_monthly_flow(months: str | None = Query(default=None)) -> Any:
    """Return per-month income/expense; ``months`` outside 1..24 falls back to 7."""

    return jsonable_encoder(get_transaction_service().monthly_flow(months))


@app.get("/api/category-breakdown")
def get_category_breakdown() -> Any:
    return jsonable_encoder(get_transaction_service().category_breakdown())


def _static_root() -> Path | None:
    raw_dir = _config.static_dir()
    if not raw_dir:
        return None
    root = Path(raw_dir).resolve()
    return root if root.is_dir() else None


@app.get("/{full_path:path}", include_in_schema=False)
def serve_frontend(full_path: str) -> FileResponse:
    """Serve the bundled SPA; unknown paths fall back to ``index.html``."""

    root = _static_root()
    if root is None or full_path.startswith("api/"):
        raise HTTPException(status_code=404, detail="Not found")

    if full_path:
        candidate = (root / full_path).resolve()
        if candidate.is_file() and candidate.is_relative_to(root):
            return FileResponse(candidate)

    index_file = root / "index.html"
    if not index_file.is_file():
        raise HTTPException(status_code=404, detail="index.html not found")
    return FileResponse(index_file)
