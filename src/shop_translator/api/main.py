import threading
from contextlib import asynccontextmanager
from typing import Annotated

import structlog
from fastapi import Depends, FastAPI, Header, HTTPException, Query

from shop_translator.config import settings
from shop_translator.db import grant_credits, init_db, list_ledger
from shop_translator.errors import ErrorCode, LedgerUnavailable
from shop_translator.ledger import CreditLedger
from shop_translator.logging_config import setup_logging
from shop_translator.pipeline import TranslationPipeline
from shop_translator.reporting import ErrorReporter, init_sentry
from shop_translator.schemas import AdminGrantRequest, BatchTranslationRequest, TranslationRequest
from shop_translator.worker import start_cleanup_thread

log = structlog.get_logger(__name__)

_pipeline: TranslationPipeline | None = None
_pipeline_lock = threading.Lock()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    init_sentry()
    _, stop = start_cleanup_thread()
    yield
    stop.set()


app = FastAPI(title="Shop Translator", version=settings.app_version, lifespan=lifespan)
init_db()


def get_pipeline() -> TranslationPipeline:
    global _pipeline
    with _pipeline_lock:
        if _pipeline is None:
            _pipeline = TranslationPipeline()
        return _pipeline


def get_ledger() -> CreditLedger:
    return CreditLedger()


def envelope(data: dict, status: str = "ok", error: dict | None = None) -> dict:
    return {
        "status": status,
        "data": data,
        "meta": {"model_version": settings.app_version, "latency_ms": 0},
        "error": error,
    }


def _require_admin(x_admin_token: Annotated[str | None, Header()] = None) -> None:
    if not settings.admin_api_token:
        raise HTTPException(status_code=500, detail="ADMIN_API_TOKEN is not configured")
    if x_admin_token != settings.admin_api_token:
        raise HTTPException(status_code=401, detail="Invalid admin token")


@app.get("/health")
def health() -> dict:
    return envelope({"service": "shop-translator"})


@app.get("/version")
def version() -> dict:
    return envelope({"service": "shop-translator", "version": settings.app_version})


@app.post("/v1/translate")
def translate_field(
    payload: TranslationRequest, pipeline: Annotated[TranslationPipeline, Depends(get_pipeline)]
) -> dict:
    result = pipeline.translate_field(payload)
    if result.reason == ErrorCode.INSUFFICIENT_CREDITS.value:
        raise HTTPException(status_code=402, detail="Insufficient credits")
    if result.reason == ErrorCode.LEDGER_UNAVAILABLE.value:
        raise HTTPException(status_code=503, detail="Credit ledger unavailable")
    return envelope(result.model_dump(mode="json"))


@app.post("/v1/translate/batch")
def translate_batch(
    payload: BatchTranslationRequest, pipeline: Annotated[TranslationPipeline, Depends(get_pipeline)]
) -> dict:
    try:
        results = pipeline.translate_batch(payload.shop_id, payload.requests)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return envelope({"shop_id": payload.shop_id, "results": [r.model_dump(mode="json") for r in results]})


@app.get("/v1/credits/{shop_id}")
def get_credits(shop_id: str, ledger: Annotated[CreditLedger, Depends(get_ledger)]) -> dict:
    try:
        balance = ledger.get_balance(shop_id)
    except LedgerUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return envelope(
        {
            "balance": balance.model_dump(),
            "recent_ledger": list_ledger(shop_id, limit=20),
            "recent_usage": [u.model_dump(mode="json") for u in ledger.list_usage(shop_id, limit=20)],
        }
    )


@app.post("/v1/admin/credits/grant")
def admin_grant_credits(
    payload: AdminGrantRequest,
    ledger: Annotated[CreditLedger, Depends(get_ledger)],
    x_admin_token: Annotated[str | None, Header()] = None,
) -> dict:
    _require_admin(x_admin_token=x_admin_token)
    try:
        grant_credits(
            shop_id=payload.shop_id,
            credits=payload.credits,
            note=payload.note,
            external_ref=payload.external_ref,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log.info("credits granted", shop_id=payload.shop_id, credits=payload.credits, external_ref=payload.external_ref)
    return envelope(ledger.get_balance(payload.shop_id).model_dump())


@app.post("/v1/admin/reservations/cleanup")
def admin_cleanup_reservations(
    ledger: Annotated[CreditLedger, Depends(get_ledger)],
    x_admin_token: Annotated[str | None, Header()] = None,
) -> dict:
    _require_admin(x_admin_token=x_admin_token)
    return envelope({"expired": ledger.cleanup_expired()})


@app.get("/v1/admin/incidents")
def admin_incidents(
    x_admin_token: Annotated[str | None, Header()] = None,
    limit: int = Query(100, ge=1, le=1000),
    category: str | None = Query(None),
) -> dict:
    _require_admin(x_admin_token=x_admin_token)
    return envelope({"incidents": ErrorReporter().list_incidents(limit=limit, category=category)})
