"""Pricing API routes: price, summarize, persist and rehydrate quotes."""
import logging
from typing import List, Optional
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from quote_engine.exceptions import ValidationError
from quote_engine.models.catalog_schema import Catalogs
from quote_engine.models.quote_schema import (
    CostSummary,
    LineItemInput,
    PersistedQuoteItem,
    PricingConfig,
    QuoteResult,
)
from quote_engine.services.quote_pipeline import price_quote, summarize_quote
from quote_engine.services.rehydration_engine import persist, rehydrate

router = APIRouter(prefix="/api/pricing", tags=["Pricing"])
logger = logging.getLogger("quote-engine.api")


class QuoteRequest(BaseModel):
    quote_id: Optional[str] = None
    items: List[LineItemInput] = Field(default_factory=list)
    catalogs: Catalogs = Field(default_factory=Catalogs)
    config: PricingConfig = Field(default_factory=PricingConfig)


class PersistRequest(BaseModel):
    items: List[LineItemInput] = Field(default_factory=list)
    catalogs: Catalogs = Field(default_factory=Catalogs)


class RehydrateRequest(BaseModel):
    items: List[PersistedQuoteItem] = Field(default_factory=list)
    catalogs: Catalogs = Field(default_factory=Catalogs)


class RehydrateResponse(BaseModel):
    items: List[LineItemInput]


def _reject(exc: ValidationError) -> HTTPException:
    logger.info("rejected pricing input: %s", exc.message)
    return HTTPException(status_code=422, detail=exc.to_dict())


@router.post("/quote", response_model=QuoteResult)
def quote(body: QuoteRequest, request: Request):
    """Summary, itemised breakdown, reconciliation status and payment terms."""
    quote_id = body.quote_id or getattr(request.state, "request_id", None)
    try:
        return price_quote(body.items, body.catalogs, body.config, quote_id=quote_id)
    except ValidationError as exc:
        raise _reject(exc)


@router.post("/summary", response_model=CostSummary)
def summary(body: QuoteRequest):
    try:
        return summarize_quote(body.items, body.catalogs, body.config)
    except ValidationError as exc:
        raise _reject(exc)


@router.post("/persist", response_model=List[PersistedQuoteItem])
def persist_items(body: PersistRequest):
    """Flat records to store with a saved quote."""
    try:
        return persist(body.items, body.catalogs)
    except ValidationError as exc:
        raise _reject(exc)


@router.post("/rehydrate", response_model=RehydrateResponse)
def rehydrate_items(body: RehydrateRequest):
    """Typed line items rebuilt from stored records; unknown classifications load as products."""
    try:
        return RehydrateResponse(items=rehydrate(body.items, body.catalogs))
    except ValidationError as exc:
        raise _reject(exc)
