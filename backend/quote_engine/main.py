"""
Event Quote Engine API
FastAPI service that prices event quotes: cost aggregation, margin and
retention, per-product breakdown with reconciliation, and quote rehydration.
"""
import os
import time
import logging
from dotenv import load_dotenv
from fastapi import FastAPI
from quote_engine.api.pricing_routes import router as pricing_router
from quote_engine.services.logging_config import setup_logging
from quote_engine.services.middleware import RequestTimingMiddleware

# Load .env file automatically in dev (no-op when the file is missing)
load_dotenv()

_log_level = os.getenv("LOG_LEVEL", "INFO")
_json_logs = os.getenv("LOG_FORMAT", "json").lower() != "text"
setup_logging(level=_log_level, json_output=_json_logs, engine_level=os.getenv("ENGINE_LOG_LEVEL"))
logger = logging.getLogger("quote-engine")

# Record process start time for uptime calculation
_PROCESS_START = time.monotonic()

app = FastAPI(
    title="Event Quote Engine API",
    version="1.0.0",
    description="Pricing engine for event-services quotations",
)

app.add_middleware(RequestTimingMiddleware)
app.include_router(pricing_router)


@app.get("/health")
def health():
    return {
        "status": "ok",
        "version": app.version,
        "uptime_seconds": round(time.monotonic() - _PROCESS_START, 1),
    }
