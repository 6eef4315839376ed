from __future__ import annotations

import os
import logging
from typing import Any, Dict, List

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from .routes import router as v1_router

from ..cache import CacheRegistry
from ..db import SessionLocal, init_db
from ..errors import RatingError
from ..settings import settings

# ---------------- Logging ----------------
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("freight-rating-api")

API_VERSION = "1.0.0"

# ---------- App ----------
app = FastAPI(
    title="Freight Rating Engine",
    version=API_VERSION,
    description="Zone resolution, break-ladder, NMFC tariff and normalized carrier rating",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

# Process-local caches shared by every request served by this worker
app.state.caches = CacheRegistry.from_settings(settings)

app.include_router(v1_router)

# ----- CORS -----
_allow = settings.cors_origins
allow_origins: List[str] = [o.strip() for o in _allow.split(",") if o.strip()] if _allow else ["*"]
allow_all = (len(allow_origins) == 1 and allow_origins[0] == "*")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    # Browsers disallow credentials with "*"; use regex echo when fully open.
    allow_credentials=not allow_all,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_origin_regex=".*" if allow_all else None,
)

# ----- Errors -----
@app.exception_handler(RatingError)
async def _rating_error(request: Request, exc: RatingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})

# ----- Startup -----
@app.on_event("startup")
def _startup():
    """Create tables and seed freight classes."""
    try:
        init_db()
        logger.info("Startup complete, DB initialized.")
    except Exception:
        logger.exception("DB init failed during startup; continuing without blocking app.")

# ----- System -----
@app.get("/health", tags=["System"])
def health() -> Dict[str, Any]:
    db_ok = True
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1")).scalar()
    except Exception:
        logger.warning("Health check could not reach the database", exc_info=True)
        db_ok = False
    return {
        "ok": True,
        "version": API_VERSION,
        "db_ok": db_ok,
        "cache_stats": app.state.caches.stats(),
        "features": [
            "zone_resolution",
            "normalized_rating",
            "nmfc_tariffs",
            "rate_card_import",
            "cache_prewarm",
        ],
    }

# ----- Dev entrypoint -----
if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
