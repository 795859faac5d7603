from dotenv import load_dotenv
load_dotenv()

import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from database import get_db

# ENV
from config.env import (
    CORS_ALLOWED_ORIGINS,
    ENV,
    LOG_LEVEL,
    PAYOUT_PROVIDER,
    PAYOUT_RECONCILE_INTERVAL_SECONDS,
    validate_production_env,
)

# ROUTES
from routes.orders import router as orders_router
from routes.refunds import router as refunds_router
from routes.returns import router as returns_router
from routes.disputes import router as disputes_router
from routes.seller import router as seller_router
from routes.admin import router as admin_router

# WORKERS
from utils.indexes import ensure_indexes
from workers.payout_reconcile_worker import payout_reconcile_worker

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

validate_production_env()
logger.info("ENV=%s", ENV)

app = FastAPI(
    title="Marketplace Settlement API",
    version="1.0.0",
    docs_url=None if ENV == "production" else "/docs",
    redoc_url=None if ENV == "production" else "/redoc",
    openapi_url=None if ENV == "production" else "/openapi.json",
)

# -----------------------------
# CORS
# -----------------------------

allowed_origins = [origin.strip() for origin in CORS_ALLOWED_ORIGINS if origin.strip()]
if not allowed_origins:
    allowed_origins = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -----------------------------
# ROUTES
# -----------------------------

app.include_router(orders_router, prefix="/api")
app.include_router(refunds_router, prefix="/api")
app.include_router(returns_router, prefix="/api")
app.include_router(disputes_router, prefix="/api")
app.include_router(seller_router, prefix="/api")
app.include_router(admin_router, prefix="/api")

# -----------------------------
# HEALTH CHECKS
# -----------------------------

@app.get("/api/health")
async def health():
    return {"status": "ok"}


@app.get("/api/health/db")
async def health_db():
    db = get_db()
    await db.command("ping")
    return {"status": "mongodb connected"}

# -----------------------------
# STARTUP
# -----------------------------

@app.on_event("startup")
async def startup():
    db = get_db()
    await ensure_indexes(db)

    # Manual payouts settle synchronously; nothing to poll.
    if PAYOUT_RECONCILE_INTERVAL_SECONDS > 0 and PAYOUT_PROVIDER != "manual":
        asyncio.create_task(payout_reconcile_worker())
