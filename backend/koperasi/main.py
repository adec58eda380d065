"""Koperasi ledger service - FastAPI entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from koperasi.config import settings
from koperasi.database import engine, Base, async_session
from koperasi.middleware.error_capture import ErrorCaptureMiddleware
from koperasi.api import cooperative, ledger, reports
from koperasi.seed import seed_reference_data

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and seed reference data on startup (dev only); in prod use Alembic."""
    if settings.environment == "development":
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        if settings.seed_reference_data:
            async with async_session() as db:
                await seed_reference_data(db)
    yield
    await engine.dispose()


app = FastAPI(
    title="Koperasi Ledger API",
    description="Double-entry ledger, automatic journals and financial reports for a savings and loan cooperative",
    version="0.1.0",
    lifespan=lifespan,
)

# Error capture middleware
app.add_middleware(ErrorCaptureMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "X-Requested-With"],
)

app.include_router(ledger.router, prefix="/api", tags=["Ledger"])
app.include_router(reports.router, prefix="/api/reports", tags=["Reports"])
app.include_router(cooperative.router, prefix="/api/cooperative", tags=["Cooperative"])


@app.get("/api/health")
async def health_check():
    return {"status": "healthy", "service": "koperasi-ledger", "version": "0.1.0"}
