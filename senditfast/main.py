import logging
from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from senditfast.core.clock import utcnow
from senditfast.core.config import settings
from senditfast.core.database import Base, SessionLocal, engine
from senditfast.core.exceptions import TransferServiceError, register_exception_handlers
from senditfast.monitoring.setup import setup_monitoring
from senditfast.routes import admin, share, tracking, transfers, uploads
from senditfast.storage import build_storage_gateway
from senditfast.utils.email import build_mailer

logger = logging.getLogger("senditfast")


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        async with engine.begin() as conn:
            if engine.url.get_backend_name() == "sqlite":
                await conn.execute(text("PRAGMA journal_mode=WAL;"))
            await conn.run_sync(Base.metadata.create_all)
            logger.info("Database initialized: tables=%s", ", ".join(sorted(Base.metadata.tables)))
    except SQLAlchemyError as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    storage = build_storage_gateway(settings)
    await storage.ensure_bucket()
    logger.info("Storage backend ready: %s bucket=%s", settings.STORAGE_BACKEND, storage.bucket)

    # The relay streams part bodies that can be hundreds of MiB; only the
    # connect phase gets a short timeout.
    http_client = httpx.AsyncClient(
        transport=storage.http_transport(),
        timeout=httpx.Timeout(300.0, connect=10.0),
    )

    app.state.storage = storage
    app.state.http_client = http_client
    app.state.mailer = build_mailer(settings)

    yield

    await http_client.aclose()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="SendItFast",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "Content-Length"],
)

register_exception_handlers(app)

app.include_router(uploads)
app.include_router(transfers)
app.include_router(share)
app.include_router(tracking)
app.include_router(admin)

setup_monitoring(app)


@app.get("/health")
async def health_check():
    try:
        async with SessionLocal() as session:
            await session.execute(text("SELECT 1"))
        db_status = "ok"
    except SQLAlchemyError as e:
        db_status = f"error: {str(e)}"

    try:
        await app.state.storage.ping()
        storage_status = "ok"
    except TransferServiceError as e:
        storage_status = f"error: {e.detail}"

    return {
        "status": "running",
        "timestamp": utcnow().isoformat(),
        "database": db_status,
        "storage": storage_status
    }


if __name__ == "__main__":
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_level="info",
        timeout_keep_alive=60,
        limit_concurrency=100
    )
