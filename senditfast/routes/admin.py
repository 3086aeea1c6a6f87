import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from senditfast.core.config import settings
from senditfast.core.database import get_db
from senditfast.core.dependencies import get_storage
from senditfast.core.security import get_current_admin
from senditfast.schemas.admin import CleanupRunResult, CleanupStats
from senditfast.storage.base import StorageGateway
from senditfast.tasks.cleanup import get_cleanup_stats, reap_orphaned_uploads, run_expiration_sweep

logger = logging.getLogger("senditfast")

router = APIRouter(tags=["Admin"])


async def _run_cleanup(db: AsyncSession, storage: StorageGateway) -> dict:
    result = await run_expiration_sweep(db, storage)
    reaped = await reap_orphaned_uploads(db, storage)
    return dict(result.as_dict(), orphansReaped=reaped)


@router.get("/admin/cleanup", response_model=CleanupStats)
async def cleanup_stats(db: AsyncSession = Depends(get_db), admin=Depends(get_current_admin)):
    return await get_cleanup_stats(db)


@router.post("/admin/cleanup", response_model=CleanupRunResult)
async def run_cleanup(
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
    admin=Depends(get_current_admin),
):
    logger.info("Manual cleanup triggered by admin %s", admin.id)
    return await _run_cleanup(db, storage)


def verify_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    if not settings.CRON_SECRET:
        return
    expected = f"Bearer {settings.CRON_SECRET}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.post("/cron/cleanup", response_model=CleanupRunResult, dependencies=[Depends(verify_cron_secret)])
async def cron_cleanup(db: AsyncSession = Depends(get_db), storage: StorageGateway = Depends(get_storage)):
    return await _run_cleanup(db, storage)
