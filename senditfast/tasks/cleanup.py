import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from senditfast.core.clock import utcnow
from senditfast.core.config import settings
from senditfast.core.database import SessionLocal
from senditfast.core.exceptions import TransferServiceError
from senditfast.models.transfer import Transfer, TransferStatus
from senditfast.models.upload_session import UploadSession, UploadStatus
from senditfast.monitoring.setup import report_orphans, report_sweep
from senditfast.services.transfers import purge_transfer_objects
from senditfast.storage.base import StorageGateway

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    processed: int = 0
    deleted: int = 0
    errors: list[str] = field(default_factory=list)
    retried: int = 0

    def as_dict(self) -> dict:
        return {
            "processed": self.processed,
            "deleted": self.deleted,
            "errors": list(self.errors),
            "retried": self.retried,
        }


async def _claim(db: AsyncSession, transfer_id: str, now: datetime) -> bool:
    """ACTIVE -> EXPIRED compare-and-set; False when another sweep (or the owner) got there first."""
    result = await db.execute(
        update(Transfer)
        .where(Transfer.id == transfer_id, Transfer.status == TransferStatus.ACTIVE)
        .values(status=TransferStatus.EXPIRED, expired_at=now, cleanup_pending=True)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount == 1


async def _cleanup_one(db: AsyncSession, storage: StorageGateway, transfer_id: str, now: datetime,
                       result: SweepResult) -> None:
    try:
        report = await purge_transfer_objects(db, storage, transfer_id, now)
    except Exception as e:
        # Anything that escapes here must not stop the rest of the batch;
        # the transfer stays cleanup_pending and is retried on the next run.
        logger.exception("Sweep failed for transfer %s: %s", transfer_id, e)
        await db.rollback()
        result.errors.append(f"{transfer_id}: {e}")
        return
    result.deleted += len(report.deleted)
    for key, err in report.failed.items():
        result.errors.append(f"{transfer_id}: {key}: {err}")


async def run_expiration_sweep(
    db: AsyncSession,
    storage: StorageGateway,
    batch_size: int = settings.SWEEP_BATCH_SIZE,
    now: Optional[datetime] = None,
) -> SweepResult:
    started = utcnow()
    now = now or utcnow()
    result = SweepResult()

    due = (
        await db.execute(
            select(Transfer.id)
            .where(Transfer.status == TransferStatus.ACTIVE, Transfer.expires_at <= now)
            .order_by(Transfer.expires_at)
            .limit(batch_size)
        )
    ).scalars().all()

    claimed = set()
    for transfer_id in due:
        if not await _claim(db, transfer_id, now):
            continue
        claimed.add(transfer_id)
        result.processed += 1
        await _cleanup_one(db, storage, transfer_id, now, result)

    pending = (
        await db.execute(
            select(Transfer.id)
            .where(Transfer.status == TransferStatus.EXPIRED, Transfer.cleanup_pending.is_(True))
            .order_by(Transfer.cleanup_attempted_at.asc().nulls_first(), Transfer.expired_at, Transfer.id)
            .limit(batch_size)
        )
    ).scalars().all()
    for transfer_id in pending:
        if transfer_id in claimed:
            continue
        result.retried += 1
        await _cleanup_one(db, storage, transfer_id, now, result)

    duration = (utcnow() - started).total_seconds()
    report_sweep(result.processed, result.deleted, len(result.errors), duration)
    logger.info("sweep_summary processed=%s retried=%s deleted=%s errors=%s duration=%.3fs",
                result.processed, result.retried, result.deleted, len(result.errors), duration)
    return result


async def get_cleanup_stats(db: AsyncSession, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    expired_count, total_size, oldest = (
        await db.execute(
            select(
                func.count(Transfer.id),
                func.coalesce(func.sum(Transfer.total_size_bytes), 0),
                func.min(Transfer.expires_at),
            ).where(Transfer.status == TransferStatus.ACTIVE, Transfer.expires_at <= now)
        )
    ).one()
    pending = (
        await db.execute(
            select(func.count(Transfer.id)).where(
                Transfer.status == TransferStatus.EXPIRED, Transfer.cleanup_pending.is_(True)
            )
        )
    ).scalar_one()
    return {
        "expiredCount": expired_count,
        "totalSizeBytes": int(total_size),
        "oldestExpired": oldest.isoformat() if oldest else None,
        "pendingCleanupCount": pending,
    }


async def _set_upload_status(db: AsyncSession, session_id: str, expected: str, new: str) -> bool:
    result = await db.execute(
        update(UploadSession)
        .where(
            UploadSession.id == session_id,
            UploadSession.status == expected,
            UploadSession.consumed_at.is_(None),
        )
        .values(status=new)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount == 1


async def reap_orphaned_uploads(
    db: AsyncSession,
    storage: StorageGateway,
    grace: Optional[timedelta] = None,
    now: Optional[datetime] = None,
    batch_size: int = settings.SWEEP_BATCH_SIZE,
) -> int:
    """Release uploads that were never attached to a transfer within the grace window.

    Unfinished multipart uploads are aborted; finished but unclaimed objects
    are deleted. The session is flipped first so a late ``create_transfer``
    cannot claim an object that is being removed; a storage failure flips it
    back for the next run.
    """
    now = now or utcnow()
    cutoff = now - (grace if grace is not None else timedelta(hours=settings.ORPHAN_GRACE_HOURS))
    finished_at = func.coalesce(UploadSession.completed_at, UploadSession.created_at)
    stale = (
        await db.execute(
            select(UploadSession.id, UploadSession.status, UploadSession.storage_key, UploadSession.upload_id)
            .where(
                UploadSession.consumed_at.is_(None),
                or_(
                    and_(UploadSession.status == UploadStatus.PENDING, UploadSession.created_at <= cutoff),
                    # A finished upload gets its full grace from the moment it completed.
                    and_(UploadSession.status == UploadStatus.COMPLETED, finished_at <= cutoff),
                ),
            )
            .order_by(UploadSession.created_at)
            .limit(batch_size)
        )
    ).all()

    reaped = 0
    for session_id, status, key, upload_id in stale:
        target = UploadStatus.ABORTED if status == UploadStatus.PENDING else UploadStatus.REAPED
        if not await _set_upload_status(db, session_id, status, target):
            continue
        try:
            if status == UploadStatus.PENDING:
                await storage.abort_multipart_upload(key, upload_id)
            else:
                await storage.delete_file(key)
        except TransferServiceError as e:
            logger.warning("Orphan reap failed key=%s err=%s", key, e.detail)
            await _set_upload_status(db, session_id, target, status)
            continue
        reaped += 1

    report_orphans(reaped)
    if reaped:
        logger.info("orphan_summary reaped=%s cutoff=%s", reaped, cutoff.isoformat())
    return reaped


async def cleanup_expired_transfers(storage: StorageGateway, interval: int = settings.SWEEP_INTERVAL_SECONDS):
    logger.info("Cleanup task started: interval=%s batch=%s", interval, settings.SWEEP_BATCH_SIZE)

    while True:
        try:
            async with SessionLocal() as db:
                await run_expiration_sweep(db, storage)
                await reap_orphaned_uploads(db, storage)
            await asyncio.sleep(interval)

        except asyncio.CancelledError:
            logger.info("Cleanup task cancelled by shutdown")
            raise
        except Exception as e:
            logger.exception("Cleanup loop error: %s", e)
            await asyncio.sleep(min(60, interval))


async def start_cleanup_task(storage: StorageGateway, interval: int = settings.SWEEP_INTERVAL_SECONDS):
    return await cleanup_expired_transfers(storage, interval)
