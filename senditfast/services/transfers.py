from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Request
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError as DBIntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from senditfast.core.clock import to_naive_utc, utcnow
from senditfast.core.config import settings
from senditfast.core.exceptions import (
    AuthorizationError,
    IntegrityError,
    NotFoundError,
    PlanLimitError,
    ValidationError,
)
from senditfast.core.security import get_password_hash, verify_password
from senditfast.models.audit_log import AuditActions
from senditfast.models.branding import Branding
from senditfast.models.file_object import FileObject
from senditfast.models.transfer import Transfer, TransferStatus
from senditfast.models.upload_session import UploadSession, UploadStatus
from senditfast.models.user import User
from senditfast.services.audit import record_audit
from senditfast.services.plans import plan_limits_for, transfers_this_month
from senditfast.storage.base import DeleteReport, StorageGateway

logger = logging.getLogger("senditfast")

RECENT_TRANSFERS_LIMIT = 50


@dataclass
class TransferFile:
    key: str
    name: str
    size_bytes: int
    content_type: Optional[str] = None


def generate_slug() -> str:
    return secrets.token_urlsafe(settings.SLUG_BYTES)


async def _claimable_sessions(db: AsyncSession, owner_id: str, files: list[TransferFile]) -> dict[str, str]:
    """Check each key against the upload that produced it; return key -> content type."""
    keys = [f.key for f in files]
    sessions = {
        s.storage_key: s
        for s in (
            await db.execute(
                select(UploadSession)
                .where(UploadSession.storage_key.in_(keys))
                .execution_options(populate_existing=True)
            )
        ).scalars().all()
    }
    content_types = {}
    for f in files:
        session = sessions.get(f.key)
        if session is None or session.owner_id != owner_id:
            raise AuthorizationError(f"File {f.name!r} was not uploaded by you")
        if session.consumed_at is not None:
            raise IntegrityError(f"File {f.name!r} is already attached to a transfer")
        if session.status != UploadStatus.COMPLETED:
            raise ValidationError(f"Upload of {f.name!r} has not been completed")
        if session.file_size != f.size_bytes:
            raise ValidationError(f"Size of {f.name!r} does not match the uploaded file")
        content_types[f.key] = f.content_type or session.content_type
    return content_types


async def create_transfer(
    db: AsyncSession,
    owner: User,
    files: list[TransferFile],
    password: Optional[str] = None,
    expires_at: Optional[datetime] = None,
) -> dict:
    if not files:
        raise ValidationError("At least one file is required")
    keys = [f.key for f in files]
    if len(set(keys)) != len(keys):
        raise ValidationError("The same file was listed twice")
    for f in files:
        if f.size_bytes <= 0:
            raise ValidationError(f"File {f.name!r} is empty")

    # A slug collision rolls the session back and expires every loaded
    # instance, so nothing below may touch ``owner`` after this point.
    owner_id = owner.id
    plan = owner.plan
    limits = plan_limits_for(owner)
    now = utcnow()

    total_size = sum(f.size_bytes for f in files)
    if total_size > limits.max_size_bytes:
        raise PlanLimitError(
            f"Transfer too large. Maximum size on the {plan} plan is {limits.max_size_bytes // (1024 ** 3)} GB."
        )
    if limits.monthly_transfers >= 0:
        if await transfers_this_month(db, owner_id, now) >= limits.monthly_transfers:
            raise PlanLimitError(
                f"Monthly transfer limit reached ({limits.monthly_transfers} on the {plan} plan)"
            )

    password_hash = None
    if password:
        if not limits.password_protection:
            raise PlanLimitError(f"Password protection is not available on the {plan} plan")
        if len(password) < settings.MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {settings.MIN_PASSWORD_LENGTH} characters")
        password_hash = get_password_hash(password)

    latest_expiry = now + timedelta(days=limits.expiry_days)
    if expires_at is None:
        expiry = latest_expiry
    else:
        expiry = to_naive_utc(expires_at)
        if expiry <= now:
            raise ValidationError("expiresAt must be in the future")
        expiry = min(expiry, latest_expiry)

    branding_id = None
    if plan == "BUSINESS":
        branding_id = (
            await db.execute(select(Branding.id).where(Branding.user_id == owner_id))
        ).scalars().first()

    content_types = await _claimable_sessions(db, owner_id, files)

    for attempt in range(1, settings.SLUG_MAX_ATTEMPTS + 1):
        transfer = Transfer(
            slug=generate_slug(),
            owner_id=owner_id,
            total_size_bytes=total_size,
            status=TransferStatus.ACTIVE,
            created_at=now,
            expires_at=expiry,
            password_hash=password_hash,
            branding_id=branding_id,
        )
        db.add(transfer)
        try:
            await db.flush()
        except DBIntegrityError:
            await db.rollback()
            logger.warning("slug_collision owner=%s attempt=%s", owner_id, attempt)
            continue

        claimed = await db.execute(
            update(UploadSession)
            .where(
                UploadSession.storage_key.in_(keys),
                UploadSession.owner_id == owner_id,
                UploadSession.status == UploadStatus.COMPLETED,
                UploadSession.consumed_at.is_(None),
            )
            .values(consumed_at=now, transfer_id=transfer.id)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != len(keys):
            await db.rollback()
            raise IntegrityError("One or more files were attached to another transfer")

        for f in files:
            db.add(FileObject(
                transfer_id=transfer.id,
                storage_key=f.key,
                name=f.name,
                size_bytes=f.size_bytes,
                content_type=content_types[f.key],
                created_at=now,
            ))
        try:
            await db.commit()
        except DBIntegrityError:
            await db.rollback()
            raise IntegrityError("One or more files were attached to another transfer")

        logger.info("transfer_created id=%s owner=%s files=%s size=%s", transfer.id, owner_id, len(files), total_size)
        return {"id": transfer.id, "slug": transfer.slug, "expires_at": transfer.expires_at}

    logger.error("slug_allocation_failed owner=%s attempts=%s", owner_id, settings.SLUG_MAX_ATTEMPTS)
    raise IntegrityError("Could not allocate a share link, please try again")


def _is_visible(transfer: Optional[Transfer], now: datetime) -> bool:
    return (
        transfer is not None
        and transfer.status == TransferStatus.ACTIVE
        and transfer.expires_at > now
    )


async def _load_visible(db: AsyncSession, slug: str, now: Optional[datetime] = None) -> Transfer:
    transfer = (
        await db.execute(
            select(Transfer)
            .where(Transfer.slug == slug)
            .options(selectinload(Transfer.files), selectinload(Transfer.branding))
            .execution_options(populate_existing=True)
        )
    ).scalars().first()
    # Expired, deleted and unknown slugs all look the same to the caller.
    if not _is_visible(transfer, now or utcnow()):
        raise NotFoundError("Transfer not found")
    return transfer


def _live_files(transfer: Transfer) -> list[FileObject]:
    return [f for f in transfer.files if f.deleted_at is None]


async def list_transfers(db: AsyncSession, owner: User) -> list[dict]:
    transfers = (
        await db.execute(
            select(Transfer)
            .where(Transfer.owner_id == owner.id)
            .options(selectinload(Transfer.files))
            .order_by(Transfer.created_at.desc())
            .limit(RECENT_TRANSFERS_LIMIT)
        )
    ).scalars().all()
    return [
        {
            "id": t.id,
            "slug": t.slug,
            "status": t.status,
            "total_size_bytes": t.total_size_bytes,
            "file_count": len(t.files),
            "created_at": t.created_at,
            "expires_at": t.expires_at,
            "requires_password": t.requires_password,
            "deleted": t.deleted_at is not None,
            "cleanup_pending": t.cleanup_pending,
        }
        for t in transfers
    ]


async def get_transfer_meta(db: AsyncSession, slug: str, now: Optional[datetime] = None) -> dict:
    transfer = await _load_visible(db, slug, now)
    return {
        "slug": transfer.slug,
        "expires_at": transfer.expires_at,
        "requires_password": transfer.requires_password,
        "files": [
            {"id": f.id, "name": f.name, "size_bytes": f.size_bytes, "content_type": f.content_type}
            for f in _live_files(transfer)
        ],
        "branding": transfer.branding.as_dict() if transfer.branding else None,
    }


async def get_download_url(
    db: AsyncSession,
    storage: StorageGateway,
    slug: str,
    file_id: str,
    password: Optional[str] = None,
    request: Optional[Request] = None,
    now: Optional[datetime] = None,
) -> dict:
    transfer = await _load_visible(db, slug, now)
    if transfer.requires_password:
        if not password:
            raise AuthorizationError("Password required")
        if not verify_password(password, transfer.password_hash):
            raise AuthorizationError("Invalid password")

    file = next((f for f in _live_files(transfer) if f.id == file_id), None)
    if file is None:
        raise NotFoundError("File not found")

    url = await storage.get_download_url(
        file.storage_key,
        settings.DOWNLOAD_URL_EXPIRES,
        filename=file.name.rsplit("/", 1)[-1],
    )
    result = {
        "downloadUrl": url,
        "fileName": file.name,
        "fileSize": file.size_bytes,
        "contentType": file.content_type,
    }
    await record_audit(
        db,
        AuditActions.TRANSFER_DOWNLOAD,
        user_id=None,
        resource_type="transfer",
        resource_id=transfer.id,
        request=request,
        details={"file_id": file.id, "file_name": file.name},
    )
    return result


async def purge_transfer_objects(
    db: AsyncSession, storage: StorageGateway, transfer_id: str, now: datetime
) -> DeleteReport:
    """Delete the transfer's remaining objects and clear ``cleanup_pending`` once none are left.

    Objects confirmed gone are stamped ``deleted_at`` so a later retry only
    attempts the ones that failed.
    """
    files = (
        await db.execute(
            select(FileObject).where(FileObject.transfer_id == transfer_id, FileObject.deleted_at.is_(None))
        )
    ).scalars().all()
    report = await storage.delete_files([f.storage_key for f in files])
    deleted = set(report.deleted)
    for f in files:
        if f.storage_key in deleted:
            f.deleted_at = now
    values = {"cleanup_attempted_at": now}
    if report.ok:
        values["cleanup_pending"] = False
    await db.execute(
        update(Transfer)
        .where(Transfer.id == transfer_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    for key, err in report.failed.items():
        logger.warning("object_delete_failed transfer=%s key=%s err=%s", transfer_id, key, err)
    return report


async def delete_transfer(
    db: AsyncSession,
    storage: StorageGateway,
    transfer_id: str,
    requester: User,
    request: Optional[Request] = None,
) -> list[str]:
    """Owner-initiated delete. Returns the keys whose deletion must be retried by the sweep."""
    requester_id = requester.id
    transfer = (
        await db.execute(
            select(Transfer).where(Transfer.id == transfer_id).execution_options(populate_existing=True)
        )
    ).scalars().first()
    if transfer is None:
        raise NotFoundError("Transfer not found")
    if transfer.owner_id != requester_id:
        raise AuthorizationError("Only the owner can delete this transfer")

    now = utcnow()
    # Unreadable first, then delete objects: a crash in between leaves a
    # pending cleanup, never a live link to missing files.
    flipped = await db.execute(
        update(Transfer)
        .where(Transfer.id == transfer_id, Transfer.status == TransferStatus.ACTIVE)
        .values(status=TransferStatus.EXPIRED, expired_at=now, deleted_at=now, cleanup_pending=True)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    if flipped.rowcount == 0 and not transfer.cleanup_pending:
        return []

    report = await purge_transfer_objects(db, storage, transfer_id, now)
    await record_audit(
        db,
        AuditActions.TRANSFER_DELETE,
        user_id=requester_id,
        resource_type="transfer",
        resource_id=transfer_id,
        request=request,
        details={"deleted": len(report.deleted), "pending": sorted(report.failed)},
    )
    logger.info("transfer_deleted id=%s deleted=%s pending=%s", transfer_id, len(report.deleted), len(report.failed))
    return sorted(report.failed)
