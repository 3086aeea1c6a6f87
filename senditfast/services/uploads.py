from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from senditfast.core.clock import utcnow
from senditfast.core.config import settings
from senditfast.core.exceptions import (
    AuthorizationError,
    IntegrityError,
    NotFoundError,
    PlanLimitError,
    ValidationError,
)
from senditfast.models.upload_session import UploadSession, UploadStatus
from senditfast.models.user import User
from senditfast.services.plans import plan_limits_for
from senditfast.storage.base import CompletedPart, StorageGateway, sorted_parts

logger = logging.getLogger("senditfast")


@dataclass(frozen=True)
class PartRange:
    part_number: int
    start: int
    end: int  # exclusive

    @property
    def size(self) -> int:
        return self.end - self.start


def plan_parts(file_size: int, part_size: int = settings.PART_SIZE) -> int:
    if file_size <= 0:
        raise ValidationError("fileSize must be greater than zero")
    if part_size <= 0:
        raise ValidationError("partSize must be greater than zero")
    return max(1, -(-file_size // part_size))


def part_ranges(file_size: int, part_size: int = settings.PART_SIZE) -> list[PartRange]:
    """Byte ranges a client slices the file into; every part but the last is ``part_size``."""
    count = plan_parts(file_size, part_size)
    return [
        PartRange(n + 1, n * part_size, min((n + 1) * part_size, file_size))
        for n in range(count)
    ]


async def _get_session(db: AsyncSession, owner: User, upload_id: str, key: str) -> UploadSession:
    session = (
        await db.execute(
            select(UploadSession)
            .where(UploadSession.storage_key == key)
            .execution_options(populate_existing=True)
        )
    ).scalars().first()
    if session is None or session.upload_id != upload_id:
        raise NotFoundError("Upload session not found")
    if session.owner_id != owner.id:
        raise AuthorizationError("Upload session belongs to another user")
    return session


async def create_upload(
    db: AsyncSession,
    storage: StorageGateway,
    owner: User,
    file_name: str,
    file_size: int,
    content_type: str,
    part_size: int = settings.PART_SIZE,
) -> dict:
    if not file_name or not file_name.strip():
        raise ValidationError("fileName is required")
    limits = plan_limits_for(owner)
    if file_size > limits.max_size_bytes:
        raise PlanLimitError(
            f"File too large. Maximum size on your plan is {limits.max_size_bytes // (1024 ** 3)} GB."
        )
    part_count = plan_parts(file_size, part_size)
    if part_count > settings.MAX_PART_COUNT:
        raise ValidationError(f"File needs {part_count} parts; storage allows at most {settings.MAX_PART_COUNT}")

    upload = await storage.init_multipart_upload(file_name, file_size, content_type, part_count)
    if len(upload.part_urls) != part_count:
        # A short URL list would let the client "finish" a truncated file.
        await storage.abort_multipart_upload(upload.key, upload.upload_id)
        raise IntegrityError("Storage returned an unexpected number of part URLs")

    db.add(UploadSession(
        owner_id=owner.id,
        upload_id=upload.upload_id,
        storage_key=upload.key,
        file_name=file_name,
        file_size=file_size,
        content_type=content_type,
        part_size=part_size,
        part_count=part_count,
        status=UploadStatus.PENDING,
    ))
    await db.commit()

    logger.info("upload_created owner=%s key=%s parts=%s", owner.id, upload.key, part_count)
    return {
        "uploadId": upload.upload_id,
        "key": upload.key,
        "partUrls": upload.part_urls,
        "partSize": part_size,
    }


def _check_open_part(session: UploadSession, part_number: int) -> None:
    if session.status != UploadStatus.PENDING:
        raise ValidationError(f"Upload is {session.status.lower()}; no more parts can be sent")
    if not 1 <= part_number <= session.part_count:
        raise ValidationError(f"partNumber must be between 1 and {session.part_count}")


async def refresh_part_url(
    db: AsyncSession, storage: StorageGateway, owner: User, upload_id: str, key: str, part_number: int
) -> str:
    session = await _get_session(db, owner, upload_id, key)
    _check_open_part(session, part_number)
    return await storage.get_part_upload_url(key, upload_id, part_number)


async def check_part_target(
    db: AsyncSession, storage: StorageGateway, owner: User, upload_id: str, key: str, part_number: int, part_url: str
) -> None:
    """Refuse to relay bytes anywhere but a part URL of the caller's own open upload."""
    session = await _get_session(db, owner, upload_id, key)
    _check_open_part(session, part_number)
    try:
        url = httpx.URL(part_url)
    except httpx.InvalidURL:
        raise ValidationError("partUrl is not a valid URL")
    if (
        not storage.owns_url(url, key)
        or url.params.get("uploadId") != upload_id
        or url.params.get("partNumber") != str(part_number)
    ):
        raise ValidationError("partUrl does not belong to this upload part")


async def complete_upload(
    db: AsyncSession,
    storage: StorageGateway,
    owner: User,
    upload_id: str,
    key: str,
    parts: list[CompletedPart],
) -> UploadSession:
    session = await _get_session(db, owner, upload_id, key)
    if session.status == UploadStatus.COMPLETED:
        return session
    if session.status != UploadStatus.PENDING:
        raise ValidationError(f"Upload is {session.status.lower()} and cannot be completed")

    ordered = sorted_parts(parts, expected_count=session.part_count)
    await storage.complete_multipart_upload(key, upload_id, ordered)

    session.status = UploadStatus.COMPLETED
    session.completed_at = utcnow()
    await db.commit()
    logger.info("upload_completed owner=%s key=%s parts=%s", owner.id, key, len(ordered))
    return session


async def abort_upload(db: AsyncSession, storage: StorageGateway, owner: User, upload_id: str, key: str) -> None:
    session = await _get_session(db, owner, upload_id, key)
    if session.status in (UploadStatus.ABORTED, UploadStatus.REAPED):
        return
    if session.status == UploadStatus.COMPLETED:
        raise ValidationError("Upload already completed; delete the transfer instead")
    await storage.abort_multipart_upload(key, upload_id)
    session.status = UploadStatus.ABORTED
    await db.commit()
    logger.info("upload_aborted owner=%s key=%s", owner.id, key)
