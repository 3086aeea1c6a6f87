import logging

import httpx
from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from senditfast.core.database import get_db
from senditfast.core.dependencies import get_http_client, get_storage
from senditfast.core.exceptions import ValidationError
from senditfast.core.security import get_current_user
from senditfast.models.user import User
from senditfast.schemas.uploads import (
    PartUrlRequest,
    UploadAbortRequest,
    UploadCompleteRequest,
    UploadCreateRequest,
    UploadCreateResponse,
)
from senditfast.services import uploads as upload_service
from senditfast.services.relay import iter_upload_file, relay_part
from senditfast.storage.base import CompletedPart, StorageGateway

logger = logging.getLogger("senditfast")

router = APIRouter(prefix="/upload", tags=["Uploads"])


@router.post("/create", response_model=UploadCreateResponse)
async def create_upload(
    body: UploadCreateRequest,
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    result = await upload_service.create_upload(
        db, storage, current_user, body.file_name, body.file_size, body.content_type
    )
    return UploadCreateResponse(
        upload_id=result["uploadId"],
        key=result["key"],
        part_urls=result["partUrls"],
        part_size=result["partSize"],
    )


@router.post("/part-url")
async def refresh_part_url(
    body: PartUrlRequest,
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    url = await upload_service.refresh_part_url(
        db, storage, current_user, body.upload_id, body.key, body.part_number
    )
    return {"partNumber": body.part_number, "partUrl": url}


@router.post("/parts")
async def upload_part(
    file: UploadFile = File(...),
    partUrl: str = Form(...),
    partNumber: int = Form(..., ge=1),
    uploadId: str = Form(...),
    key: str = Form(...),
    db: AsyncSession = Depends(get_db),
    client: httpx.AsyncClient = Depends(get_http_client),
    storage: StorageGateway = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    await upload_service.check_part_target(db, storage, current_user, uploadId, key, partNumber, partUrl)
    size = file.size
    if size is None:
        # Spooled uploads report no size on some servers; measure it.
        file.file.seek(0, 2)
        size = file.file.tell()
        file.file.seek(0)
    if size == 0:
        raise ValidationError("Part is empty")

    etag = await relay_part(client, partUrl, partNumber, iter_upload_file(file), size)
    logger.info("part_relayed user=%s key=%s part=%s size=%s", current_user.id, key, partNumber, size)
    return {"etag": etag, "partNumber": partNumber}


@router.post("/complete")
async def complete_upload(
    body: UploadCompleteRequest,
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    parts = [CompletedPart(p.part_number, p.etag) for p in body.parts]
    await upload_service.complete_upload(db, storage, current_user, body.upload_id, body.key, parts)
    return {"success": True, "key": body.key}


@router.post("/abort")
async def abort_upload(
    body: UploadAbortRequest,
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    await upload_service.abort_upload(db, storage, current_user, body.upload_id, body.key)
    return {"success": True}
