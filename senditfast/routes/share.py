from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from senditfast.core.database import get_db
from senditfast.core.dependencies import get_storage
from senditfast.schemas.transfers import ShareMeta
from senditfast.services import transfers
from senditfast.storage.base import StorageGateway

router = APIRouter(prefix="/share", tags=["Share"])


@router.get("/{slug}", response_model=ShareMeta)
async def get_share_meta(slug: str, db: AsyncSession = Depends(get_db)):
    return await transfers.get_transfer_meta(db, slug)


@router.get("/{slug}/download")
async def get_download_url(
    slug: str,
    request: Request,
    file_id: str = Query(..., alias="fileId"),
    password: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
):
    return await transfers.get_download_url(db, storage, slug, file_id, password=password, request=request)
