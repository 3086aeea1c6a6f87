import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from senditfast.core.database import SessionLocal, get_db
from senditfast.core.dependencies import get_mailer, get_storage
from senditfast.core.security import get_current_user
from senditfast.models.audit_log import AuditActions
from senditfast.models.user import User
from senditfast.schemas.transfers import NotifyRequest, TransferCreateRequest, TransferCreateResponse
from senditfast.services import notifications, transfers
from senditfast.services.audit import record_audit
from senditfast.storage.base import StorageGateway
from senditfast.utils.email import Mailer
from senditfast.utils.urls import external_base_url

logger = logging.getLogger("senditfast")

router = APIRouter(prefix="/transfers", tags=["Transfers"])


@router.post("/create", response_model=TransferCreateResponse)
async def create_transfer(
    body: TransferCreateRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    user_id = current_user.id
    files = [
        transfers.TransferFile(key=f.key, name=f.name, size_bytes=f.size_bytes, content_type=f.content_type)
        for f in body.files
    ]
    result = await transfers.create_transfer(
        db, current_user, files, password=body.password, expires_at=body.expires_at
    )
    await record_audit(
        db,
        AuditActions.TRANSFER_CREATE,
        user_id=user_id,
        resource_type="transfer",
        resource_id=result["id"],
        request=request,
        details={"files": len(files), "password": bool(body.password)},
    )
    return result


@router.get("")
async def list_transfers(db: AsyncSession = Depends(get_db), current_user: User = Depends(get_current_user)):
    return {"items": await transfers.list_transfers(db, current_user)}


@router.delete("/{transfer_id}")
async def delete_transfer(
    transfer_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    pending = await transfers.delete_transfer(db, storage, transfer_id, current_user, request=request)
    return {"success": True, "cleanupPending": bool(pending)}


def _sender_name(user: User) -> str:
    return user.name or user.email or "Someone"


@router.post("/{transfer_id}/notify", status_code=status.HTTP_202_ACCEPTED)
async def notify_recipients(
    transfer_id: str,
    body: NotifyRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
    current_user: User = Depends(get_current_user),
):
    user_id, sender = current_user.id, _sender_name(current_user)
    rows = await notifications.queue_notifications(
        db, transfer_id, current_user, [str(r) for r in body.recipients], body.message
    )
    recipient_ids = [r.id for r in rows]
    background_tasks.add_task(
        notifications.deliver_notifications,
        SessionLocal,
        mailer,
        recipient_ids,
        external_base_url(request),
        body.message,
        sender,
    )
    await record_audit(
        db,
        AuditActions.TRANSFER_NOTIFY,
        user_id=user_id,
        resource_type="transfer",
        resource_id=transfer_id,
        request=request,
        details={"recipients": len(recipient_ids)},
    )
    return {"success": True, "queued": len(recipient_ids), "recipients": [r.email for r in rows]}


@router.post("/{transfer_id}/notify/retry", status_code=status.HTTP_202_ACCEPTED)
async def retry_notifications(
    transfer_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
    current_user: User = Depends(get_current_user),
):
    sender = _sender_name(current_user)
    recipient_ids = await notifications.retry_failed_notifications(db, transfer_id, current_user)
    if recipient_ids:
        background_tasks.add_task(
            notifications.deliver_notifications,
            SessionLocal,
            mailer,
            recipient_ids,
            external_base_url(request),
            None,
            sender,
        )
    return {"success": True, "queued": len(recipient_ids)}
