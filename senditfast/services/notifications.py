"""Recipient fan-out for share links, with open/click tracking tokens.

Every recipient is an independent unit: its own token, its own send with
retries and its own stored outcome, so one bounced address never holds
back the rest of the list.
"""

import asyncio
import logging
import secrets
from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from senditfast.core.clock import utcnow
from senditfast.core.config import settings
from senditfast.core.exceptions import AuthorizationError, MailDeliveryError, NotFoundError, ValidationError
from senditfast.models.recipient import DeliveryStatus, Recipient
from senditfast.models.transfer import Transfer, TransferStatus
from senditfast.models.user import User
from senditfast.monitoring.setup import report_notification
from senditfast.utils.email import Mailer, OutgoingEmail, transfer_email
from senditfast.utils.urls import open_pixel_url, share_url

logger = logging.getLogger("senditfast")


def _normalize_recipients(recipients: list[str]) -> list[str]:
    seen = set()
    unique = []
    for address in recipients:
        address = address.strip()
        if address and address.lower() not in seen:
            seen.add(address.lower())
            unique.append(address)
    if not unique:
        raise ValidationError("At least one recipient is required")
    if len(unique) > settings.MAX_RECIPIENTS:
        raise ValidationError(f"At most {settings.MAX_RECIPIENTS} recipients per transfer")
    return unique


async def _owned_active_transfer(db: AsyncSession, transfer_id: str, requester_id: str) -> Transfer:
    transfer = (await db.execute(select(Transfer).where(Transfer.id == transfer_id))).scalars().first()
    if transfer is None:
        raise NotFoundError("Transfer not found")
    if transfer.owner_id != requester_id:
        raise AuthorizationError("Only the owner can share this transfer")
    if transfer.status != TransferStatus.ACTIVE or transfer.expires_at <= utcnow():
        raise NotFoundError("Transfer not found")
    return transfer


async def queue_notifications(
    db: AsyncSession,
    transfer_id: str,
    requester: User,
    recipients: list[str],
    message: Optional[str] = None,
) -> list[Recipient]:
    await _owned_active_transfer(db, transfer_id, requester.id)
    rows = [
        Recipient(
            transfer_id=transfer_id,
            email=address,
            token=secrets.token_urlsafe(24),
            status=DeliveryStatus.PENDING,
            attempts=0,
        )
        for address in _normalize_recipients(recipients)
    ]
    db.add_all(rows)
    await db.commit()
    logger.info("notifications_queued transfer=%s recipients=%s", transfer_id, len(rows))
    return rows


async def retry_failed_notifications(db: AsyncSession, transfer_id: str, requester: User) -> list[str]:
    """Requeue FAILED recipients, and PENDING ones whose delivery never finished."""
    await _owned_active_transfer(db, transfer_id, requester.id)
    stale_before = utcnow() - timedelta(seconds=settings.NOTIFICATION_STALE_SECONDS)
    requeue = (
        await db.execute(
            select(Recipient).where(
                Recipient.transfer_id == transfer_id,
                or_(
                    Recipient.status == DeliveryStatus.FAILED,
                    and_(Recipient.status == DeliveryStatus.PENDING, Recipient.created_at <= stale_before),
                ),
            )
        )
    ).scalars().all()
    for r in requeue:
        r.status = DeliveryStatus.PENDING
        r.last_error = None
    await db.commit()
    return [r.id for r in requeue]


async def _send_with_retry(mailer: Mailer, email: OutgoingEmail) -> tuple[int, Optional[str], Optional[str]]:
    """Returns (attempts, message_id, last_error)."""
    last_error = None
    for attempt in range(1, settings.EMAIL_RETRY_ATTEMPTS + 1):
        try:
            return attempt, await mailer.send(email), None
        except MailDeliveryError as e:
            last_error = e.detail
            logger.warning(f"Email send failed (attempt {attempt}/{settings.EMAIL_RETRY_ATTEMPTS}) "
                           f"to={email.to_email} err={e.detail}")
            if attempt < settings.EMAIL_RETRY_ATTEMPTS:
                await asyncio.sleep(settings.EMAIL_RETRY_BACKOFF_SECS * attempt)
    return settings.EMAIL_RETRY_ATTEMPTS, None, last_error


async def deliver_notifications(
    session_factory: Callable[[], AsyncSession],
    mailer: Mailer,
    recipient_ids: list[str],
    base_url: str,
    message: Optional[str] = None,
    sender_name: Optional[str] = None,
) -> dict[str, str]:
    """Send to every PENDING recipient concurrently and store each outcome.

    Runs after the response has gone out, so it opens its own session.
    Returns recipient id -> final delivery status.
    """
    if not recipient_ids:
        return {}

    async with session_factory() as db:
        pending = (
            await db.execute(
                select(Recipient)
                .where(Recipient.id.in_(recipient_ids), Recipient.status == DeliveryStatus.PENDING)
                .options(selectinload(Recipient.transfer).selectinload(Transfer.files))
            )
        ).scalars().all()

        emails = {}
        for r in pending:
            transfer = r.transfer
            emails[r.id] = transfer_email(
                to_email=r.email,
                link=share_url(base_url, transfer.slug, r.token),
                pixel_url=open_pixel_url(base_url, r.token),
                file_names=[f.name for f in transfer.files if f.deleted_at is None],
                expires_at=transfer.expires_at.strftime("%Y-%m-%d %H:%M UTC"),
                message=message,
                sender_name=sender_name,
            )

        ids = list(emails)
        outcomes = await asyncio.gather(
            *(_send_with_retry(mailer, emails[rid]) for rid in ids), return_exceptions=True
        )

        now = utcnow()
        statuses = {}
        by_id = {r.id: r for r in pending}
        for rid, outcome in zip(ids, outcomes):
            r = by_id[rid]
            if isinstance(outcome, BaseException):
                logger.error("Email send crashed to=%s err=%s", r.email, outcome)
                attempts, message_id, error = 1, None, str(outcome) or outcome.__class__.__name__
            else:
                attempts, message_id, error = outcome
            r.attempts = (r.attempts or 0) + attempts
            if error is None:
                r.status = DeliveryStatus.SENT
                r.sent_at = now
                r.message_id = message_id
                r.last_error = None
            else:
                r.status = DeliveryStatus.FAILED
                r.last_error = error[:500]
            statuses[rid] = r.status
            report_notification(r.status)
        await db.commit()

    sent = sum(1 for s in statuses.values() if s == DeliveryStatus.SENT)
    logger.info("notifications_delivered sent=%s failed=%s", sent, len(statuses) - sent)
    return statuses


async def _record_hit(db: AsyncSession, token: str, first_hit, counter) -> bool:
    try:
        recipient_id = (
            await db.execute(select(Recipient.id).where(Recipient.token == token))
        ).scalars().first()
        if recipient_id is None:
            return False
        now = utcnow()
        await db.execute(
            update(Recipient)
            .where(Recipient.id == recipient_id)
            .values({counter: counter + 1})
            .execution_options(synchronize_session=False)
        )
        await db.execute(
            update(Recipient)
            .where(Recipient.id == recipient_id, first_hit.is_(None))
            .values({first_hit: now})
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return True
    except SQLAlchemyError as e:
        logger.warning("tracking_write_failed token=%s err=%s", token[:8], e)
        await db.rollback()
        return False


async def record_open(db: AsyncSession, token: str) -> bool:
    return await _record_hit(db, token, Recipient.opened_at, Recipient.open_count)


async def record_click(db: AsyncSession, token: str) -> bool:
    return await _record_hit(db, token, Recipient.clicked_at, Recipient.click_count)
