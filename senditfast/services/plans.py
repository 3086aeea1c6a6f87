from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from senditfast.core.config import PlanLimits, settings
from senditfast.core.exceptions import ValidationError
from senditfast.models.transfer import Transfer
from senditfast.models.user import User


def plan_limits_for(owner: User) -> PlanLimits:
    limits = settings.PLAN_LIMITS.get((owner.plan or "").upper())
    if limits is None:
        raise ValidationError(f"Unsupported plan: {owner.plan!r}")
    return limits


def month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


async def transfers_this_month(db: AsyncSession, owner_id: str, now: datetime) -> int:
    return (
        await db.execute(
            select(func.count(Transfer.id)).where(
                Transfer.owner_id == owner_id,
                Transfer.created_at >= month_start(now),
            )
        )
    ).scalar_one()
