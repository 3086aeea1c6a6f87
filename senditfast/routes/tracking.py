import base64

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from senditfast.core.database import get_db
from senditfast.services.notifications import record_click, record_open

router = APIRouter(prefix="/email/track", tags=["Tracking"])

# 1x1 transparent GIF
PIXEL = base64.b64decode("R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7")


@router.get("/open/{token}")
async def track_open(token: str, db: AsyncSession = Depends(get_db)):
    await record_open(db, token)
    return Response(
        content=PIXEL,
        media_type="image/gif",
        headers={"Cache-Control": "no-store, no-cache, must-revalidate, max-age=0"},
    )


@router.post("/click/{token}")
async def track_click(token: str, db: AsyncSession = Depends(get_db)):
    await record_click(db, token)
    return {"success": True}
