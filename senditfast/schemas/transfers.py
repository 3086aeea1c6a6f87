from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class TransferFileIn(BaseModel):
    key: str
    name: str = Field(min_length=1)
    size_bytes: int
    content_type: Optional[str] = None


class TransferCreateRequest(BaseModel):
    files: list[TransferFileIn]
    password: Optional[str] = None
    expires_at: Optional[datetime] = Field(None, alias="expiresAt")

    model_config = ConfigDict(populate_by_name=True)


class TransferCreateResponse(BaseModel):
    id: str
    slug: str
    expires_at: datetime


class SharedFile(BaseModel):
    id: str
    name: str
    size_bytes: int
    content_type: Optional[str]


class ShareMeta(BaseModel):
    slug: str
    expires_at: datetime
    requires_password: bool
    files: list[SharedFile]
    branding: Optional[dict] = None


class NotifyRequest(BaseModel):
    recipients: list[EmailStr] = Field(min_length=1)
    message: Optional[str] = Field(None, max_length=2000)
