import uuid

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Integer, String

from senditfast.core.clock import utcnow
from senditfast.core.database import Base


class UploadStatus:
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    ABORTED = "ABORTED"
    REAPED = "REAPED"


class UploadSession(Base):
    """Server-side record of a multipart upload.

    Binds the storage key to the user who opened the session so that a
    transfer can only attach keys its owner actually uploaded, and only once
    (``consumed_at`` is set by the transfer that claims the key).
    """

    __tablename__ = "upload_sessions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    upload_id = Column(String, nullable=False)
    storage_key = Column(String, unique=True, index=True, nullable=False)
    file_name = Column(String, nullable=False)
    file_size = Column(BigInteger, nullable=False)
    content_type = Column(String, nullable=False)
    part_size = Column(Integer, nullable=False)
    part_count = Column(Integer, nullable=False)
    status = Column(String(16), nullable=False, default=UploadStatus.PENDING, index=True)
    created_at = Column(DateTime, default=utcnow)
    completed_at = Column(DateTime, nullable=True)
    consumed_at = Column(DateTime, nullable=True)
    transfer_id = Column(String(36), ForeignKey("transfers.id"), nullable=True)
