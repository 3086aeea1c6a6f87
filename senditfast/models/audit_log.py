import uuid

from sqlalchemy import Column, DateTime, String, Text

from senditfast.core.clock import utcnow
from senditfast.core.database import Base


class AuditActions:
    TRANSFER_CREATE = "transfer.create"
    TRANSFER_DELETE = "transfer.delete"
    TRANSFER_DOWNLOAD = "transfer.download"
    TRANSFER_NOTIFY = "transfer.notify"


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), nullable=True, index=True)
    action = Column(String(64), nullable=False, index=True)
    resource_type = Column(String(32), nullable=True)
    resource_id = Column(String(36), nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    details = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
