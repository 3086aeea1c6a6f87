import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from senditfast.core.clock import utcnow
from senditfast.core.database import Base


class DeliveryStatus:
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class Recipient(Base):
    __tablename__ = "recipients"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    transfer_id = Column(String(36), ForeignKey("transfers.id"), index=True, nullable=False)
    email = Column(String, nullable=False)
    token = Column(String(64), unique=True, index=True, nullable=False)
    status = Column(String(16), nullable=False, default=DeliveryStatus.PENDING)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(String, nullable=True)
    message_id = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    sent_at = Column(DateTime, nullable=True)
    opened_at = Column(DateTime, nullable=True)
    clicked_at = Column(DateTime, nullable=True)
    open_count = Column(Integer, nullable=False, default=0)
    click_count = Column(Integer, nullable=False, default=0)

    transfer = relationship("Transfer", back_populates="recipients")
