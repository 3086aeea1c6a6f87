import uuid

from sqlalchemy import BigInteger, Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship

from senditfast.core.clock import utcnow
from senditfast.core.database import Base


class TransferStatus:
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"


class Transfer(Base):
    __tablename__ = "transfers"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    slug = Column(String(64), unique=True, index=True, nullable=False)
    owner_id = Column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    total_size_bytes = Column(BigInteger, nullable=False)
    status = Column(String(16), nullable=False, default=TransferStatus.ACTIVE, index=True)
    created_at = Column(DateTime, default=utcnow)
    expires_at = Column(DateTime, nullable=False, index=True)
    expired_at = Column(DateTime, nullable=True)
    # Set when the owner deleted the transfer; otherwise it expired on schedule.
    deleted_at = Column(DateTime, nullable=True)
    # Backing objects still exist in storage and the sweep must retry them.
    cleanup_pending = Column(Boolean, nullable=False, default=False)
    # Last purge attempt; the sweep retries the least recently attempted first.
    cleanup_attempted_at = Column(DateTime, nullable=True)
    password_hash = Column(String, nullable=True)
    branding_id = Column(String(36), ForeignKey("brandings.id"), nullable=True)

    files = relationship("FileObject", back_populates="transfer", order_by="FileObject.created_at")
    recipients = relationship("Recipient", back_populates="transfer")
    branding = relationship("Branding")

    @property
    def requires_password(self) -> bool:
        return self.password_hash is not None
