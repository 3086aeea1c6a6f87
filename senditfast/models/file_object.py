import uuid

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship

from senditfast.core.clock import utcnow
from senditfast.core.database import Base


class FileObject(Base):
    __tablename__ = "file_objects"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    transfer_id = Column(String(36), ForeignKey("transfers.id"), index=True, nullable=False)
    storage_key = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=False)
    size_bytes = Column(BigInteger, nullable=False)
    content_type = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    deleted_at = Column(DateTime, nullable=True)

    transfer = relationship("Transfer", back_populates="files")
