import uuid

from sqlalchemy import Boolean, Column, DateTime, String

from senditfast.core.clock import utcnow
from senditfast.core.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, index=True)
    name = Column(String, nullable=True)
    hashed_password = Column(String, nullable=True)
    plan = Column(String(16), nullable=False, default="FREE")
    created_at = Column(DateTime, default=utcnow)
    is_active = Column(Boolean, default=True)
    is_admin = Column(Boolean, default=False)
