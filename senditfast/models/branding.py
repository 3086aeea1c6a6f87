import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String

from senditfast.core.clock import utcnow
from senditfast.core.database import Base


class Branding(Base):
    """Custom share-page look for business accounts. Edited by the account service."""

    __tablename__ = "brandings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id"), unique=True, index=True)
    company_name = Column(String, nullable=True)
    logo_url = Column(String, nullable=True)
    primary_color = Column(String(16), nullable=True)
    secondary_color = Column(String(16), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    def as_dict(self) -> dict:
        return {
            "company_name": self.company_name,
            "logo_url": self.logo_url,
            "primary_color": self.primary_color,
            "secondary_color": self.secondary_color,
        }
