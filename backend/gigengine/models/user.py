from sqlalchemy import Column, String, DateTime
import uuid

from gigengine.clock import utcnow
from gigengine.database import Base
from gigengine.database_types import GUID


class User(Base):
    """
    Marketplace user, owned by the accounts service.

    The gig engine only reads these rows: to resolve the authenticated actor
    and to join poster/applicant names into responses.
    """
    __tablename__ = "users"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def display_name(self) -> str:
        return self.full_name or self.email.split("@")[0]
