"""User display schemas."""
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class UserSummary(BaseModel):
    """The {id, name, email} view joined into gig and application responses."""
    id: UUID
    name: str
    email: str

    model_config = ConfigDict(from_attributes=True)
