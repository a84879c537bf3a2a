"""Application-related Pydantic schemas."""
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from gigengine.clock import to_naive_utc
from gigengine.models.gig import ApplicationStatus, GigApplication
from gigengine.schemas.common import Pagination
from gigengine.schemas.user import UserSummary


class ApplicationCreate(BaseModel):
    """Request body for POST /gigs/{id}/apply."""
    proposed_rate: Optional[float] = Field(default=None, ge=0)
    message: Optional[str] = Field(default=None, max_length=1000)
    portfolio_links: List[str] = Field(default_factory=list, max_length=20)
    estimated_duration: Optional[float] = Field(default=None, ge=0)  # hours
    availability: Optional[datetime] = None

    @field_validator("message")
    @classmethod
    def _strip_message(cls, value: Optional[str]) -> Optional[str]:
        return value.strip() if value else value

    @field_validator("availability")
    @classmethod
    def _naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value)


class ApplicationResponse(BaseModel):
    id: UUID
    gig_id: UUID
    applicant_id: UUID
    applicant: Optional[UserSummary] = None
    status: ApplicationStatus
    applied_at: datetime
    proposed_rate: Optional[float] = None
    message: Optional[str] = None
    portfolio_links: List[str] = []
    estimated_duration: Optional[float] = None
    availability: Optional[datetime] = None

    @classmethod
    def from_application(
        cls, application: GigApplication, applicant: Optional[UserSummary] = None
    ) -> "ApplicationResponse":
        return cls(
            id=application.id,
            gig_id=application.gig_id,
            applicant_id=application.applicant_id,
            applicant=applicant,
            status=application.status,
            applied_at=application.applied_at,
            proposed_rate=application.proposed_rate,
            message=application.message,
            portfolio_links=application.portfolio_links or [],
            estimated_duration=application.estimated_duration,
            availability=application.availability,
        )


class UserApplicationResponse(BaseModel):
    """One entry of GET /gigs/user/applications: the application plus its gig."""
    gig_id: UUID
    title: str
    category: str
    gig_status: str
    payment_rate: float
    payment_type: str
    address: str
    poster: Optional[UserSummary] = None
    application: ApplicationResponse


class UserApplicationPage(BaseModel):
    results: List[UserApplicationResponse]
    pagination: Pagination
