"""Gig-related Pydantic schemas."""
from datetime import datetime
from typing import Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from gigengine.clock import to_naive_utc, utcnow
from gigengine.models.gig import (
    GIG_CATEGORIES,
    ContactPreference,
    ExperienceLevel,
    Gig,
    GigStatus,
    PaymentMethod,
    PaymentType,
    PreferredTime,
    Proficiency,
    RecurringPattern,
    Urgency,
)
from gigengine.schemas.application import ApplicationResponse
from gigengine.schemas.user import UserSummary


def _validate_category(value: Optional[str]) -> Optional[str]:
    if value is not None and value not in GIG_CATEGORIES:
        raise ValueError(f"category must be one of: {', '.join(GIG_CATEGORIES)}")
    return value


class Location(BaseModel):
    longitude: float = Field(ge=-180, le=180)
    latitude: float = Field(ge=-90, le=90)
    address: str = Field(min_length=1, max_length=500)
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = "India"
    pincode: Optional[str] = None
    landmark: Optional[str] = None


class Skill(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    category: str = Field(min_length=1, max_length=100)
    proficiency: Proficiency
    is_required: bool = True

    model_config = ConfigDict(from_attributes=True)


class Payment(BaseModel):
    rate: float = Field(ge=0)
    currency: str = Field(default="INR", min_length=3, max_length=3)
    payment_type: PaymentType
    total_budget: Optional[float] = Field(default=None, ge=0)
    advance_payment: float = Field(default=0, ge=0)
    payment_method: PaymentMethod


class Timeline(BaseModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    duration: Optional[float] = Field(default=None, ge=0.5, le=8760)  # hours
    deadline: Optional[datetime] = None
    is_flexible: bool = False
    preferred_time: PreferredTime = PreferredTime.ANYTIME

    @field_validator("start_date", "end_date", "deadline")
    @classmethod
    def _naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value)

    @model_validator(mode="after")
    def _check_dates(self) -> "Timeline":
        if self.start_date and self.end_date and self.start_date >= self.end_date:
            raise ValueError("Start date must be before end date")
        if self.deadline and self.deadline < utcnow():
            raise ValueError("Deadline cannot be in the past")
        return self


class GigCreate(BaseModel):
    """Request body for POST /gigs."""
    title: str = Field(min_length=5, max_length=200)
    description: str = Field(min_length=20, max_length=2000)
    category: str
    sub_category: Optional[str] = None
    urgency: Urgency = Urgency.MEDIUM
    experience_level: ExperienceLevel = ExperienceLevel.INTERMEDIATE

    location: Location
    is_remote: bool = False
    allows_remote: bool = False
    service_radius: Optional[float] = Field(default=None, ge=1, le=100)

    skills: List[Skill] = Field(default_factory=list)
    tools_required: List[str] = Field(default_factory=list)
    materials_provided: bool = False

    payment: Payment
    timeline: Timeline = Field(default_factory=Timeline)

    contact_preference: ContactPreference = ContactPreference.BOTH
    is_recurring: bool = False
    recurring_pattern: Optional[RecurringPattern] = None

    status: Literal["draft", "posted"] = "posted"
    expires_at: Optional[datetime] = None

    model_config = ConfigDict(str_strip_whitespace=True)

    @field_validator("category")
    @classmethod
    def _known_category(cls, value: Optional[str]) -> Optional[str]:
        return _validate_category(value)

    @field_validator("expires_at")
    @classmethod
    def _future_expiry(cls, value: Optional[datetime]) -> Optional[datetime]:
        value = to_naive_utc(value)
        if value is not None and value <= utcnow():
            raise ValueError("expires_at must be in the future")
        return value


class GigUpdate(BaseModel):
    """
    Request body for PUT /gigs/{id}.

    Status is not editable here; lifecycle changes go through
    PUT /gigs/{id}/status. `version`, when given, must match the stored
    version or the edit is rejected as a concurrent modification.
    """
    title: Optional[str] = Field(default=None, min_length=5, max_length=200)
    description: Optional[str] = Field(default=None, min_length=20, max_length=2000)
    category: Optional[str] = None
    sub_category: Optional[str] = None
    urgency: Optional[Urgency] = None
    experience_level: Optional[ExperienceLevel] = None

    location: Optional[Location] = None
    is_remote: Optional[bool] = None
    allows_remote: Optional[bool] = None
    service_radius: Optional[float] = Field(default=None, ge=1, le=100)

    skills: Optional[List[Skill]] = None
    tools_required: Optional[List[str]] = None
    materials_provided: Optional[bool] = None

    payment: Optional[Payment] = None
    timeline: Optional[Timeline] = None

    contact_preference: Optional[ContactPreference] = None
    is_recurring: Optional[bool] = None
    recurring_pattern: Optional[RecurringPattern] = None

    expires_at: Optional[datetime] = None
    version: Optional[int] = Field(default=None, ge=1)

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    @field_validator("category")
    @classmethod
    def _known_category(cls, value: Optional[str]) -> Optional[str]:
        return _validate_category(value)

    @field_validator("expires_at")
    @classmethod
    def _future_expiry(cls, value: Optional[datetime]) -> Optional[datetime]:
        value = to_naive_utc(value)
        if value is not None and value <= utcnow():
            raise ValueError("expires_at must be in the future")
        return value


class StatusChange(BaseModel):
    """Request body for PUT /gigs/{id}/status."""
    status: GigStatus
    expires_at: Optional[datetime] = None

    @field_validator("expires_at")
    @classmethod
    def _naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value)


class ApplicationSummary(BaseModel):
    pending: int = 0
    accepted: int = 0
    rejected: int = 0
    withdrawn: int = 0
    total: int = 0


class GigResponse(BaseModel):
    """Full gig view. `status` is the effective status (lazy expiry applied)."""
    id: UUID
    poster_id: UUID
    poster: Optional[UserSummary] = None

    title: str
    description: str
    category: str
    sub_category: Optional[str] = None
    urgency: Urgency
    experience_level: ExperienceLevel

    location: Location
    is_remote: bool
    allows_remote: bool
    service_radius: Optional[float] = None

    skills: List[Skill]
    tools_required: List[str]
    materials_provided: bool

    payment: Payment
    timeline: Timeline

    contact_preference: ContactPreference
    is_recurring: bool
    recurring_pattern: Optional[RecurringPattern] = None

    status: GigStatus
    assigned_to: Optional[UUID] = None
    posted_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    completion_date: Optional[datetime] = None

    views: int
    applications_count: int
    application_summary: ApplicationSummary
    applications: Optional[List[ApplicationResponse]] = None

    distance_km: Optional[float] = None
    version: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_gig(
        cls,
        gig: Gig,
        status: GigStatus,
        users: Optional[Dict[UUID, UserSummary]] = None,
        include_applications: bool = False,
        distance_km: Optional[float] = None,
    ) -> "GigResponse":
        users = users or {}
        summary = ApplicationSummary(total=len(gig.applications))
        for application in gig.applications:
            setattr(summary, application.status, getattr(summary, application.status) + 1)

        applications = None
        if include_applications:
            applications = [
                ApplicationResponse.from_application(a, users.get(a.applicant_id))
                for a in gig.applications
            ]

        return cls(
            id=gig.id,
            poster_id=gig.poster_id,
            poster=users.get(gig.poster_id),
            title=gig.title,
            description=gig.description,
            category=gig.category,
            sub_category=gig.sub_category,
            urgency=gig.urgency,
            experience_level=gig.experience_level,
            location=Location(
                longitude=gig.longitude,
                latitude=gig.latitude,
                address=gig.address,
                city=gig.city,
                state=gig.state,
                country=gig.country,
                pincode=gig.pincode,
                landmark=gig.landmark,
            ),
            is_remote=gig.is_remote,
            allows_remote=gig.allows_remote,
            service_radius=gig.service_radius,
            skills=[Skill.model_validate(s) for s in gig.skills],
            tools_required=gig.tools_required or [],
            materials_provided=gig.materials_provided,
            payment=Payment(
                rate=gig.payment_rate,
                currency=gig.payment_currency,
                payment_type=gig.payment_type,
                total_budget=gig.payment_total_budget,
                advance_payment=gig.payment_advance,
                payment_method=gig.payment_method,
            ),
            # Built without validation: a stored deadline may legitimately be in the past now
            timeline=Timeline.model_construct(
                start_date=gig.start_date,
                end_date=gig.end_date,
                duration=gig.duration_hours,
                deadline=gig.deadline,
                is_flexible=gig.is_flexible,
                preferred_time=PreferredTime(gig.preferred_time),
            ),
            contact_preference=gig.contact_preference,
            is_recurring=gig.is_recurring,
            recurring_pattern=gig.recurring_pattern,
            status=status,
            assigned_to=gig.assigned_to,
            posted_at=gig.posted_at,
            expires_at=gig.expires_at,
            completion_date=gig.completion_date,
            views=gig.views,
            applications_count=gig.applications_count,
            application_summary=summary,
            applications=applications,
            distance_km=distance_km,
            version=gig.version,
            created_at=gig.created_at,
            updated_at=gig.updated_at,
        )
