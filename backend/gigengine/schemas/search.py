"""Search request/response schemas."""
import enum
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from gigengine.models.gig import ExperienceLevel, GigStatus, PaymentType, Urgency
from gigengine.schemas.common import Pagination
from gigengine.schemas.gig import GigResponse


class SortKey(str, enum.Enum):
    RELEVANCE = "relevance"
    DISTANCE = "distance"
    NEWEST = "newest"
    RATE_ASC = "rate_asc"
    RATE_DESC = "rate_desc"


class SearchParams(BaseModel):
    """
    Search filters. All filters are ANDed; `skills` matches any of the names.

    Geo filtering needs both lat and lng; radius is in kilometers and
    defaults to the configured search radius.
    """
    q: Optional[str] = Field(default=None, max_length=200)
    category: Optional[str] = None
    skills: List[str] = Field(default_factory=list)
    min_rate: Optional[float] = Field(default=None, ge=0)
    max_rate: Optional[float] = Field(default=None, ge=0)
    payment_type: Optional[PaymentType] = None
    urgency: Optional[Urgency] = None
    experience_level: Optional[ExperienceLevel] = None
    status: Optional[GigStatus] = None
    poster_id: Optional[UUID] = None

    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)
    radius: Optional[float] = Field(default=None, gt=0)  # km

    sort: SortKey = SortKey.RELEVANCE
    page: int = Field(default=1, ge=1)
    limit: Optional[int] = Field(default=None, ge=1)

    @property
    def has_geo(self) -> bool:
        return self.lat is not None and self.lng is not None


class SearchResult(BaseModel):
    results: List[GigResponse]
    pagination: Pagination


class Suggestion(BaseModel):
    text: str
    type: Literal["title", "category", "skill"]


class SuggestionList(BaseModel):
    suggestions: List[Suggestion]
