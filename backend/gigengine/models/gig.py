import enum
import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from gigengine.clock import utcnow
from gigengine.database import Base
from gigengine.database_types import GUID, JSON, UTCDateTime


class GigStatus(str, enum.Enum):
    """Gig lifecycle states. See services.lifecycle for allowed transitions."""
    DRAFT = "draft"
    POSTED = "posted"
    ACTIVE = "active"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class ApplicationStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class Urgency(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ExperienceLevel(str, enum.Enum):
    ENTRY = "entry"
    INTERMEDIATE = "intermediate"
    EXPERIENCED = "experienced"
    EXPERT = "expert"


class Proficiency(str, enum.Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"


class PaymentType(str, enum.Enum):
    HOURLY = "hourly"
    FIXED = "fixed"
    DAILY = "daily"
    WEEKLY = "weekly"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    UPI = "upi"
    BANK_TRANSFER = "bank_transfer"
    RAZORPAY = "razorpay"


class PreferredTime(str, enum.Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"
    ANYTIME = "anytime"


class ContactPreference(str, enum.Enum):
    PHONE = "phone"
    MESSAGE = "message"
    BOTH = "both"


class RecurringPattern(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


GIG_CATEGORIES = (
    "home_services", "repair_maintenance", "cleaning", "gardening",
    "tech_services", "tutoring", "photography", "event_services",
    "delivery", "personal_care", "pet_services", "automotive",
    "construction", "electrical", "plumbing", "painting",
    "moving", "handyman", "security", "other",
)


class Gig(Base):
    """
    Gig aggregate root.

    Skills and applications are owned child rows: they are only ever loaded
    and written through their gig and are deleted with it. `version` is bumped
    by every write to the aggregate and is the compare-and-swap key for
    poster edits.
    """
    __tablename__ = "gigs"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    poster_id = Column(GUID, ForeignKey("users.id"), nullable=False)

    # Basic information
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String(50), nullable=False)
    sub_category = Column(String(100), nullable=True)
    urgency = Column(String(20), nullable=False, default=Urgency.MEDIUM.value)
    experience_level = Column(String(20), nullable=False, default=ExperienceLevel.INTERMEDIATE.value)

    # Location (WGS84)
    longitude = Column(Float, nullable=False)
    latitude = Column(Float, nullable=False)
    address = Column(String(500), nullable=False)
    city = Column(String(100), nullable=True)
    state = Column(String(100), nullable=True)
    country = Column(String(100), nullable=True, default="India")
    pincode = Column(String(20), nullable=True)
    landmark = Column(String(255), nullable=True)
    is_remote = Column(Boolean, nullable=False, default=False)
    allows_remote = Column(Boolean, nullable=False, default=False)
    service_radius = Column(Float, nullable=True)  # km

    # Work details
    tools_required = Column(JSON, nullable=False, default=list)
    materials_provided = Column(Boolean, nullable=False, default=False)

    # Payment
    payment_rate = Column(Float, nullable=False)
    payment_currency = Column(String(3), nullable=False, default="INR")
    payment_type = Column(String(20), nullable=False)
    payment_total_budget = Column(Float, nullable=True)
    payment_advance = Column(Float, nullable=False, default=0)
    payment_method = Column(String(20), nullable=False)

    # Timeline
    start_date = Column(UTCDateTime, nullable=True)
    end_date = Column(UTCDateTime, nullable=True)
    duration_hours = Column(Float, nullable=True)
    deadline = Column(UTCDateTime, nullable=True)
    is_flexible = Column(Boolean, nullable=False, default=False)
    preferred_time = Column(String(20), nullable=False, default=PreferredTime.ANYTIME.value)

    contact_preference = Column(String(20), nullable=False, default=ContactPreference.BOTH.value)
    is_recurring = Column(Boolean, nullable=False, default=False)
    recurring_pattern = Column(String(20), nullable=True)

    # Lifecycle
    status = Column(String(20), nullable=False, default=GigStatus.DRAFT.value)
    assigned_to = Column(GUID, ForeignKey("users.id"), nullable=True)
    posted_at = Column(UTCDateTime, nullable=True)
    expires_at = Column(UTCDateTime, nullable=True)
    completion_date = Column(UTCDateTime, nullable=True)

    # Engagement (applications_count == len(applications), maintained atomically)
    views = Column(Integer, nullable=False, default=0)
    applications_count = Column(Integer, nullable=False, default=0)

    version = Column(Integer, nullable=False, default=1)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    skills = relationship(
        "GigSkill",
        back_populates="gig",
        cascade="all, delete-orphan",
        order_by="GigSkill.position",
        lazy="selectin",
    )
    applications = relationship(
        "GigApplication",
        back_populates="gig",
        cascade="all, delete-orphan",
        order_by=lambda: [GigApplication.applied_at, GigApplication.id],
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("views >= 0", name="ck_gigs_views_non_negative"),
        CheckConstraint("applications_count >= 0", name="ck_gigs_applications_count_non_negative"),
        Index("idx_gigs_status_posted_at", "status", "posted_at"),
        Index("idx_gigs_category_status", "category", "status"),
        Index("idx_gigs_poster_status", "poster_id", "status"),
        Index("idx_gigs_assigned_status", "assigned_to", "status"),
        Index("idx_gigs_rate_type", "payment_rate", "payment_type"),
        Index("idx_gigs_expires_at", "expires_at"),
    )


class GigSkill(Base):
    __tablename__ = "gig_skills"

    id = Column(Integer, primary_key=True, autoincrement=True)
    gig_id = Column(GUID, ForeignKey("gigs.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False, default=0)

    name = Column(String(100), nullable=False)
    category = Column(String(100), nullable=False)
    proficiency = Column(String(20), nullable=False)
    is_required = Column(Boolean, nullable=False, default=True)

    gig = relationship("Gig", back_populates="skills")

    __table_args__ = (
        Index("idx_gig_skills_name", "name"),
        Index("idx_gig_skills_gig", "gig_id", "position"),
    )


class GigApplication(Base):
    """An applicant's bid on a gig. Only addressed through its gig."""
    __tablename__ = "gig_applications"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    gig_id = Column(GUID, ForeignKey("gigs.id", ondelete="CASCADE"), nullable=False)
    applicant_id = Column(GUID, ForeignKey("users.id"), nullable=False)

    status = Column(String(20), nullable=False, default=ApplicationStatus.PENDING.value)
    applied_at = Column(UTCDateTime, default=utcnow, nullable=False)

    proposed_rate = Column(Float, nullable=True)
    message = Column(String(1000), nullable=True)
    portfolio_links = Column(JSON, nullable=False, default=list)
    estimated_duration = Column(Float, nullable=True)
    availability = Column(UTCDateTime, nullable=True)

    gig = relationship("Gig", back_populates="applications")

    __table_args__ = (
        # One application per applicant per gig
        UniqueConstraint("gig_id", "applicant_id", name="uq_gig_applicant"),
        Index("idx_gig_applications_applicant", "applicant_id", "applied_at"),
    )
