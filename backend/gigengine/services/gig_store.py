"""
Storage layer for the gig aggregate.

Loads and writes gigs together with their skills and applications, and
answers the scoped listing queries (a poster's gigs, an applicant's
applications). Every write that depends on current state is a conditional
UPDATE; a zero rowcount means another writer got there first.
"""
import enum
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from gigengine.clock import utcnow
from gigengine.config import settings
from gigengine.errors import (
    ConcurrentModificationError,
    ForbiddenError,
    GigNotEditableError,
    NotFoundError,
    ValidationError,
)
from gigengine.models.gig import ApplicationStatus, Gig, GigApplication, GigSkill, GigStatus
from gigengine.schemas.gig import GigCreate, GigUpdate
from gigengine.services.expiry import EDITABLE_STATE_VALUES, effective_status, status_clause

logger = logging.getLogger(__name__)

# Gig columns that may be cleared with an explicit null on update
NULLABLE_FIELDS = {"sub_category", "service_radius", "recurring_pattern", "expires_at"}


def _plain(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    return value


def _column_values(payload: Union[GigCreate, GigUpdate], partial: bool) -> Dict[str, Any]:
    """Flatten a create/update payload into Gig column values."""
    nested = {"location", "payment", "timeline", "skills", "status", "version"}
    dumped = payload.model_dump(exclude_unset=partial, exclude=nested)

    values: Dict[str, Any] = {}
    for key, value in dumped.items():
        if value is None and partial and key not in NULLABLE_FIELDS:
            raise ValidationError(f"{key} cannot be null")
        values[key] = _plain(value)

    fields_set = payload.model_fields_set if partial else {"location", "payment", "timeline"}

    if "location" in fields_set:
        if payload.location is None:
            raise ValidationError("location cannot be null")
        location = payload.location
        values.update(
            longitude=location.longitude,
            latitude=location.latitude,
            address=location.address,
            city=location.city,
            state=location.state,
            country=location.country,
            pincode=location.pincode,
            landmark=location.landmark,
        )

    if "payment" in fields_set:
        if payload.payment is None:
            raise ValidationError("payment cannot be null")
        payment = payload.payment
        values.update(
            payment_rate=payment.rate,
            payment_currency=payment.currency.upper(),
            payment_type=payment.payment_type.value,
            payment_total_budget=payment.total_budget,
            payment_advance=payment.advance_payment,
            payment_method=payment.payment_method.value,
        )

    if "timeline" in fields_set:
        if payload.timeline is None:
            raise ValidationError("timeline cannot be null")
        timeline = payload.timeline
        values.update(
            start_date=timeline.start_date,
            end_date=timeline.end_date,
            duration_hours=timeline.duration,
            deadline=timeline.deadline,
            is_flexible=timeline.is_flexible,
            preferred_time=timeline.preferred_time.value,
        )

    return values


def _skill_rows(gig_id: Optional[UUID], skills) -> List[GigSkill]:
    return [
        GigSkill(
            gig_id=gig_id,
            position=position,
            name=skill.name,
            category=skill.category,
            proficiency=skill.proficiency.value,
            is_required=skill.is_required,
        )
        for position, skill in enumerate(skills)
    ]


def require_poster(gig: Gig, actor_id: UUID, action: str = "manage") -> None:
    if str(gig.poster_id) != str(actor_id):
        logger.warning(f"Access denied: user {actor_id} tried to {action} gig {gig.id} owned by {gig.poster_id}")
        raise ForbiddenError(f"Not authorized to {action} this gig")


async def get_gig(db: AsyncSession, gig_id: UUID) -> Gig:
    """
    Load a gig with its skills and applications.

    Always overwrites any copy already in the session's identity map: the
    conditional UPDATEs below bypass the ORM unit of work, so a cached copy
    may be stale.

    Raises:
        NotFoundError: No gig with this id
    """
    stmt = select(Gig).where(Gig.id == gig_id).execution_options(populate_existing=True)
    gig = (await db.execute(stmt)).scalar_one_or_none()
    if gig is None:
        raise NotFoundError(f"Gig {gig_id} not found")
    return gig


async def get_gigs(db: AsyncSession, gig_ids: Sequence[UUID]) -> Dict[UUID, Gig]:
    if not gig_ids:
        return {}
    result = await db.execute(
        select(Gig).where(Gig.id.in_(list(gig_ids))).execution_options(populate_existing=True)
    )
    return {gig.id: gig for gig in result.scalars().all()}


async def create_gig(
    db: AsyncSession,
    poster_id: UUID,
    payload: GigCreate,
    now: Optional[datetime] = None,
) -> Gig:
    """Create a gig in draft or posted status."""
    now = now or utcnow()
    values = _column_values(payload, partial=False)
    status = GigStatus(payload.status)

    if status == GigStatus.POSTED:
        values["posted_at"] = now
        values["expires_at"] = payload.expires_at or now + timedelta(days=settings.default_gig_ttl_days)

    gig = Gig(
        poster_id=poster_id,
        status=status.value,
        views=0,
        applications_count=0,
        version=1,
        created_at=now,
        updated_at=now,
        **values,
    )
    gig.skills = _skill_rows(None, payload.skills)
    db.add(gig)
    await db.commit()

    logger.info(f"Created gig {gig.id} ({status.value}) for poster {poster_id}: {gig.title}")
    return await get_gig(db, gig.id)


async def update_gig(
    db: AsyncSession,
    gig_id: UUID,
    actor_id: UUID,
    payload: GigUpdate,
    now: Optional[datetime] = None,
) -> Gig:
    """
    Apply a poster's edit to a gig that has not been assigned yet.

    The write is a compare-and-swap on `version`: the version the caller
    supplied, or the one read here. Any write in between (an application,
    an accept, another edit) bumps it and the edit fails.

    Raises:
        ForbiddenError: Actor is not the poster
        GigNotEditableError: Gig is past the pre-assignment states
        ConcurrentModificationError: Version mismatch
    """
    now = now or utcnow()
    gig = await get_gig(db, gig_id)
    require_poster(gig, actor_id, "update")

    current = effective_status(gig, now)
    if current.value not in EDITABLE_STATE_VALUES:
        raise GigNotEditableError(f"Gig cannot be edited once it is {current.value}")

    expected_version = payload.version or gig.version
    if expected_version != gig.version:
        raise ConcurrentModificationError(
            f"Gig {gig_id} was modified (version {gig.version}, expected {expected_version})"
        )

    values = _column_values(payload, partial=True)
    values.update(version=Gig.version + 1, updated_at=now)

    result = await db.execute(
        update(Gig)
        .where(
            Gig.id == gig.id,
            Gig.version == expected_version,
            Gig.status.in_(EDITABLE_STATE_VALUES),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise ConcurrentModificationError(f"Gig {gig_id} was modified concurrently")

    if payload.skills is not None:
        await db.execute(delete(GigSkill).where(GigSkill.gig_id == gig.id))
        db.add_all(_skill_rows(gig.id, payload.skills))

    await db.commit()

    logger.info(f"Updated gig {gig_id} (fields: {', '.join(sorted(payload.model_fields_set - {'version'}))})")
    return await get_gig(db, gig_id)


async def delete_gig(db: AsyncSession, gig_id: UUID, actor_id: UUID) -> None:
    """Hard-delete a gig and, by cascade, its skills and applications."""
    gig = await get_gig(db, gig_id)
    require_poster(gig, actor_id, "delete")

    await db.delete(gig)
    await db.commit()

    logger.info(f"Deleted gig {gig_id} with {len(gig.applications)} applications")


async def increment_views(db: AsyncSession, gig_id: UUID) -> None:
    """
    Best-effort view counter bump.

    Does not touch `version`, so page views never invalidate a poster's edit.
    Failures are logged and swallowed: a lost view is acceptable, a failed
    read is not.
    """
    try:
        await db.execute(
            update(Gig)
            .where(Gig.id == gig_id)
            .values(views=Gig.views + 1)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.warning(f"Failed to increment views for gig {gig_id}: {e}")


async def list_posted_by(
    db: AsyncSession,
    poster_id: UUID,
    status: Optional[GigStatus],
    page: int,
    limit: int,
    now: Optional[datetime] = None,
) -> Tuple[List[Gig], int]:
    """A poster's own gigs, newest first."""
    now = now or utcnow()
    filters = [Gig.poster_id == poster_id]
    if status is not None:
        filters.append(status_clause(status, now))

    total = (await db.execute(select(func.count(Gig.id)).where(*filters))).scalar_one()
    result = await db.execute(
        select(Gig)
        .where(*filters)
        .order_by(Gig.created_at.desc(), Gig.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total


async def list_applications_by(
    db: AsyncSession,
    applicant_id: UUID,
    status: Optional[ApplicationStatus],
    page: int,
    limit: int,
) -> Tuple[List[Tuple[GigApplication, Gig]], int]:
    """An applicant's applications with their gigs, most recent first."""
    filters = [GigApplication.applicant_id == applicant_id]
    if status is not None:
        filters.append(GigApplication.status == status.value)

    total = (await db.execute(select(func.count(GigApplication.id)).where(*filters))).scalar_one()
    result = await db.execute(
        select(GigApplication, Gig)
        .join(Gig, Gig.id == GigApplication.gig_id)
        .where(*filters)
        .order_by(GigApplication.applied_at.desc(), GigApplication.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return [(application, gig) for application, gig in result.all()], total


async def load_geo_entries(db: AsyncSession) -> List[Tuple[UUID, float, float, bool]]:
    """(id, longitude, latitude, is_remote) for every stored gig, for index rebuilds."""
    result = await db.execute(select(Gig.id, Gig.longitude, Gig.latitude, Gig.is_remote))
    return [(row.id, row.longitude, row.latitude, bool(row.is_remote)) for row in result.all()]
