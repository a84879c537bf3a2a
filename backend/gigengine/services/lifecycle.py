"""
Lifecycle state machine for gigs.
ALL gig status changes go through this module, except the assignment
performed atomically by services.applications.accept_application.
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from gigengine.clock import utcnow
from gigengine.config import settings
from gigengine.errors import ForbiddenError, InvalidTransitionError, ValidationError
from gigengine.models.gig import ApplicationStatus, Gig, GigApplication, GigStatus
from gigengine.services import gig_store
from gigengine.services.expiry import OPEN_STATE_VALUES, effective_status, status_clause

logger = logging.getLogger(__name__)


# Forward chain plus the two absorbing escapes
ALLOWED_TRANSITIONS: Dict[GigStatus, List[GigStatus]] = {
    GigStatus.DRAFT: [GigStatus.POSTED, GigStatus.CANCELLED, GigStatus.EXPIRED],
    GigStatus.POSTED: [GigStatus.ACTIVE, GigStatus.ASSIGNED, GigStatus.CANCELLED, GigStatus.EXPIRED],
    GigStatus.ACTIVE: [GigStatus.ASSIGNED, GigStatus.CANCELLED, GigStatus.EXPIRED],
    GigStatus.ASSIGNED: [GigStatus.IN_PROGRESS, GigStatus.CANCELLED, GigStatus.EXPIRED],
    GigStatus.IN_PROGRESS: [GigStatus.COMPLETED, GigStatus.CANCELLED, GigStatus.EXPIRED],
    GigStatus.COMPLETED: [],  # Terminal
    GigStatus.CANCELLED: [],  # Terminal
    GigStatus.EXPIRED: [],  # Terminal
}

TERMINAL_STATES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)

# Transitions that are never requested directly by a user
_AUTOMATIC_ONLY = {
    GigStatus.ASSIGNED: "assignment happens by accepting an application",
    GigStatus.EXPIRED: "expiry is applied automatically once expires_at passes",
}


def can_transition(from_status: GigStatus, to_status: GigStatus) -> bool:
    """Check if a transition is allowed without touching the database"""
    return to_status in ALLOWED_TRANSITIONS.get(from_status, [])


def _check_actor(gig: Gig, actor_id: UUID, to_status: GigStatus) -> None:
    is_poster = str(gig.poster_id) == str(actor_id)
    is_assignee = gig.assigned_to is not None and str(gig.assigned_to) == str(actor_id)

    if to_status in (GigStatus.IN_PROGRESS, GigStatus.COMPLETED):
        if not (is_poster or is_assignee):
            raise ForbiddenError("Only the poster or the assigned worker can progress this gig")
    elif not is_poster:
        raise ForbiddenError("Only the poster can change this gig's status")


async def transition_gig(
    db: AsyncSession,
    gig_id: UUID,
    actor_id: UUID,
    to_status: GigStatus,
    expires_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> Gig:
    """
    Move a gig to a new status on behalf of an actor.

    Args:
        db: Database session
        gig_id: Gig to transition
        actor_id: Authenticated user requesting the change
        to_status: Target status
        expires_at: Optional expiry to set when publishing (draft -> posted)
        now: Clock override for tests and the sweep

    Returns:
        The reloaded Gig

    Raises:
        NotFoundError: Gig does not exist
        ForbiddenError: Actor may not perform this transition
        InvalidTransitionError: Transition not allowed from the current status,
            or another writer changed the status first
    """
    now = now or utcnow()
    gig = await gig_store.get_gig(db, gig_id)
    current = effective_status(gig, now)

    _check_actor(gig, actor_id, to_status)

    if to_status in _AUTOMATIC_ONLY:
        raise InvalidTransitionError(current.value, to_status.value, _AUTOMATIC_ONLY[to_status])
    if not can_transition(current, to_status):
        raise InvalidTransitionError(current.value, to_status.value)

    values = {
        "status": to_status.value,
        "version": Gig.version + 1,
        "updated_at": now,
    }
    if to_status == GigStatus.POSTED:
        if expires_at is not None and expires_at <= now:
            raise ValidationError("expires_at must be in the future")
        values["posted_at"] = now
        values["expires_at"] = expires_at or gig.expires_at or now + timedelta(days=settings.default_gig_ttl_days)
    elif to_status == GigStatus.COMPLETED:
        values["completion_date"] = now

    # Optimistic locking: commit only if nobody moved the gig since we read it
    result = await db.execute(
        update(Gig)
        .where(Gig.id == gig.id, status_clause(current, now))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        latest = effective_status(await gig_store.get_gig(db, gig_id), now)
        raise InvalidTransitionError(latest.value, to_status.value, "status changed concurrently")

    if to_status == GigStatus.CANCELLED:
        await db.execute(
            update(GigApplication)
            .where(
                GigApplication.gig_id == gig.id,
                GigApplication.status == ApplicationStatus.PENDING.value,
            )
            .values(status=ApplicationStatus.REJECTED.value)
            .execution_options(synchronize_session=False)
        )

    await db.commit()

    logger.info(
        f"Gig state transition: {current.value} → {to_status.value}",
        extra={"gig_id": str(gig_id), "from_status": current.value, "to_status": to_status.value, "actor_id": str(actor_id)},
    )

    return await gig_store.get_gig(db, gig_id)


async def sweep_expired_gigs(db: AsyncSession, now: Optional[datetime] = None) -> Sequence[UUID]:
    """
    Persist expiry for open gigs whose expires_at has passed.

    Reads already report these gigs as expired; the sweep makes storage
    agree so reporting and index rebuilds see the same state.

    Returns:
        Ids of the gigs that were expired by this pass
    """
    now = now or utcnow()
    overdue = and_(Gig.status.in_(OPEN_STATE_VALUES), Gig.expires_at <= now)

    result = await db.execute(select(Gig.id).where(overdue))
    gig_ids = list(result.scalars().all())
    if not gig_ids:
        return []

    # Same predicate again: a gig assigned between the select and the update stays assigned
    await db.execute(
        update(Gig)
        .where(Gig.id.in_(gig_ids), overdue)
        .values(status=GigStatus.EXPIRED.value, version=Gig.version + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    result = await db.execute(
        select(Gig.id).where(Gig.id.in_(gig_ids), Gig.status == GigStatus.EXPIRED.value)
    )
    expired_ids = list(result.scalars().all())

    logger.info(f"Lifecycle sweep expired {len(expired_ids)} gigs", extra={"expired_count": len(expired_ids)})
    return expired_ids
