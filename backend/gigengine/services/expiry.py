"""
Effective-status rules shared by the read paths and the lifecycle module.

An open gig whose expires_at has passed is expired, whether or not the
sweep has persisted that yet. The same rule exists twice: in Python for
loaded gigs and as SQL predicates for queries.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import and_, or_

from gigengine.clock import utcnow
from gigengine.models.gig import Gig, GigStatus

# Statuses in which a gig takes applications and shows up in public search
OPEN_STATES = (GigStatus.POSTED, GigStatus.ACTIVE)
OPEN_STATE_VALUES = tuple(s.value for s in OPEN_STATES)

# Statuses in which the poster may still edit the gig's fields
EDITABLE_STATE_VALUES = (GigStatus.DRAFT.value,) + OPEN_STATE_VALUES


def is_expired(gig: Gig, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    return (
        gig.status in OPEN_STATE_VALUES
        and gig.expires_at is not None
        and gig.expires_at <= now
    )


def effective_status(gig: Gig, now: Optional[datetime] = None) -> GigStatus:
    """Status as callers should see it, with lazy expiry applied."""
    if is_expired(gig, now):
        return GigStatus.EXPIRED
    return GigStatus(gig.status)


def not_expired_clause(now: datetime):
    return or_(Gig.expires_at.is_(None), Gig.expires_at > now)


def open_clause(now: datetime):
    """Gigs that are effectively posted or active."""
    return and_(Gig.status.in_(OPEN_STATE_VALUES), not_expired_clause(now))


def status_clause(status: GigStatus, now: datetime):
    """SQL predicate matching gigs whose effective status is `status`."""
    if status in OPEN_STATES:
        return and_(Gig.status == status.value, not_expired_clause(now))
    if status == GigStatus.EXPIRED:
        return or_(
            Gig.status == GigStatus.EXPIRED.value,
            and_(Gig.status.in_(OPEN_STATE_VALUES), Gig.expires_at <= now),
        )
    return Gig.status == status.value
