"""
Applications against gigs: apply, accept, reject, withdraw.

Accept is the contended operation. Two posters' tabs (or a poster and a
retry) may accept different applications on the same gig at once; the gig
row's conditional UPDATE decides the winner and the loser rolls back.
"""
import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gigengine.clock import utcnow
from gigengine.errors import (
    ApplicationNotPendingError,
    DuplicateApplicationError,
    ForbiddenError,
    GigAlreadyAssignedError,
    GigNotAcceptingApplicationsError,
    NotFoundError,
)
from gigengine.models.gig import ApplicationStatus, Gig, GigApplication, GigStatus
from gigengine.schemas.application import ApplicationCreate
from gigengine.services import gig_store
from gigengine.services.expiry import OPEN_STATES, effective_status, open_clause

logger = logging.getLogger(__name__)


def _find_application(gig: Gig, application_id: UUID) -> GigApplication:
    for application in gig.applications:
        if str(application.id) == str(application_id):
            return application
    raise NotFoundError(f"Application {application_id} not found on gig {gig.id}")


async def _get_application(db: AsyncSession, application_id: UUID) -> GigApplication:
    stmt = (
        select(GigApplication)
        .where(GigApplication.id == application_id)
        .execution_options(populate_existing=True)
    )
    application = (await db.execute(stmt)).scalar_one_or_none()
    if application is None:
        raise NotFoundError(f"Application {application_id} not found")
    return application


async def apply_to_gig(
    db: AsyncSession,
    gig_id: UUID,
    applicant_id: UUID,
    details: ApplicationCreate,
    now: Optional[datetime] = None,
) -> GigApplication:
    """
    Create a pending application.

    The insert and the applications_count increment share a transaction. The
    increment is conditioned on the gig still being open, so an apply racing
    an accept or a cancel either lands before it or fails.

    Raises:
        NotFoundError: Gig does not exist
        ForbiddenError: Applicant is the poster
        DuplicateApplicationError: Applicant already applied
        GigNotAcceptingApplicationsError: Gig is not posted/active
    """
    now = now or utcnow()
    gig = await gig_store.get_gig(db, gig_id)

    if str(gig.poster_id) == str(applicant_id):
        raise ForbiddenError("Cannot apply to your own gig")
    if any(str(a.applicant_id) == str(applicant_id) for a in gig.applications):
        raise DuplicateApplicationError("You have already applied to this gig")

    current = effective_status(gig, now)
    if current not in OPEN_STATES:
        raise GigNotAcceptingApplicationsError(f"Gig is {current.value} and not accepting applications")

    result = await db.execute(
        update(Gig)
        .where(Gig.id == gig.id, open_clause(now), Gig.assigned_to.is_(None))
        .values(
            applications_count=Gig.applications_count + 1,
            version=Gig.version + 1,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise GigNotAcceptingApplicationsError("Gig stopped accepting applications")

    application = GigApplication(
        gig_id=gig.id,
        applicant_id=applicant_id,
        status=ApplicationStatus.PENDING.value,
        applied_at=now,
        proposed_rate=details.proposed_rate,
        message=details.message,
        portfolio_links=details.portfolio_links,
        estimated_duration=details.estimated_duration,
        availability=details.availability,
    )
    db.add(application)
    try:
        await db.commit()
    except IntegrityError:
        # Lost a race with the same applicant's other request
        await db.rollback()
        raise DuplicateApplicationError("You have already applied to this gig")

    logger.info(f"User {applicant_id} applied to gig {gig_id} (application {application.id})")
    return await _get_application(db, application.id)


async def accept_application(
    db: AsyncSession,
    gig_id: UUID,
    application_id: UUID,
    actor_id: UUID,
    now: Optional[datetime] = None,
) -> Gig:
    """
    Accept one application and assign the gig to its applicant.

    Other pending applications are left pending; rejecting them is a
    separate call. Never retried internally.

    Raises:
        ForbiddenError: Actor is not the poster
        NotFoundError: Unknown gig or application
        ApplicationNotPendingError: Target application is not pending
        GigAlreadyAssignedError: Gig already has an accepted application, is
            no longer open, or a concurrent accept won
    """
    now = now or utcnow()
    gig = await gig_store.get_gig(db, gig_id)
    gig_store.require_poster(gig, actor_id, "accept applications for")

    application = _find_application(gig, application_id)
    if application.status != ApplicationStatus.PENDING.value:
        raise ApplicationNotPendingError(f"Application is {application.status}, not pending")

    if any(a.status == ApplicationStatus.ACCEPTED.value for a in gig.applications):
        raise GigAlreadyAssignedError("Gig already has an accepted application")
    current = effective_status(gig, now)
    if current not in OPEN_STATES:
        raise GigAlreadyAssignedError(f"Gig is {current.value} and cannot be assigned")

    result = await db.execute(
        update(Gig)
        .where(Gig.id == gig.id, open_clause(now), Gig.assigned_to.is_(None))
        .values(
            status=GigStatus.ASSIGNED.value,
            assigned_to=application.applicant_id,
            version=Gig.version + 1,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        logger.info(f"Accept of application {application_id} lost the race on gig {gig_id}")
        raise GigAlreadyAssignedError("Gig was assigned by a concurrent request")

    result = await db.execute(
        update(GigApplication)
        .where(
            GigApplication.id == application.id,
            GigApplication.status == ApplicationStatus.PENDING.value,
        )
        .values(status=ApplicationStatus.ACCEPTED.value)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        # Withdrawn between our read and the gig update; undo the assignment
        await db.rollback()
        raise ApplicationNotPendingError("Application is no longer pending")

    await db.commit()

    logger.info(
        f"Gig {gig_id} assigned to {application.applicant_id}",
        extra={"gig_id": str(gig_id), "application_id": str(application_id), "actor_id": str(actor_id)},
    )
    return await gig_store.get_gig(db, gig_id)


async def _set_pending_status(
    db: AsyncSession,
    gig: Gig,
    application: GigApplication,
    new_status: ApplicationStatus,
    now: datetime,
) -> GigApplication:
    if application.status != ApplicationStatus.PENDING.value:
        raise ApplicationNotPendingError(f"Application is {application.status}, not pending")

    result = await db.execute(
        update(GigApplication)
        .where(
            GigApplication.id == application.id,
            GigApplication.status == ApplicationStatus.PENDING.value,
        )
        .values(status=new_status.value)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise ApplicationNotPendingError("Application is no longer pending")

    await db.execute(
        update(Gig)
        .where(Gig.id == gig.id)
        .values(version=Gig.version + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return await _get_application(db, application.id)


async def reject_application(
    db: AsyncSession,
    gig_id: UUID,
    application_id: UUID,
    actor_id: UUID,
    now: Optional[datetime] = None,
) -> GigApplication:
    """Poster rejects a pending application."""
    now = now or utcnow()
    gig = await gig_store.get_gig(db, gig_id)
    gig_store.require_poster(gig, actor_id, "reject applications for")
    application = _find_application(gig, application_id)

    rejected = await _set_pending_status(db, gig, application, ApplicationStatus.REJECTED, now)
    logger.info(f"Rejected application {application_id} on gig {gig_id}")
    return rejected


async def withdraw_application(
    db: AsyncSession,
    gig_id: UUID,
    application_id: UUID,
    actor_id: UUID,
    now: Optional[datetime] = None,
) -> GigApplication:
    """
    Applicant withdraws their own pending application.

    applications_count is left as is: it counts applications made, and the
    withdrawn row stays on the gig.
    """
    now = now or utcnow()
    gig = await gig_store.get_gig(db, gig_id)
    application = _find_application(gig, application_id)
    if str(application.applicant_id) != str(actor_id):
        raise ForbiddenError("Only the applicant can withdraw this application")

    withdrawn = await _set_pending_status(db, gig, application, ApplicationStatus.WITHDRAWN, now)
    logger.info(f"User {actor_id} withdrew application {application_id} from gig {gig_id}")
    return withdrawn


async def list_applications_for_gig(
    db: AsyncSession,
    gig_id: UUID,
    actor_id: UUID,
) -> List[GigApplication]:
    """All applications on a gig, in application order. Poster only."""
    gig = await gig_store.get_gig(db, gig_id)
    gig_store.require_poster(gig, actor_id, "view applications for")
    return list(gig.applications)
