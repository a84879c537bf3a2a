"""
Gigs API endpoints.

Every handler runs its service call under a per-request deadline and wraps
the result in the {success, message?, data} envelope. Errors are raised as
GigEngineError subclasses and rendered by the handlers in main.py.
"""
import asyncio
import logging
from contextlib import contextmanager
from typing import Awaitable, List, Optional, TypeVar
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession

from gigengine.api.auth import get_current_user, get_optional_user
from gigengine.clock import utcnow
from gigengine.config import settings
from gigengine.database import get_db
from gigengine.errors import OperationTimeoutError, ValidationError
from gigengine.models.gig import (
    ApplicationStatus,
    ExperienceLevel,
    Gig,
    GigStatus,
    PaymentType,
    Urgency,
)
from gigengine.schemas.application import (
    ApplicationCreate,
    ApplicationResponse,
    UserApplicationPage,
    UserApplicationResponse,
)
from gigengine.schemas.common import ApiResponse, Pagination
from gigengine.schemas.gig import GigCreate, GigResponse, GigUpdate, StatusChange
from gigengine.schemas.search import SearchParams, SearchResult, SortKey, SuggestionList
from gigengine.schemas.user import UserSummary
from gigengine.services import applications as application_service
from gigengine.services import gig_store, lifecycle, search
from gigengine.services.expiry import effective_status
from gigengine.services.geo_index import GeoIndex
from gigengine.services.users import UserDirectory, get_user_directory, gig_user_ids

logger = logging.getLogger(__name__)

router = APIRouter()

T = TypeVar("T")


# ============================================================
# DEPENDENCIES AND HELPERS
# ============================================================

def get_geo_index(request: Request) -> GeoIndex:
    return request.app.state.geo_index


def get_deadline(x_request_timeout: Optional[float] = Header(None)) -> float:
    """Seconds this call may take: X-Request-Timeout if given, else the configured default."""
    if x_request_timeout is None:
        return settings.request_timeout_seconds
    if x_request_timeout <= 0:
        raise ValidationError("X-Request-Timeout must be positive")
    return x_request_timeout


@contextmanager
def _watch_commits(db: Optional[AsyncSession]):
    """Yield a dict whose "started" flag turns True once `db` begins a commit."""
    state = {"started": False}
    if db is None:
        yield state
        return

    def _mark(session):
        state["started"] = True

    event.listen(db.sync_session, "before_commit", _mark)
    try:
        yield state
    finally:
        event.remove(db.sync_session, "before_commit", _mark)


async def with_deadline(awaitable: Awaitable[T], timeout: float, db: Optional[AsyncSession] = None) -> T:
    """
    Await a service call under a deadline.

    A call that misses the deadline before `db` starts committing is cancelled
    (the request session then rolls back) and reported as a timeout. Once the
    commit has started the write cannot be taken back, so the call is left to
    finish and its result is returned.
    """
    task = asyncio.ensure_future(awaitable)
    with _watch_commits(db) as commit:
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except asyncio.TimeoutError:
            if commit["started"]:
                logger.warning(f"Deadline of {timeout}s passed after commit; completing the call")
                return await task
            task.cancel()
            await asyncio.wait([task])
            logger.warning(f"Operation exceeded its {timeout}s deadline")
            raise OperationTimeoutError(f"Operation timed out after {timeout} seconds")
        except asyncio.CancelledError:
            task.cancel()
            raise


def _page_limit(limit: Optional[int]) -> int:
    limit = limit or settings.default_page_size
    if limit > settings.max_page_size:
        raise ValidationError(f"limit cannot exceed {settings.max_page_size}")
    return limit


def _index_gig(geo_index: GeoIndex, gig: Gig) -> None:
    geo_index.upsert(gig.id, gig.longitude, gig.latitude, is_remote=gig.is_remote)


async def _gig_response(
    gig: Gig,
    directory: UserDirectory,
    include_applications: bool = False,
    distance_km: Optional[float] = None,
) -> GigResponse:
    users = await directory.get_users(gig_user_ids(gig, include_applications))
    return GigResponse.from_gig(
        gig,
        effective_status(gig, utcnow()),
        users=users,
        include_applications=include_applications,
        distance_km=distance_km,
    )


# ============================================================
# USER-SCOPED LISTINGS
# (declared before /{gig_id} routes so "user" is never parsed as an id)
# ============================================================

@router.get("/user/posted", response_model=ApiResponse[SearchResult])
async def list_my_gigs(
    status: Optional[GigStatus] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    current_user: UserSummary = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    directory: UserDirectory = Depends(get_user_directory),
    deadline: float = Depends(get_deadline),
):
    """Gigs posted by the caller, in every status, newest first."""
    limit = _page_limit(limit)

    async def run():
        gigs, total = await gig_store.list_posted_by(db, current_user.id, status, page, limit)
        results = [await _gig_response(g, directory) for g in gigs]
        return SearchResult(results=results, pagination=Pagination.build(page, limit, total))

    return ApiResponse(data=await with_deadline(run(), deadline, db))


@router.get("/user/applications", response_model=ApiResponse[UserApplicationPage])
async def list_my_applications(
    status: Optional[ApplicationStatus] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    current_user: UserSummary = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    directory: UserDirectory = Depends(get_user_directory),
    deadline: float = Depends(get_deadline),
):
    """The caller's applications with a summary of each gig."""
    limit = _page_limit(limit)

    async def run():
        rows, total = await gig_store.list_applications_by(db, current_user.id, status, page, limit)
        posters = await directory.get_users(gig.poster_id for _, gig in rows)
        now = utcnow()
        results = [
            UserApplicationResponse(
                gig_id=gig.id,
                title=gig.title,
                category=gig.category,
                gig_status=effective_status(gig, now).value,
                payment_rate=gig.payment_rate,
                payment_type=gig.payment_type,
                address=gig.address,
                poster=posters.get(gig.poster_id),
                application=ApplicationResponse.from_application(application, current_user),
            )
            for application, gig in rows
        ]
        return UserApplicationPage(results=results, pagination=Pagination.build(page, limit, total))

    return ApiResponse(data=await with_deadline(run(), deadline, db))


# ============================================================
# GIG CRUD AND SEARCH
# ============================================================

@router.get("/suggestions", response_model=ApiResponse[SuggestionList])
async def get_suggestions(
    q: Optional[str] = Query(None, max_length=100),
    limit: Optional[int] = Query(None, ge=1),
    db: AsyncSession = Depends(get_db),
    deadline: float = Depends(get_deadline),
):
    """Autocomplete suggestions from open gig titles, categories and skills."""
    suggestions = await with_deadline(search.suggest(db, q, limit), deadline, db)
    return ApiResponse(data=SuggestionList(suggestions=suggestions))


@router.post("/", response_model=ApiResponse[GigResponse], status_code=201)
async def create_gig(
    payload: GigCreate,
    current_user: UserSummary = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    directory: UserDirectory = Depends(get_user_directory),
    geo_index: GeoIndex = Depends(get_geo_index),
    deadline: float = Depends(get_deadline),
):
    """Create a gig. Status is draft or posted (default posted)."""
    gig = await with_deadline(gig_store.create_gig(db, current_user.id, payload), deadline, db)
    _index_gig(geo_index, gig)
    return ApiResponse(message="Gig created successfully", data=await _gig_response(gig, directory))


@router.get("/", response_model=ApiResponse[SearchResult])
async def search_gigs(
    q: Optional[str] = Query(None, max_length=200),
    category: Optional[str] = None,
    skills: Optional[str] = Query(None, description="Comma-separated skill names"),
    min_rate: Optional[float] = Query(None, ge=0),
    max_rate: Optional[float] = Query(None, ge=0),
    payment_type: Optional[PaymentType] = None,
    urgency: Optional[Urgency] = None,
    experience_level: Optional[ExperienceLevel] = None,
    status: Optional[GigStatus] = None,
    poster_id: Optional[UUID] = None,
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    radius: Optional[float] = Query(None, gt=0, description="Kilometers"),
    sort: SortKey = SortKey.RELEVANCE,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    current_user: Optional[UserSummary] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
    directory: UserDirectory = Depends(get_user_directory),
    geo_index: GeoIndex = Depends(get_geo_index),
    deadline: float = Depends(get_deadline),
):
    """
    Search gigs.

    Anonymous callers see open gigs only; signed-in callers also see their
    own gigs in any status.
    """
    params = SearchParams(
        q=q,
        category=category,
        skills=[s.strip() for s in skills.split(",") if s.strip()] if skills else [],
        min_rate=min_rate,
        max_rate=max_rate,
        payment_type=payment_type,
        urgency=urgency,
        experience_level=experience_level,
        status=status,
        poster_id=poster_id,
        lat=lat,
        lng=lng,
        radius=radius,
        sort=sort,
        page=page,
        limit=limit,
    )
    actor_id = current_user.id if current_user else None

    async def run():
        items, pagination = await search.search_gigs(db, geo_index, params, actor_id)
        results = [await _gig_response(gig, directory, distance_km=distance) for gig, distance in items]
        return SearchResult(results=results, pagination=pagination)

    return ApiResponse(data=await with_deadline(run(), deadline, db))


@router.get("/{gig_id}", response_model=ApiResponse[GigResponse])
async def get_gig(
    gig_id: UUID,
    current_user: Optional[UserSummary] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
    directory: UserDirectory = Depends(get_user_directory),
    deadline: float = Depends(get_deadline),
):
    """
    Fetch a gig and count the view.

    The poster also gets the full application list.
    """
    async def run():
        gig = await gig_store.get_gig(db, gig_id)
        is_poster = current_user is not None and current_user.id == gig.poster_id
        response = await _gig_response(gig, directory, include_applications=is_poster)
        await gig_store.increment_views(db, gig_id)
        response.views += 1
        return response

    return ApiResponse(data=await with_deadline(run(), deadline, db))


@router.put("/{gig_id}", response_model=ApiResponse[GigResponse])
async def update_gig(
    gig_id: UUID,
    payload: GigUpdate,
    current_user: UserSummary = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    directory: UserDirectory = Depends(get_user_directory),
    geo_index: GeoIndex = Depends(get_geo_index),
    deadline: float = Depends(get_deadline),
):
    gig = await with_deadline(gig_store.update_gig(db, gig_id, current_user.id, payload), deadline, db)
    _index_gig(geo_index, gig)
    return ApiResponse(message="Gig updated successfully", data=await _gig_response(gig, directory))


@router.delete("/{gig_id}", response_model=ApiResponse[dict])
async def delete_gig(
    gig_id: UUID,
    current_user: UserSummary = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    geo_index: GeoIndex = Depends(get_geo_index),
    deadline: float = Depends(get_deadline),
):
    await with_deadline(gig_store.delete_gig(db, gig_id, current_user.id), deadline, db)
    geo_index.remove(gig_id)
    return ApiResponse(message="Gig deleted successfully", data={"id": str(gig_id)})


@router.put("/{gig_id}/status", response_model=ApiResponse[GigResponse])
async def change_status(
    gig_id: UUID,
    payload: StatusChange,
    current_user: UserSummary = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    directory: UserDirectory = Depends(get_user_directory),
    deadline: float = Depends(get_deadline),
):
    """Run a lifecycle transition (publish, activate, start, complete, cancel)."""
    gig = await with_deadline(
        lifecycle.transition_gig(db, gig_id, current_user.id, payload.status, expires_at=payload.expires_at),
        deadline,
        db,
    )
    return ApiResponse(
        message=f"Gig status changed to {payload.status.value}",
        data=await _gig_response(gig, directory),
    )


# ============================================================
# APPLICATIONS
# ============================================================

@router.post("/{gig_id}/apply", response_model=ApiResponse[ApplicationResponse], status_code=201)
async def apply_to_gig(
    gig_id: UUID,
    payload: ApplicationCreate,
    current_user: UserSummary = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    deadline: float = Depends(get_deadline),
):
    application = await with_deadline(
        application_service.apply_to_gig(db, gig_id, current_user.id, payload),
        deadline,
        db,
    )
    return ApiResponse(
        message="Application submitted successfully",
        data=ApplicationResponse.from_application(application, current_user),
    )


@router.get("/{gig_id}/applications", response_model=ApiResponse[List[ApplicationResponse]])
async def list_gig_applications(
    gig_id: UUID,
    current_user: UserSummary = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    directory: UserDirectory = Depends(get_user_directory),
    deadline: float = Depends(get_deadline),
):
    """All applications on a gig. Poster only."""
    async def run():
        applications = await application_service.list_applications_for_gig(db, gig_id, current_user.id)
        applicants = await directory.get_users(a.applicant_id for a in applications)
        return [ApplicationResponse.from_application(a, applicants.get(a.applicant_id)) for a in applications]

    return ApiResponse(data=await with_deadline(run(), deadline, db))


@router.put("/{gig_id}/applications/{application_id}/accept", response_model=ApiResponse[GigResponse])
async def accept_application(
    gig_id: UUID,
    application_id: UUID,
    current_user: UserSummary = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    directory: UserDirectory = Depends(get_user_directory),
    deadline: float = Depends(get_deadline),
):
    """Accept an application; the gig becomes assigned to its applicant."""
    gig = await with_deadline(
        application_service.accept_application(db, gig_id, application_id, current_user.id),
        deadline,
        db,
    )
    return ApiResponse(
        message="Application accepted",
        data=await _gig_response(gig, directory, include_applications=True),
    )


@router.put("/{gig_id}/applications/{application_id}/reject", response_model=ApiResponse[ApplicationResponse])
async def reject_application(
    gig_id: UUID,
    application_id: UUID,
    current_user: UserSummary = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    directory: UserDirectory = Depends(get_user_directory),
    deadline: float = Depends(get_deadline),
):
    application = await with_deadline(
        application_service.reject_application(db, gig_id, application_id, current_user.id),
        deadline,
        db,
    )
    applicant = await directory.get_user(application.applicant_id)
    return ApiResponse(
        message="Application rejected",
        data=ApplicationResponse.from_application(application, applicant),
    )


@router.post("/{gig_id}/applications/{application_id}/withdraw", response_model=ApiResponse[ApplicationResponse])
async def withdraw_application(
    gig_id: UUID,
    application_id: UUID,
    current_user: UserSummary = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    deadline: float = Depends(get_deadline),
):
    application = await with_deadline(
        application_service.withdraw_application(db, gig_id, application_id, current_user.id),
        deadline,
        db,
    )
    return ApiResponse(
        message="Application withdrawn",
        data=ApplicationResponse.from_application(application, current_user),
    )
