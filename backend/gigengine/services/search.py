"""
Gig search: SQL filtering, geo intersection, in-process ranking.

The SQL query narrows candidates on every structured filter and returns
only the columns ranking needs. Ranking and pagination happen here so the
text score and distance sorts behave the same on SQLite and PostgreSQL;
full gig rows are loaded only for the requested page.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import and_, false, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from gigengine.clock import utcnow
from gigengine.config import settings
from gigengine.errors import InvalidSortError, ValidationError
from gigengine.models.gig import Gig, GigSkill
from gigengine.schemas.common import Pagination
from gigengine.schemas.search import SearchParams, SortKey, Suggestion
from gigengine.services import gig_store
from gigengine.services.expiry import OPEN_STATES, open_clause, status_clause
from gigengine.services.geo_index import GeoIndex

logger = logging.getLogger(__name__)

TITLE_WEIGHT = 3
CATEGORY_WEIGHT = 2
DESCRIPTION_WEIGHT = 1


@dataclass
class Candidate:
    id: UUID
    title: str
    description: str
    category: str
    listed_at: datetime
    payment_rate: float
    is_remote: bool
    distance_km: Optional[float] = None
    score: int = 0


def query_words(q: Optional[str]) -> List[str]:
    return [word for word in (q or "").lower().split() if word]


def text_score(words: List[str], title: str, category: str, description: str) -> int:
    """Weighted occurrence count of the query words across the gig's text fields."""
    title, category, description = title.lower(), category.lower(), description.lower()
    return sum(
        TITLE_WEIGHT * title.count(word)
        + CATEGORY_WEIGHT * category.count(word)
        + DESCRIPTION_WEIGHT * description.count(word)
        for word in words
    )


def _resolve_limit(params: SearchParams) -> int:
    limit = params.limit or settings.default_page_size
    if limit > settings.max_page_size:
        raise ValidationError(
            f"limit cannot exceed {settings.max_page_size}",
            details={"limit": limit, "max": settings.max_page_size},
        )
    return limit


def _validate(params: SearchParams) -> None:
    if (params.lat is None) != (params.lng is None):
        raise ValidationError("lat and lng must be given together")
    if params.radius is not None and params.radius > settings.max_search_radius_km:
        raise ValidationError(
            f"radius cannot exceed {settings.max_search_radius_km} km",
            details={"radius": params.radius, "max": settings.max_search_radius_km},
        )
    if params.min_rate is not None and params.max_rate is not None and params.min_rate > params.max_rate:
        raise ValidationError("min_rate cannot be greater than max_rate")
    if params.sort == SortKey.DISTANCE and not params.has_geo:
        raise InvalidSortError("Sorting by distance requires lat and lng")


def _visibility(params: SearchParams, actor_id: Optional[UUID], now: datetime):
    """Open gigs for everyone; any status for the caller's own gigs."""
    if params.status is None:
        if actor_id is None:
            return open_clause(now)
        return or_(open_clause(now), Gig.poster_id == actor_id)

    if params.status in OPEN_STATES:
        return status_clause(params.status, now)
    if actor_id is None:
        return false()
    return and_(status_clause(params.status, now), Gig.poster_id == actor_id)


def _filters(params: SearchParams, actor_id: Optional[UUID], now: datetime) -> list:
    filters = [_visibility(params, actor_id, now)]

    words = query_words(params.q)
    if words:
        filters.append(or_(*[
            or_(
                func.lower(Gig.title).contains(word, autoescape=True),
                func.lower(Gig.description).contains(word, autoescape=True),
                func.lower(Gig.category).contains(word, autoescape=True),
            )
            for word in words
        ]))

    if params.category:
        filters.append(Gig.category == params.category)
    if params.skills:
        names = [name.lower() for name in params.skills]
        filters.append(Gig.id.in_(select(GigSkill.gig_id).where(func.lower(GigSkill.name).in_(names))))
    if params.min_rate is not None:
        filters.append(Gig.payment_rate >= params.min_rate)
    if params.max_rate is not None:
        filters.append(Gig.payment_rate <= params.max_rate)
    if params.payment_type:
        filters.append(Gig.payment_type == params.payment_type.value)
    if params.urgency:
        filters.append(Gig.urgency == params.urgency.value)
    if params.experience_level:
        filters.append(Gig.experience_level == params.experience_level.value)
    if params.poster_id:
        filters.append(Gig.poster_id == params.poster_id)

    return filters


def rank(candidates: List[Candidate], sort: SortKey, has_query: bool) -> List[Candidate]:
    """
    Order candidates for the requested sort.

    Successive stable sorts, least significant key first, so the final
    tie-break is always the gig id ascending.
    """
    ordered = sorted(candidates, key=lambda c: c.id)

    if sort == SortKey.DISTANCE:
        # Remote gigs have no distance and go after every located gig
        ordered.sort(key=lambda c: (c.distance_km is None, c.distance_km or 0.0))
    elif sort == SortKey.RATE_ASC:
        ordered.sort(key=lambda c: c.payment_rate)
    elif sort == SortKey.RATE_DESC:
        ordered.sort(key=lambda c: c.payment_rate, reverse=True)
    else:
        ordered.sort(key=lambda c: c.listed_at, reverse=True)
        if sort == SortKey.RELEVANCE and has_query:
            ordered.sort(key=lambda c: c.score, reverse=True)

    return ordered


async def search_gigs(
    db: AsyncSession,
    geo_index: GeoIndex,
    params: SearchParams,
    actor_id: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> Tuple[List[Tuple[Gig, Optional[float]]], Pagination]:
    """
    Run a search and return one page of (gig, distance_km) pairs.

    Raises:
        ValidationError: Bad limit, radius, coordinates or rate range
        InvalidSortError: Distance sort without a location
    """
    now = now or utcnow()
    _validate(params)
    limit = _resolve_limit(params)
    filters = _filters(params, actor_id, now)

    hits = {}
    if params.has_geo:
        radius_km = params.radius or settings.default_search_radius_km
        hits = geo_index.query(params.lng, params.lat, radius_km * 1000.0)
        if hits:
            filters.append(or_(Gig.id.in_(list(hits)), Gig.is_remote.is_(True)))
        else:
            filters.append(Gig.is_remote.is_(True))

    result = await db.execute(
        select(
            Gig.id,
            Gig.title,
            Gig.description,
            Gig.category,
            Gig.posted_at,
            Gig.created_at,
            Gig.payment_rate,
            Gig.is_remote,
        ).where(*filters)
    )

    words = query_words(params.q)
    candidates = []
    for row in result.all():
        candidate = Candidate(
            id=row.id,
            title=row.title,
            description=row.description,
            category=row.category,
            listed_at=row.posted_at or row.created_at,
            payment_rate=row.payment_rate,
            is_remote=bool(row.is_remote),
        )
        if params.has_geo and not candidate.is_remote and candidate.id in hits:
            candidate.distance_km = hits[candidate.id] / 1000.0
        if words:
            candidate.score = text_score(words, row.title, row.category, row.description)
        candidates.append(candidate)

    ordered = rank(candidates, params.sort, has_query=bool(words))
    start = (params.page - 1) * limit
    page_items = ordered[start:start + limit]

    gigs = await gig_store.get_gigs(db, [c.id for c in page_items])
    items = [(gigs[c.id], c.distance_km) for c in page_items if c.id in gigs]

    logger.debug(
        f"Search matched {len(candidates)} gigs (sort={params.sort.value}, page={params.page}, limit={limit})"
    )
    return items, Pagination.build(params.page, limit, len(candidates))


# Per-source caps for suggestions: titles, categories, skill names
SUGGESTION_SOURCES = (("title", 5), ("category", 3), ("skill", 5))
MIN_SUGGESTION_QUERY = 2


async def suggest(
    db: AsyncSession,
    q: Optional[str],
    limit: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[Suggestion]:
    """
    Autocomplete suggestions drawn from open gigs.

    A query of two or more characters is matched case-insensitively against
    gig titles, categories and skill names; results come in that order,
    de-duplicated ignoring case. A shorter query returns the categories with
    the most open gigs.

    Raises:
        ValidationError: limit above max_suggestions
    """
    now = now or utcnow()
    limit = limit or settings.default_suggestion_limit
    if limit > settings.max_suggestions:
        raise ValidationError(f"limit cannot exceed {settings.max_suggestions}")

    term = (q or "").strip().lower()
    if len(term) < MIN_SUGGESTION_QUERY:
        result = await db.execute(
            select(Gig.category)
            .where(open_clause(now))
            .group_by(Gig.category)
            .order_by(func.count().desc(), Gig.category)
            .limit(limit)
        )
        return [Suggestion(text=category, type="category") for category in result.scalars().all()]

    queries = {
        "title": (
            select(Gig.title)
            .where(open_clause(now), func.lower(Gig.title).contains(term, autoescape=True))
            .group_by(Gig.title)
            .order_by(func.max(Gig.posted_at).desc(), Gig.title)
        ),
        "category": (
            select(Gig.category)
            .where(open_clause(now), func.lower(Gig.category).contains(term, autoescape=True))
            .group_by(Gig.category)
            .order_by(func.count().desc(), Gig.category)
        ),
        "skill": (
            select(GigSkill.name)
            .join(Gig, GigSkill.gig_id == Gig.id)
            .where(open_clause(now), func.lower(GigSkill.name).contains(term, autoescape=True))
            .group_by(GigSkill.name)
            .order_by(func.count().desc(), GigSkill.name)
        ),
    }

    suggestions: List[Suggestion] = []
    seen = set()
    for kind, cap in SUGGESTION_SOURCES:
        result = await db.execute(queries[kind].limit(cap))
        for text in result.scalars().all():
            if text.lower() in seen:
                continue
            seen.add(text.lower())
            suggestions.append(Suggestion(text=text, type=kind))

    return suggestions[:limit]
