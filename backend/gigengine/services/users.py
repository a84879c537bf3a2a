"""
User directory: resolves user ids to {id, name, email}.

The engine never writes users. By default they are read from the local
`users` table; when USER_DIRECTORY_URL is configured they are fetched from
the accounts service over HTTP.
"""
import asyncio
import logging
from typing import Dict, Iterable, Optional
from uuid import UUID

import aiohttp
from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gigengine.config import settings
from gigengine.database import get_db
from gigengine.errors import InternalError
from gigengine.models.gig import Gig
from gigengine.models.user import User
from gigengine.schemas.user import UserSummary

logger = logging.getLogger(__name__)


class UserDirectory:
    async def get_user(self, user_id: UUID) -> Optional[UserSummary]:
        raise NotImplementedError

    async def get_users(self, user_ids: Iterable[UUID]) -> Dict[UUID, UserSummary]:
        raise NotImplementedError


class SqlUserDirectory(UserDirectory):
    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def _summary(user: User) -> UserSummary:
        return UserSummary(id=user.id, name=user.display_name, email=user.email)

    async def get_user(self, user_id: UUID) -> Optional[UserSummary]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        return self._summary(user) if user else None

    async def get_users(self, user_ids: Iterable[UUID]) -> Dict[UUID, UserSummary]:
        ids = {uid for uid in user_ids if uid is not None}
        if not ids:
            return {}
        result = await self.db.execute(select(User).where(User.id.in_(list(ids))))
        return {user.id: self._summary(user) for user in result.scalars().all()}


class HttpUserDirectory(UserDirectory):
    """Looks users up with GET {base_url}/users/{id}; a 404 means no such user."""

    def __init__(self, base_url: str, timeout_s: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s

    async def _fetch(self, session: aiohttp.ClientSession, user_id: UUID) -> Optional[UserSummary]:
        url = f"{self.base_url}/users/{user_id}"
        timeout = aiohttp.ClientTimeout(total=self.timeout_s)
        try:
            async with session.get(url, timeout=timeout) as resp:
                if resp.status == 404:
                    return None
                if resp.status != 200:
                    body_text = await resp.text(errors="ignore")
                    logger.error(f"User directory returned {resp.status} for {user_id}: {body_text[:200]!r}")
                    raise InternalError("User directory unavailable")
                data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"User directory request failed for {user_id}: {type(e).__name__}: {e}")
            raise InternalError("User directory unavailable")

        # Accept either a bare user object or one wrapped in a data envelope
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            data = data["data"]
        return UserSummary(
            id=data.get("id", user_id),
            name=data.get("name") or data.get("full_name") or data.get("email", "").split("@")[0],
            email=data.get("email", ""),
        )

    async def get_user(self, user_id: UUID) -> Optional[UserSummary]:
        async with aiohttp.ClientSession() as session:
            return await self._fetch(session, user_id)

    async def get_users(self, user_ids: Iterable[UUID]) -> Dict[UUID, UserSummary]:
        ids = list({uid for uid in user_ids if uid is not None})
        if not ids:
            return {}
        async with aiohttp.ClientSession() as session:
            summaries = await asyncio.gather(*(self._fetch(session, uid) for uid in ids))
        return {uid: summary for uid, summary in zip(ids, summaries) if summary is not None}


def build_user_directory(db: AsyncSession) -> UserDirectory:
    if settings.user_directory_url:
        return HttpUserDirectory(settings.user_directory_url, settings.user_directory_timeout_seconds)
    return SqlUserDirectory(db)


async def get_user_directory(db: AsyncSession = Depends(get_db)) -> UserDirectory:
    """FastAPI dependency for the configured directory."""
    return build_user_directory(db)


def gig_user_ids(gig: Gig, include_applications: bool = False) -> set:
    """Ids to resolve for a gig response: poster, assignee and optionally applicants."""
    ids = {gig.poster_id}
    if gig.assigned_to:
        ids.add(gig.assigned_to)
    if include_applications:
        ids.update(a.applicant_id for a in gig.applications)
    return ids
