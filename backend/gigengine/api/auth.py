"""
Authentication dependencies.

The accounts service issues the session; the `auth_token` httpOnly cookie
carries the authenticated user's id. The engine trusts the cookie and only
checks that the user exists in the user directory.
"""
import logging
from typing import Optional
from uuid import UUID

from fastapi import Cookie, Depends, HTTPException

from gigengine.schemas.user import UserSummary
from gigengine.services.users import UserDirectory, get_user_directory

logger = logging.getLogger(__name__)


async def _resolve_user(auth_token: str, directory: UserDirectory) -> Optional[UserSummary]:
    try:
        user_id = UUID(auth_token)
    except ValueError:
        logger.warning("Rejected malformed auth_token cookie")
        return None
    return await directory.get_user(user_id)


async def get_current_user(
    auth_token: Optional[str] = Cookie(None),
    directory: UserDirectory = Depends(get_user_directory),
) -> UserSummary:
    """
    Dependency to get the authenticated user from the httpOnly cookie.

    Raises:
        HTTPException 401: Cookie missing or malformed, or user not found
    """
    if not auth_token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    user = await _resolve_user(auth_token, directory)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid token. User not found.")
    return user


async def get_optional_user(
    auth_token: Optional[str] = Cookie(None),
    directory: UserDirectory = Depends(get_user_directory),
) -> Optional[UserSummary]:
    """Like get_current_user, but anonymous callers get None instead of a 401."""
    if not auth_token:
        return None

    user = await _resolve_user(auth_token, directory)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid token. User not found.")
    return user
