"""
Tests for the user directory.

Validates:
- SQL directory display names (full name, else the email's local part)
- HTTP directory against a live aiohttp server: 200, 404 and 5xx handling
"""
import uuid

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp import test_utils

from gigengine.errors import InternalError
from gigengine.services.users import HttpUserDirectory, SqlUserDirectory, gig_user_ids


KNOWN_ID = uuid.uuid4()
ENVELOPED_ID = uuid.uuid4()
BROKEN_ID = uuid.uuid4()


async def _user_handler(request: web.Request) -> web.Response:
    user_id = uuid.UUID(request.match_info["user_id"])
    if user_id == KNOWN_ID:
        return web.json_response({"id": str(KNOWN_ID), "full_name": "Meera Nair", "email": "meera@example.com"})
    if user_id == ENVELOPED_ID:
        return web.json_response(
            {"success": True, "data": {"id": str(ENVELOPED_ID), "email": "ravi.k@example.com"}}
        )
    if user_id == BROKEN_ID:
        return web.Response(status=500, text="database down")
    return web.json_response({"error": "not found"}, status=404)


@pytest_asyncio.fixture
async def directory_server():
    app = web.Application()
    app.router.add_get("/users/{user_id}", _user_handler)
    server = test_utils.TestServer(app)
    await server.start_server()
    try:
        yield server
    finally:
        await server.close()


@pytest.fixture
def http_directory(directory_server) -> HttpUserDirectory:
    return HttpUserDirectory(str(directory_server.make_url("/")), timeout_s=2)


# =============================================================================
# SQL directory
# =============================================================================

@pytest.mark.asyncio
async def test_sql_directory_names(db, poster, other_applicant):
    directory = SqlUserDirectory(db)

    users = await directory.get_users([poster.id, other_applicant.id, uuid.uuid4()])

    assert users[poster.id].name == "Priya Poster"
    assert users[other_applicant.id].name == "worker.two"
    assert len(users) == 2


@pytest.mark.asyncio
async def test_sql_directory_unknown_user(db):
    assert await SqlUserDirectory(db).get_user(uuid.uuid4()) is None


@pytest.mark.asyncio
async def test_gig_user_ids(db, poster, applicant, make_gig):
    gig = await make_gig(poster)

    assert gig_user_ids(gig) == {poster.id}


# =============================================================================
# HTTP directory
# =============================================================================

@pytest.mark.asyncio
async def test_http_directory_found(http_directory):
    user = await http_directory.get_user(KNOWN_ID)

    assert user.id == KNOWN_ID
    assert user.name == "Meera Nair"
    assert user.email == "meera@example.com"


@pytest.mark.asyncio
async def test_http_directory_unwraps_envelope_and_falls_back_to_email(http_directory):
    user = await http_directory.get_user(ENVELOPED_ID)

    assert user.name == "ravi.k"


@pytest.mark.asyncio
async def test_http_directory_missing_user(http_directory):
    assert await http_directory.get_user(uuid.uuid4()) is None


@pytest.mark.asyncio
async def test_http_directory_server_error(http_directory):
    with pytest.raises(InternalError):
        await http_directory.get_user(BROKEN_ID)


@pytest.mark.asyncio
async def test_http_directory_batch_skips_missing(http_directory):
    missing = uuid.uuid4()

    users = await http_directory.get_users([KNOWN_ID, ENVELOPED_ID, missing, None])

    assert set(users) == {KNOWN_ID, ENVELOPED_ID}


@pytest.mark.asyncio
async def test_http_directory_unreachable():
    # Nothing listens on port 9 locally
    directory = HttpUserDirectory("http://127.0.0.1:9", timeout_s=1)

    with pytest.raises(InternalError):
        await directory.get_user(KNOWN_ID)
