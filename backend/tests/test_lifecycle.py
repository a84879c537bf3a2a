"""
Tests for the gig lifecycle state machine.

Validates:
- Forward transitions and the fields they stamp
- Backward and automatic-only transitions raise InvalidTransitionError
- Actor rules (poster vs assignee vs stranger)
- Lazy expiry on read and the persisted sweep
- Cancel rejects pending applications
"""
import asyncio
import pytest
from datetime import timedelta

import gigengine.database
from gigengine.clock import utcnow
from gigengine.config import Settings
from gigengine.errors import ForbiddenError, InvalidTransitionError, ValidationError
from gigengine.models.gig import ApplicationStatus, GigStatus
from gigengine.schemas.application import ApplicationCreate
from gigengine.services import gig_store
from gigengine.services.applications import accept_application, apply_to_gig
from gigengine.services.expiry import effective_status
from gigengine.services.lifecycle import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATES,
    can_transition,
    sweep_expired_gigs,
    transition_gig,
)
from gigengine.services.sweeper import run_sweep, sweep_forever
from gigengine.services.geo_index import GeoIndex


FORWARD_CHAIN = [
    GigStatus.DRAFT,
    GigStatus.POSTED,
    GigStatus.ACTIVE,
    GigStatus.ASSIGNED,
    GigStatus.IN_PROGRESS,
    GigStatus.COMPLETED,
]


# =============================================================================
# Transition table
# =============================================================================

def test_transition_table_never_moves_backward():
    for i, status in enumerate(FORWARD_CHAIN):
        for earlier in FORWARD_CHAIN[:i]:
            assert not can_transition(status, earlier), f"{status} -> {earlier} must be rejected"


def test_terminal_states_have_no_exits():
    assert TERMINAL_STATES == {GigStatus.COMPLETED, GigStatus.CANCELLED, GigStatus.EXPIRED}
    for status in TERMINAL_STATES:
        assert ALLOWED_TRANSITIONS[status] == []


def test_cancel_reachable_from_every_non_terminal_state():
    for status in FORWARD_CHAIN[:-1]:
        assert can_transition(status, GigStatus.CANCELLED)


# =============================================================================
# Actor-driven transitions
# =============================================================================

@pytest.mark.asyncio
async def test_publish_draft_sets_posted_at_and_default_expiry(db, poster, make_gig):
    gig = await make_gig(poster, status="draft")
    assert gig.status == GigStatus.DRAFT.value
    assert gig.posted_at is None
    version = gig.version

    result = await transition_gig(db, gig.id, poster.id, GigStatus.POSTED)

    assert result.status == GigStatus.POSTED.value
    assert result.posted_at is not None
    assert result.expires_at - result.posted_at == timedelta(days=30)
    assert result.version == version + 1


@pytest.mark.asyncio
async def test_publish_with_explicit_expiry(db, poster, make_gig):
    gig = await make_gig(poster, status="draft")
    expires_at = utcnow() + timedelta(days=3)

    result = await transition_gig(db, gig.id, poster.id, GigStatus.POSTED, expires_at=expires_at)

    assert result.expires_at == expires_at


@pytest.mark.asyncio
async def test_publish_with_past_expiry_rejected(db, poster, make_gig):
    gig = await make_gig(poster, status="draft")

    with pytest.raises(ValidationError):
        await transition_gig(db, gig.id, poster.id, GigStatus.POSTED, expires_at=utcnow() - timedelta(hours=1))


@pytest.mark.asyncio
async def test_full_forward_chain(db, poster, applicant, make_gig):
    gig = await make_gig(poster)
    gig = await transition_gig(db, gig.id, poster.id, GigStatus.ACTIVE)
    assert gig.status == GigStatus.ACTIVE.value

    application = await apply_to_gig(db, gig.id, applicant.id, ApplicationCreate())
    gig = await accept_application(db, gig.id, application.id, poster.id)
    assert gig.status == GigStatus.ASSIGNED.value

    # The assignee may start and finish the work
    gig = await transition_gig(db, gig.id, applicant.id, GigStatus.IN_PROGRESS)
    assert gig.status == GigStatus.IN_PROGRESS.value

    gig = await transition_gig(db, gig.id, applicant.id, GigStatus.COMPLETED)
    assert gig.status == GigStatus.COMPLETED.value
    assert gig.completion_date is not None


@pytest.mark.asyncio
async def test_backward_transition_rejected(db, poster, make_gig):
    gig = await make_gig(poster)
    await transition_gig(db, gig.id, poster.id, GigStatus.ACTIVE)

    with pytest.raises(InvalidTransitionError) as exc_info:
        await transition_gig(db, gig.id, poster.id, GigStatus.POSTED)

    assert exc_info.value.details == {"current": "active", "requested": "posted"}
    assert "active" in exc_info.value.message


@pytest.mark.asyncio
async def test_assigned_not_requestable_directly(db, poster, make_gig):
    gig = await make_gig(poster)

    with pytest.raises(InvalidTransitionError):
        await transition_gig(db, gig.id, poster.id, GigStatus.ASSIGNED)


@pytest.mark.asyncio
async def test_expired_not_requestable_directly(db, poster, make_gig):
    gig = await make_gig(poster)

    with pytest.raises(InvalidTransitionError):
        await transition_gig(db, gig.id, poster.id, GigStatus.EXPIRED)


@pytest.mark.asyncio
async def test_terminal_state_cannot_be_left(db, poster, make_gig):
    gig = await make_gig(poster)
    await transition_gig(db, gig.id, poster.id, GigStatus.CANCELLED)

    with pytest.raises(InvalidTransitionError):
        await transition_gig(db, gig.id, poster.id, GigStatus.ACTIVE)


@pytest.mark.asyncio
async def test_only_poster_changes_open_gig_status(db, poster, applicant, make_gig):
    gig = await make_gig(poster)

    with pytest.raises(ForbiddenError):
        await transition_gig(db, gig.id, applicant.id, GigStatus.CANCELLED)


@pytest.mark.asyncio
async def test_stranger_cannot_progress_assigned_gig(db, poster, applicant, other_applicant, make_gig):
    gig = await make_gig(poster)
    application = await apply_to_gig(db, gig.id, applicant.id, ApplicationCreate())
    await accept_application(db, gig.id, application.id, poster.id)

    with pytest.raises(ForbiddenError):
        await transition_gig(db, gig.id, other_applicant.id, GigStatus.IN_PROGRESS)


@pytest.mark.asyncio
async def test_cancel_rejects_pending_applications(db, poster, applicant, other_applicant, make_gig):
    gig = await make_gig(poster)
    await apply_to_gig(db, gig.id, applicant.id, ApplicationCreate())
    await apply_to_gig(db, gig.id, other_applicant.id, ApplicationCreate())

    result = await transition_gig(db, gig.id, poster.id, GigStatus.CANCELLED)

    assert result.status == GigStatus.CANCELLED.value
    assert [a.status for a in result.applications] == [ApplicationStatus.REJECTED.value] * 2
    assert result.applications_count == 2


# =============================================================================
# Expiry
# =============================================================================

@pytest.mark.asyncio
async def test_lazy_expiry_reported_before_sweep(db, poster, make_gig):
    now = utcnow()
    gig = await make_gig(poster, expires_at=(now + timedelta(hours=1)).isoformat())

    later = now + timedelta(hours=2)
    assert effective_status(gig, now) == GigStatus.POSTED
    assert effective_status(gig, later) == GigStatus.EXPIRED

    # Storage still says posted until the sweep runs
    stored = await gig_store.get_gig(db, gig.id)
    assert stored.status == GigStatus.POSTED.value


@pytest.mark.asyncio
async def test_transition_uses_effective_status(db, poster, make_gig):
    now = utcnow()
    gig = await make_gig(poster, expires_at=(now + timedelta(hours=1)).isoformat())

    with pytest.raises(InvalidTransitionError) as exc_info:
        await transition_gig(db, gig.id, poster.id, GigStatus.ACTIVE, now=now + timedelta(hours=2))

    assert exc_info.value.details["current"] == "expired"


@pytest.mark.asyncio
async def test_sweep_persists_expiry(db, poster, make_gig):
    now = utcnow()
    overdue = await make_gig(poster, expires_at=(now + timedelta(hours=1)).isoformat())
    fresh = await make_gig(poster, title="Paint the garden fence", expires_at=(now + timedelta(days=5)).isoformat())
    draft = await make_gig(poster, status="draft")

    expired_ids = await sweep_expired_gigs(db, now=now + timedelta(hours=2))

    assert list(expired_ids) == [overdue.id]
    assert (await gig_store.get_gig(db, overdue.id)).status == GigStatus.EXPIRED.value
    assert (await gig_store.get_gig(db, fresh.id)).status == GigStatus.POSTED.value
    assert (await gig_store.get_gig(db, draft.id)).status == GigStatus.DRAFT.value


@pytest.mark.asyncio
async def test_sweep_leaves_assigned_gigs_alone(db, poster, applicant, make_gig):
    now = utcnow()
    gig = await make_gig(poster, expires_at=(now + timedelta(hours=1)).isoformat())
    application = await apply_to_gig(db, gig.id, applicant.id, ApplicationCreate())
    await accept_application(db, gig.id, application.id, poster.id)

    expired_ids = await sweep_expired_gigs(db, now=now + timedelta(hours=2))

    assert list(expired_ids) == []
    assert (await gig_store.get_gig(db, gig.id)).status == GigStatus.ASSIGNED.value


@pytest.mark.asyncio
async def test_sweep_is_idempotent(db, poster, make_gig):
    now = utcnow()
    await make_gig(poster, expires_at=(now + timedelta(hours=1)).isoformat())

    first = await sweep_expired_gigs(db, now=now + timedelta(hours=2))
    second = await sweep_expired_gigs(db, now=now + timedelta(hours=2))

    assert len(first) == 1
    assert list(second) == []


@pytest.mark.asyncio
async def test_run_sweep_rebuilds_geo_index(db, poster, make_gig):
    gig = await make_gig(poster)
    remote = await make_gig(poster, title="Remote logo design", is_remote=True)
    index = GeoIndex()

    await run_sweep(db, index)

    assert gig.id in index
    assert index.remote_ids == {remote.id}


def test_background_sweep_enabled_by_default():
    assert Settings.model_fields["enable_background_sweep"].default is True


@pytest.mark.asyncio
async def test_background_sweep_indexes_gigs_written_elsewhere(db, poster, make_gig):
    """A gig stored by another process reaches this process's index on the next pass"""
    index = GeoIndex()
    gig = await make_gig(poster)
    assert gig.id not in index

    task = asyncio.create_task(
        sweep_forever(lambda: gigengine.database.AsyncSessionLocal(), index, interval_seconds=0.05)
    )
    try:
        for _ in range(40):
            if gig.id in index:
                break
            await asyncio.sleep(0.05)
    finally:
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    assert gig.id in index
