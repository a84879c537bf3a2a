"""
Tests for the in-process geo index.

Validates:
- Radius queries return exactly the gigs within the radius
- Moves and removals keep buckets consistent
- Remote gigs never enter the grid
- Antimeridian and polar queries
"""
import math
import uuid

import pytest

from gigengine.services.geo_index import EARTH_RADIUS_M, GeoIndex, haversine_m

# Kilometers per degree of longitude at the equator for the index's Earth radius
KM_PER_DEGREE = 111.19508


def _equator_point(km: float):
    return km / KM_PER_DEGREE, 0.0


def test_haversine_known_distance():
    """One degree of longitude on the equator"""
    distance = haversine_m(0.0, 0.0, 1.0, 0.0)
    assert distance == pytest.approx(math.radians(1.0) * EARTH_RADIUS_M, rel=1e-9)


def test_haversine_is_symmetric():
    a = haversine_m(77.59, 12.97, 72.88, 19.08)
    b = haversine_m(72.88, 19.08, 77.59, 12.97)
    assert a == pytest.approx(b)
    assert 840_000 < a < 850_000  # Bengaluru to Mumbai


def test_query_5_40_60_km_scenario():
    """Default 50 km radius around (0,0) keeps the 5 km and 40 km gigs"""
    index = GeoIndex()
    near, mid, far = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    for gig_id, km in ((near, 5), (mid, 40), (far, 60)):
        index.upsert(gig_id, *_equator_point(km))

    results = index.query(0.0, 0.0, 50_000)

    assert set(results) == {near, mid}
    assert results[near] == pytest.approx(5_000, rel=1e-3)
    assert results[mid] == pytest.approx(40_000, rel=1e-3)


def test_query_spans_multiple_cells():
    index = GeoIndex(cell_size_degrees=0.1)
    ids = [uuid.uuid4() for _ in range(5)]
    for i, gig_id in enumerate(ids):
        index.upsert(gig_id, i * 0.15, 0.0)  # every point in its own cell

    results = index.query(0.3, 0.0, 40_000)

    # 0.0 and 0.6 degrees are ~33 km away; everything is within 40 km
    assert set(results) == set(ids)


def test_upsert_moves_gig():
    index = GeoIndex()
    gig_id = uuid.uuid4()
    index.upsert(gig_id, 77.59, 12.97)
    index.upsert(gig_id, 72.88, 19.08)

    assert len(index) == 1
    assert index.query(77.59, 12.97, 10_000) == {}
    assert gig_id in index.query(72.88, 19.08, 10_000)


def test_remove():
    index = GeoIndex()
    gig_id = uuid.uuid4()
    index.upsert(gig_id, 10.0, 10.0)

    assert index.remove(gig_id) is True
    assert index.remove(gig_id) is False
    assert gig_id not in index
    assert index.query(10.0, 10.0, 1_000) == {}


def test_remote_gigs_kept_out_of_grid():
    index = GeoIndex()
    remote, located = uuid.uuid4(), uuid.uuid4()
    index.upsert(remote, 0.0, 0.0, is_remote=True)
    index.upsert(located, 0.0, 0.0)

    assert remote in index
    assert index.remote_ids == {remote}
    assert set(index.query(0.0, 0.0, 1_000)) == {located}
    assert index.distance_m(remote, 0.0, 0.0) is None


def test_remote_gig_becoming_located():
    index = GeoIndex()
    gig_id = uuid.uuid4()
    index.upsert(gig_id, 0.0, 0.0, is_remote=True)
    index.upsert(gig_id, 0.0, 0.0, is_remote=False)

    assert index.remote_ids == set()
    assert gig_id in index.query(0.0, 0.0, 100)


def test_query_across_antimeridian():
    index = GeoIndex()
    east, west = uuid.uuid4(), uuid.uuid4()
    index.upsert(east, 179.9, 0.0)
    index.upsert(west, -179.9, 0.0)

    results = index.query(179.95, 0.0, 50_000)

    assert set(results) == {east, west}
    assert results[west] == pytest.approx(haversine_m(179.95, 0.0, -179.9, 0.0))


def test_query_near_pole_covers_all_longitudes():
    index = GeoIndex()
    a, b = uuid.uuid4(), uuid.uuid4()
    index.upsert(a, 0.0, 89.9)
    index.upsert(b, 180.0, 89.9)

    # The two points are ~22 km apart across the pole
    results = index.query(90.0, 89.95, 30_000)

    assert set(results) == {a, b}


def test_load_replaces_contents():
    index = GeoIndex()
    stale = uuid.uuid4()
    index.upsert(stale, 1.0, 1.0)

    fresh, remote = uuid.uuid4(), uuid.uuid4()
    count = index.load([(fresh, 2.0, 2.0, False), (remote, 0.0, 0.0, True)])

    assert count == 2
    assert stale not in index
    assert fresh in index and remote in index


def test_invalid_coordinates_rejected():
    index = GeoIndex()
    with pytest.raises(ValueError):
        index.upsert(uuid.uuid4(), 200.0, 0.0)
    with pytest.raises(ValueError):
        GeoIndex(cell_size_degrees=0)
