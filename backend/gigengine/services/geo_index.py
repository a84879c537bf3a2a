"""
In-process geospatial index over gig locations.

Gigs are bucketed into a hash grid of fixed-size lat/lng cells. Insert,
move and delete touch one or two buckets; a radius query only visits the
cells overlapping the radius bounding box and then checks candidates with
the exact great-circle distance. Ranking is not this module's job: query
results come back unordered.

Remote gigs are tracked separately and never placed in the grid, since
they match any location.

Each API process holds its own index. Writes made through a process update
its index after commit; writes made through any other process reach it at
the next in-process sweep (ENABLE_BACKGROUND_SWEEP, on by default), so with
several workers the index lags storage by at most SWEEP_INTERVAL_SECONDS.
The sweep worker CLI persists expiry only and refreshes no API index.
"""
import logging
import math
from typing import Dict, Iterable, Optional, Set, Tuple
from uuid import UUID

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6_371_008.8

Cell = Tuple[int, int]


def haversine_m(lng1: float, lat1: float, lng2: float, lat2: float) -> float:
    """Great-circle distance in meters between two (lng, lat) points."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = phi2 - phi1
    dlmb = math.radians(lng2 - lng1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


class GeoIndex:
    def __init__(self, cell_size_degrees: float = 0.5):
        if cell_size_degrees <= 0:
            raise ValueError("cell_size_degrees must be positive")
        self.cell_size = cell_size_degrees
        self._lng_cells = max(1, math.ceil(360.0 / cell_size_degrees))
        self._cells: Dict[Cell, Set[UUID]] = {}
        self._points: Dict[UUID, Tuple[float, float]] = {}
        self._cell_of: Dict[UUID, Cell] = {}
        self._remote: Set[UUID] = set()

    def __len__(self) -> int:
        return len(self._points) + len(self._remote)

    def __contains__(self, gig_id: UUID) -> bool:
        return gig_id in self._points or gig_id in self._remote

    @property
    def remote_ids(self) -> Set[UUID]:
        return set(self._remote)

    def _cell(self, lng: float, lat: float) -> Cell:
        row = math.floor((lat + 90.0) / self.cell_size)
        col = math.floor((lng + 180.0) / self.cell_size) % self._lng_cells
        return row, col

    def upsert(self, gig_id: UUID, lng: float, lat: float, is_remote: bool = False) -> None:
        """Insert a gig or move it to its new location."""
        self.remove(gig_id)
        if is_remote:
            self._remote.add(gig_id)
            return
        if not (-180.0 <= lng <= 180.0 and -90.0 <= lat <= 90.0):
            raise ValueError(f"Invalid coordinates for gig {gig_id}: ({lng}, {lat})")

        cell = self._cell(lng, lat)
        self._cells.setdefault(cell, set()).add(gig_id)
        self._points[gig_id] = (lng, lat)
        self._cell_of[gig_id] = cell

    def remove(self, gig_id: UUID) -> bool:
        """Drop a gig from the index. Returns False if it was not indexed."""
        if gig_id in self._remote:
            self._remote.discard(gig_id)
            return True

        cell = self._cell_of.pop(gig_id, None)
        if cell is None:
            return False
        bucket = self._cells.get(cell)
        if bucket is not None:
            bucket.discard(gig_id)
            if not bucket:
                del self._cells[cell]
        del self._points[gig_id]
        return True

    def clear(self) -> None:
        self._cells.clear()
        self._points.clear()
        self._cell_of.clear()
        self._remote.clear()

    def load(self, entries: Iterable[Tuple[UUID, float, float, bool]]) -> int:
        """Replace the index contents with (gig_id, lng, lat, is_remote) entries."""
        self.clear()
        for gig_id, lng, lat, is_remote in entries:
            self.upsert(gig_id, lng, lat, is_remote)
        logger.info(f"Geo index loaded with {len(self)} gigs ({len(self._remote)} remote)")
        return len(self)

    def distance_m(self, gig_id: UUID, lng: float, lat: float) -> Optional[float]:
        """Distance from an indexed gig to a point, None for remote or unknown gigs."""
        point = self._points.get(gig_id)
        if point is None:
            return None
        return haversine_m(lng, lat, point[0], point[1])

    def query(self, lng: float, lat: float, radius_m: float) -> Dict[UUID, float]:
        """
        Located gigs within radius_m of (lng, lat), mapped to their distance.

        Remote gigs are not included; callers treat them as always matching.
        """
        if radius_m < 0:
            raise ValueError("radius_m must be non-negative")

        results: Dict[UUID, float] = {}
        for cell in self._cells_in_range(lng, lat, radius_m):
            for gig_id in self._cells.get(cell, ()):
                glng, glat = self._points[gig_id]
                distance = haversine_m(lng, lat, glng, glat)
                if distance <= radius_m:
                    results[gig_id] = distance
        return results

    def _cells_in_range(self, lng: float, lat: float, radius_m: float) -> Set[Cell]:
        angular = radius_m / EARTH_RADIUS_M
        dlat = math.degrees(angular)
        min_lat = lat - dlat
        max_lat = lat + dlat

        # A cap that reaches a pole covers every longitude
        if max_lat >= 90.0 or min_lat <= -90.0 or angular >= math.pi / 2:
            lng_span = None
        else:
            ratio = math.sin(angular) / math.cos(math.radians(lat))
            lng_span = None if ratio >= 1.0 else math.degrees(math.asin(ratio))

        min_row, _ = self._cell(0.0, max(min_lat, -90.0))
        max_row, _ = self._cell(0.0, min(max_lat, 90.0))

        if lng_span is None or 2 * lng_span >= 360.0:
            cols = range(self._lng_cells)
        else:
            first = math.floor((lng - lng_span + 180.0) / self.cell_size)
            last = math.floor((lng + lng_span + 180.0) / self.cell_size)
            # modulo wraps columns across the antimeridian
            cols = [c % self._lng_cells for c in range(first, last + 1)]

        if len(self._cells) < (max_row - min_row + 1) * len(cols):
            # Sparse index: scanning occupied cells is cheaper than probing empty ones
            col_set = set(cols)
            return {
                cell for cell in self._cells
                if min_row <= cell[0] <= max_row and cell[1] in col_set
            }
        return {(row, col) for row in range(min_row, max_row + 1) for col in cols}
