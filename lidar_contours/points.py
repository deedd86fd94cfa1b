"""
Ground point set for a single tile.

Points arrive already filtered to ground / water, shifted to tile-local
coordinates and jittered, so the spatial index never sees exact ties. The
set keeps its columns as numpy arrays; the nearest-neighbour index is built
lazily from x/y and dropped again whenever points are added.

The bounded convex hull is the region in which the raster may be
interpolated. It is built with an angular sweep from the lowest, then
leftmost ground point, and its vertices are snapped onto the raster bounds
when they fall within ``snap_epsilon`` so that hull and raster agree on the
boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

import numpy as np
from scipy.spatial import cKDTree
from skimage.measure import approximate_polygon

from .errors import NoGroundPointsError

# ASPRS classification codes
GROUND = 2
WATER = 9


@dataclass(frozen=True)
class Point:
    x: float
    y: float
    z: float
    classification: int = GROUND
    return_number: int = 1
    intensity: int = 0


@dataclass(frozen=True)
class Bounds:
    min_x: float
    min_y: float
    max_x: float
    max_y: float
    min_z: float = 0.0
    max_z: float = 0.0

    @property
    def top_left(self) -> Tuple[float, float]:
        return self.min_x, self.max_y


FIELDS = ("elevation", "intensity", "return_number")


class PointSet:
    """Growable column store of tile points plus tile bounds."""

    def __init__(
        self,
        x: Iterable[float],
        y: Iterable[float],
        z: Iterable[float],
        classification: Optional[Iterable[int]] = None,
        return_number: Optional[Iterable[int]] = None,
        intensity: Optional[Iterable[int]] = None,
        bounds: Optional[Bounds] = None,
    ) -> None:
        self.x = np.asarray(x, dtype=np.float64).ravel()
        self.y = np.asarray(y, dtype=np.float64).ravel()
        self.z = np.asarray(z, dtype=np.float64).ravel()
        n = self.x.size
        if self.y.size != n or self.z.size != n:
            raise ValueError("x, y and z must have the same length")
        self.classification = _column(classification, n, GROUND, np.uint8)
        self.return_number = _column(return_number, n, 1, np.uint8)
        self.intensity = _column(intensity, n, 0, np.uint16)
        if bounds is None:
            bounds = _bounds_of(self.x, self.y, self.z)
        self.bounds = bounds
        self._tree: Optional[cKDTree] = None

    @classmethod
    def from_points(cls, points: Iterable[Point], bounds: Optional[Bounds] = None) -> "PointSet":
        pts = list(points)
        return cls(
            [p.x for p in pts],
            [p.y for p in pts],
            [p.z for p in pts],
            classification=[p.classification for p in pts],
            return_number=[p.return_number for p in pts],
            intensity=[p.intensity for p in pts],
            bounds=bounds,
        )

    def __len__(self) -> int:
        return int(self.x.size)

    def __getitem__(self, i: int) -> Point:
        return Point(
            float(self.x[i]),
            float(self.y[i]),
            float(self.z[i]),
            int(self.classification[i]),
            int(self.return_number[i]),
            int(self.intensity[i]),
        )

    @property
    def xy(self) -> np.ndarray:
        return np.column_stack((self.x, self.y))

    def field(self, name: str) -> np.ndarray:
        """Values of one interpolable field as float64."""
        if name == "elevation":
            return self.z
        if name == "intensity":
            return self.intensity.astype(np.float64)
        if name == "return_number":
            return self.return_number.astype(np.float64)
        raise ValueError(f"Unknown field {name!r}; expected one of {FIELDS}")

    # ------------------------------------------------------------------ index

    @property
    def index(self) -> cKDTree:
        """Nearest-neighbour index over x/y, rebuilt after ``add``."""
        if self._tree is None:
            if len(self) == 0:
                raise ValueError("Cannot index an empty point set")
            self._tree = cKDTree(self.xy)
        return self._tree

    def nearest(self, xy: np.ndarray, k: int) -> Tuple[np.ndarray, np.ndarray]:
        """Distances and indices of the ``k`` nearest points for each query row."""
        k = min(int(k), len(self))
        dist, idx = self.index.query(np.atleast_2d(xy), k=k)
        if k == 1:
            dist = dist[:, None]
            idx = idx[:, None]
        return dist, idx

    def add(self, points: Iterable[Point]) -> None:
        pts = list(points)
        if not pts:
            return
        self.x = np.concatenate([self.x, [p.x for p in pts]])
        self.y = np.concatenate([self.y, [p.y for p in pts]])
        self.z = np.concatenate([self.z, [p.z for p in pts]])
        self.classification = np.concatenate(
            [self.classification, np.asarray([p.classification for p in pts], dtype=np.uint8)]
        )
        self.return_number = np.concatenate(
            [self.return_number, np.asarray([p.return_number for p in pts], dtype=np.uint8)]
        )
        self.intensity = np.concatenate(
            [self.intensity, np.asarray([p.intensity for p in pts], dtype=np.uint16)]
        )
        self._tree = None

    def jitter(self, rng: Optional[np.random.Generator] = None, amplitude: float = 1e-3) -> "PointSet":
        """Copy with x/y perturbed uniformly in ``[-amplitude, amplitude)``."""
        rng = np.random.default_rng() if rng is None else rng
        return PointSet(
            self.x + amplitude * 2.0 * (rng.random(len(self)) - 0.5),
            self.y + amplitude * 2.0 * (rng.random(len(self)) - 0.5),
            self.z.copy(),
            self.classification.copy(),
            self.return_number.copy(),
            self.intensity.copy(),
            bounds=self.bounds,
        )

    # ----------------------------------------------------------- ghost points

    def add_ghost_points(self, k: int = 32) -> list[Point]:
        """Add IDW-extrapolated ground points at the four tile corners.

        Each corner elevation is the inverse-distance weighted mean of the
        ``k`` nearest real points. Returns the added points.
        """
        b = self.bounds
        corners = np.array(
            [
                [b.min_x, b.max_y],
                [b.min_x, b.min_y],
                [b.max_x, b.min_y],
                [b.max_x, b.max_y],
            ]
        )
        dist, idx = self.nearest(corners, k)
        ghosts: list[Point] = []
        for (cx, cy), d, i in zip(corners, dist, idx):
            zs = self.z[i]
            exact = d <= 0.0
            if exact.any():
                z = float(zs[exact][0])
            else:
                w = 1.0 / d
                z = float(np.sum(w * zs) / np.sum(w))
            ghosts.append(Point(float(cx), float(cy), z, GROUND, 1, 0))
        self.add(ghosts)
        return ghosts

    # ------------------------------------------------------------ raster geom

    def raster_bounds(self, tile_size: float, cell_size: float) -> Bounds:
        """Tile bounds stretched to exactly ``tile_size`` and shifted by half a cell.

        Every cell is sampled at its top-left corner, so the grid is shifted
        +x / -y by half a cell to keep the first and last sample equally far
        from the tile edges.
        """
        b = self.bounds
        stretch_x = (tile_size - (b.max_x - b.min_x)) / 2.0
        stretch_y = (tile_size - (b.max_y - b.min_y)) / 2.0
        offset_x = cell_size / 2.0
        offset_y = -cell_size / 2.0
        return Bounds(
            min_x=b.min_x - stretch_x + offset_x,
            min_y=b.min_y - stretch_y + offset_y,
            max_x=b.max_x + stretch_x + offset_x,
            max_y=b.max_y + stretch_y + offset_y,
            min_z=b.min_z,
            max_z=b.max_z,
        )

    # ------------------------------------------------------------------ hull

    def convex_hull(self) -> np.ndarray:
        """Convex hull of the ground points, counter-clockwise, not closed."""
        ground = self.classification == GROUND
        if not np.any(ground):
            raise NoGroundPointsError()
        pts = np.column_stack((self.x[ground], self.y[ground]))
        return graham_scan(pts)

    def bounded_convex_hull(self, target: Bounds, snap_epsilon: float) -> np.ndarray:
        """Closed, simplified hull with vertices snapped onto ``target`` bounds."""
        hull = self.convex_hull().copy()
        hx = hull[:, 0]
        hy = hull[:, 1]

        near_min_x = np.abs(target.min_x - hx) <= snap_epsilon
        near_max_x = ~near_min_x & (np.abs(target.max_x - hx) <= snap_epsilon)
        hx[near_min_x] = target.min_x
        hx[near_max_x] = target.max_x

        near_min_y = np.abs(target.min_y - hy) <= snap_epsilon
        near_max_y = ~near_min_y & (np.abs(target.max_y - hy) <= snap_epsilon)
        hy[near_min_y] = target.min_y
        hy[near_max_y] = target.max_y

        closed = np.vstack([hull, hull[:1]])
        if len(closed) > 3:
            closed = approximate_polygon(closed, tolerance=snap_epsilon)
        if not np.array_equal(closed[0], closed[-1]):
            closed = np.vstack([closed, closed[:1]])
        return closed


def graham_scan(pts: np.ndarray) -> np.ndarray:
    """Angular sweep hull of an ``(n, 2)`` array.

    The pivot is the lowest, then leftmost point. Points are ordered by angle
    around the pivot; among collinear points the farther one comes first and
    the nearer ones are skipped, so near-duplicates cannot fold the hull.
    """
    pts = np.asarray(pts, dtype=np.float64)
    if len(pts) == 0:
        raise NoGroundPointsError()

    order = np.lexsort((pts[:, 0], pts[:, 1]))
    pivot = pts[order[0]]
    rest = np.delete(pts, order[0], axis=0)
    if len(rest) == 0:
        return pivot[None, :].copy()

    dx = rest[:, 0] - pivot[0]
    dy = rest[:, 1] - pivot[1]
    angle = np.arctan2(dy, dx)
    dist2 = dx * dx + dy * dy
    # primary key angle, farther first on ties
    sweep = rest[np.lexsort((-dist2, angle))]
    sweep = sweep[(sweep[:, 0] != pivot[0]) | (sweep[:, 1] != pivot[1])]
    if len(sweep) == 0:
        return pivot[None, :].copy()

    hull = [pivot, sweep[0]]
    for p in sweep[1:]:
        if _orientation(pivot, p, hull[-1]) == 0.0:
            # same ray as the previous hull point, which is farther
            continue
        while len(hull) > 2 and _orientation(hull[-2], hull[-1], p) <= 0.0:
            hull.pop()
        hull.append(p)
    return np.asarray(hull)


def _orientation(o: np.ndarray, a: np.ndarray, b: np.ndarray) -> float:
    """Cross product of ``a - o`` and ``b - o``; positive for a left turn."""
    return float((a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0]))


def _column(values: Optional[Iterable[int]], n: int, default: int, dtype) -> np.ndarray:
    if values is None:
        return np.full(n, default, dtype=dtype)
    arr = np.asarray(values, dtype=dtype).ravel()
    if arr.size != n:
        raise ValueError(f"Column length {arr.size} does not match point count {n}")
    return arr


def _bounds_of(x: np.ndarray, y: np.ndarray, z: np.ndarray) -> Bounds:
    if x.size == 0:
        return Bounds(0.0, 0.0, 0.0, 0.0)
    return Bounds(
        float(x.min()), float(y.min()), float(x.max()), float(y.max()), float(z.min()), float(z.max())
    )
