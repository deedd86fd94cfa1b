"""
Raster grid of scalar field samples (elevation, intensity, return number).

Cell ``(row, col)`` is the sample at world coordinate

    x = top_left.x + col * cell_size
    y = top_left.y - row * cell_size

so rows grow southwards. Cells outside the valid interpolation hull hold
NaN. Grids are plain values: ``copy()`` freely, mutate in place with
``adjust`` / ``smoothen``, and do not share one instance between threads.
"""

from __future__ import annotations

import math
from typing import List, Optional, Tuple

import numpy as np

from .errors import DimensionMismatchError
from .marching import trace_level


class RasterGrid:
    def __init__(self, values: np.ndarray, top_left: Tuple[float, float], cell_size: float) -> None:
        values = np.array(values, dtype=np.float64)
        if values.ndim != 2:
            raise ValueError(f"Raster values must be 2-D, got shape {values.shape}")
        if not cell_size > 0:
            raise ValueError(f"cell_size must be positive, got {cell_size}")
        self.values = values
        self.top_left = (float(top_left[0]), float(top_left[1]))
        self.cell_size = float(cell_size)

    @classmethod
    def filled(
        cls,
        side_length: int,
        top_left: Tuple[float, float],
        cell_size: float,
        fill: float = np.nan,
    ) -> "RasterGrid":
        return cls(np.full((int(side_length), int(side_length)), fill, dtype=np.float64), top_left, cell_size)

    @classmethod
    def like(cls, other: "RasterGrid", fill: float = np.nan) -> "RasterGrid":
        return cls(np.full(other.shape, fill, dtype=np.float64), other.top_left, other.cell_size)

    def __repr__(self) -> str:
        return f"RasterGrid(shape={self.shape}, top_left={self.top_left}, cell_size={self.cell_size})"

    @property
    def shape(self) -> Tuple[int, int]:
        return self.values.shape  # type: ignore[return-value]

    @property
    def side_length(self) -> int:
        return int(self.values.shape[0])

    def copy(self) -> "RasterGrid":
        return RasterGrid(self.values.copy(), self.top_left, self.cell_size)

    # ---------------------------------------------------------- coordinates

    def index_to_coord(self, row, col):
        """World coordinate of a cell; accepts scalars or arrays."""
        x = self.top_left[0] + np.asarray(col, dtype=np.float64) * self.cell_size
        y = self.top_left[1] - np.asarray(row, dtype=np.float64) * self.cell_size
        if np.ndim(x) == 0:
            return float(x), float(y)
        return x, y

    def coord_to_index(self, x, y):
        """Nearest cell index of a world coordinate; accepts scalars or arrays."""
        col = np.rint((np.asarray(x, dtype=np.float64) - self.top_left[0]) / self.cell_size).astype(np.int64)
        row = np.rint((self.top_left[1] - np.asarray(y, dtype=np.float64)) / self.cell_size).astype(np.int64)
        if np.ndim(col) == 0:
            return int(row), int(col)
        return row, col

    def world_coords(self) -> Tuple[np.ndarray, np.ndarray]:
        """``(x, y)`` meshes with the raster's shape."""
        rows, cols = np.indices(self.shape)
        return self.index_to_coord(rows, cols)

    # ------------------------------------------------------------ arithmetic

    def _check_aligned(self, other: "RasterGrid") -> None:
        if self.shape != other.shape:
            raise DimensionMismatchError(self.shape, other.shape)
        if not math.isclose(self.cell_size, other.cell_size):
            raise DimensionMismatchError((self.cell_size,), (other.cell_size,), what="cell size")

    def difference(self, other: "RasterGrid") -> "RasterGrid":
        """Cell-wise ``self - other`` as a new grid."""
        self._check_aligned(other)
        return RasterGrid(self.values - other.values, self.top_left, self.cell_size)

    def error(self, other: "RasterGrid", mask: Optional[np.ndarray] = None) -> float:
        """Mean squared difference over cells finite in both grids (and in ``mask``)."""
        self._check_aligned(other)
        sq = (self.values - other.values) ** 2
        valid = np.isfinite(sq)
        if mask is not None:
            valid &= mask
        if not valid.any():
            return 0.0
        return float(sq[valid].mean())

    def adjust(
        self,
        truth: "RasterGrid",
        interpolated: "RasterGrid",
        filter_half_size: int,
        amplitude: float,
    ) -> None:
        """Add ``amplitude`` times the box-averaged ``truth - interpolated`` to every cell.

        The averaging window is ``(2 * filter_half_size + 1)`` cells wide and is
        clamped at the grid edges, so edge cells average over fewer cells.
        NaN differences do not take part in the average.
        """
        self._check_aligned(truth)
        self._check_aligned(interpolated)
        diff = truth.difference(interpolated).values
        self.values += amplitude * _box_mean(diff, int(filter_half_size))

    def normalized(self) -> "RasterGrid":
        """Min-max scaled copy in ``[0, 1]``; constant grids map to zeros."""
        v = self.values
        finite = np.isfinite(v)
        out = np.full_like(v, np.nan)
        if finite.any():
            lo = float(v[finite].min())
            span = float(v[finite].max()) - lo
            out[finite] = (v[finite] - lo) / span if span > 0 else 0.0
        return RasterGrid(out, self.top_left, self.cell_size)

    # ------------------------------------------------------------- smoothing

    def smoothen(self, max_normal_diff_degrees: float, filter_size: int, iterations: int) -> None:
        """Feature-preserving normal-vector smoothing, in place.

        LiDAR DEM Smoothing and the Preservation of Drainage Features,
        J. B. Lindsay (2019).

        Normals are estimated with a Sobel-like 8-neighbour stencil, then
        averaged over a ``filter_size`` window where a neighbour's weight is
        ``(cos(angle) - cos(max_normal_diff))**2`` and zero once the angle
        between the two normals exceeds the threshold. Elevations are then
        rebuilt from the smoothed normals, ``iterations`` times, each pass
        starting from the previous pass's output.
        """
        if filter_size % 2 == 0:
            filter_size += 1
        filter_size = max(int(filter_size), 3)
        iterations = max(int(iterations), 1)
        max_normal_diff_degrees = float(np.clip(max_normal_diff_degrees, 0.0, 60.0))
        threshold = math.cos(math.radians(max_normal_diff_degrees))

        nx, ny = self._normals()
        snx, sny = _smooth_normals(nx, ny, filter_size, threshold)

        cs = self.cell_size
        # ring order: NE, E, SE, S, SW, W, NW, N
        ring = [(-1, 1), (0, 1), (1, 1), (1, 0), (1, -1), (0, -1), (-1, -1), (-1, 0)]
        offset_x = [-cs, -cs, -cs, 0.0, cs, cs, cs, 0.0]
        offset_y = [-cs, 0.0, cs, cs, cs, 0.0, -cs, -cs]

        weights: List[np.ndarray] = []
        shifted_normals: List[Tuple[np.ndarray, np.ndarray]] = []
        with np.errstate(invalid="ignore"):
            for dr, dc in ring:
                n_x = _shift_clamped(snx, dr, dc)
                n_y = _shift_clamped(sny, dr, dc)
                cos_angle = _cos_angle_between(snx, sny, n_x, n_y)
                w = np.where(cos_angle > threshold, (cos_angle - threshold) ** 2, 0.0)
                weights.append(w)
                shifted_normals.append((n_x, n_y))
        sum_weight = np.sum(weights, axis=0)
        update = sum_weight > np.finfo(np.float64).eps

        output = self.values.copy()
        for _ in range(iterations):
            z = np.zeros_like(output)
            for (dr, dc), w, (n_x, n_y), ox, oy in zip(ring, weights, shifted_normals, offset_x, offset_y):
                z_nb = _shift_clamped(output, dr, dc)
                contrib = -(n_x * ox + n_y * oy - z_nb) * w
                z += np.where(w > 0, contrib, 0.0)
            with np.errstate(invalid="ignore", divide="ignore"):
                output = np.where(update, z / np.where(update, sum_weight, 1.0), output)
        self.values = output

    def _normals(self) -> Tuple[np.ndarray, np.ndarray]:
        """Horizontal components of the surface normal ``(-dz/dx, -dz/dy, 1)``."""
        z = self.values
        ne = _shift_clamped(z, -1, 1)
        e = _shift_clamped(z, 0, 1)
        se = _shift_clamped(z, 1, 1)
        s = _shift_clamped(z, 1, 0)
        sw = _shift_clamped(z, 1, -1)
        w = _shift_clamped(z, 0, -1)
        nw = _shift_clamped(z, -1, -1)
        n = _shift_clamped(z, -1, 0)
        denom = self.cell_size * 8.0
        nx = -(se - sw + 2.0 * (e - w) + ne - nw) / denom
        ny = -(nw - sw + 2.0 * (n - s) + ne - se) / denom
        return nx, ny

    # ----------------------------------------------------------- extraction

    def marching_squares(self, level: float):
        """Iso-lines at ``level``; see :func:`lidar_contours.marching.trace_level`."""
        return trace_level(self, level)

    def border_control_points(self, per_side: int) -> Tuple[np.ndarray, np.ndarray]:
        """Samples along the four raster edges, corners included.

        Returns ``(xy, values)`` with non-finite samples dropped.
        """
        rows, cols = self.shape
        per_side = max(int(per_side), 2)
        r_idx = np.unique(np.rint(np.linspace(0, rows - 1, per_side)).astype(np.int64))
        c_idx = np.unique(np.rint(np.linspace(0, cols - 1, per_side)).astype(np.int64))
        cells = set()
        for c in c_idx:
            cells.add((0, int(c)))
            cells.add((rows - 1, int(c)))
        for r in r_idx:
            cells.add((int(r), 0))
            cells.add((int(r), cols - 1))
        ordered = sorted(cells)
        rr = np.array([p[0] for p in ordered], dtype=np.int64)
        cc = np.array([p[1] for p in ordered], dtype=np.int64)
        vals = self.values[rr, cc]
        keep = np.isfinite(vals)
        x, y = self.index_to_coord(rr[keep], cc[keep])
        return np.column_stack((x, y)), vals[keep]

    def hull_edge_control_points(self) -> Tuple[np.ndarray, np.ndarray]:
        """Finite cells with a NaN 4-neighbour, as ``(xy, values)``.

        Raster border cells only count when a NaN cell touches them from
        inside the grid.
        """
        finite = np.isfinite(self.values)
        touches_nan = np.zeros_like(finite)
        for dr, dc in ((-1, 0), (1, 0), (0, -1), (0, 1)):
            touches_nan |= ~_shift_clamped(finite, dr, dc)
        rr, cc = np.nonzero(finite & touches_nan)
        x, y = self.index_to_coord(rr, cc)
        return np.column_stack((np.atleast_1d(x), np.atleast_1d(y))), self.values[rr, cc]


def _shift_clamped(a: np.ndarray, dr: int, dc: int) -> np.ndarray:
    """``out[r, c] = a[clamp(r + dr), clamp(c + dc)]``."""
    rows, cols = a.shape
    r = np.clip(np.arange(rows) + dr, 0, rows - 1)
    c = np.clip(np.arange(cols) + dc, 0, cols - 1)
    return a[np.ix_(r, c)]


def _cos_angle_between(ax: np.ndarray, ay: np.ndarray, bx: np.ndarray, by: np.ndarray) -> np.ndarray:
    return (ax * bx + ay * by + 1.0) / np.sqrt((ax * ax + ay * ay + 1.0) * (bx * bx + by * by + 1.0))


def _smooth_normals(
    nx: np.ndarray, ny: np.ndarray, filter_size: int, threshold: float
) -> Tuple[np.ndarray, np.ndarray]:
    half = filter_size // 2
    sum_w = np.zeros_like(nx)
    acc_x = np.zeros_like(nx)
    acc_y = np.zeros_like(ny)
    with np.errstate(invalid="ignore"):
        for dr in range(-half, half + 1):
            for dc in range(-half, half + 1):
                n_x = _shift_clamped(nx, dr, dc)
                n_y = _shift_clamped(ny, dr, dc)
                cos_angle = _cos_angle_between(nx, ny, n_x, n_y)
                ok = cos_angle > threshold
                w = np.where(ok, (cos_angle - threshold) ** 2, 0.0)
                sum_w += w
                acc_x += np.where(ok, n_x * w, 0.0)
                acc_y += np.where(ok, n_y * w, 0.0)
    has_weight = sum_w > 0
    safe = np.where(has_weight, sum_w, 1.0)
    return np.where(has_weight, acc_x / safe, np.nan), np.where(has_weight, acc_y / safe, np.nan)


def _box_mean(values: np.ndarray, half: int) -> np.ndarray:
    """Edge-clamped box average of the finite entries, via summed-area tables."""
    finite = np.isfinite(values)
    filled = np.where(finite, values, 0.0)
    rows, cols = values.shape

    def integral(a: np.ndarray) -> np.ndarray:
        out = np.zeros((rows + 1, cols + 1), dtype=np.float64)
        out[1:, 1:] = a.cumsum(axis=0).cumsum(axis=1)
        return out

    sat = integral(filled)
    cnt = integral(finite.astype(np.float64))

    r = np.arange(rows)
    c = np.arange(cols)
    top = np.clip(r - half, 0, rows - 1)
    bottom = np.clip(r + half, 0, rows - 1) + 1
    left = np.clip(c - half, 0, cols - 1)
    right = np.clip(c + half, 0, cols - 1) + 1

    def window_sum(t: np.ndarray) -> np.ndarray:
        return (
            t[bottom[:, None], right[None, :]]
            - t[top[:, None], right[None, :]]
            - t[bottom[:, None], left[None, :]]
            + t[top[:, None], left[None, :]]
        )

    total = window_sum(sat)
    count = window_sum(cnt)
    return np.where(count > 0, total / np.where(count > 0, count, 1.0), 0.0)
