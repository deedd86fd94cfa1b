"""
Locally regressed quadratic surface interpolation.

For a query location the ``k`` nearest points are standardised per axis and
a quadratic ``1, x, y, x^2, y^2, xy`` is fitted with a ridge term. The fit
yields the field value at the query and the magnitude of its gradient.

``interpolate`` handles one query with plain Python floats; ``compute_rasters``
does the same arithmetic for whole tiles in numpy chunks.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Sequence, Tuple

import numpy as np
from matplotlib.path import Path

from .errors import InsufficientPointsError
from .linalg import inverse_spd6_batched, solve_spd6
from .points import FIELDS, PointSet
from .raster import RasterGrid

# below this standard deviation a neighbourhood is treated as flat
FLAT_STD = 0.01


def interpolate(
    points: PointSet,
    field: str,
    neighbors: Sequence[int],
    query: Tuple[float, float],
    ridge_smoothing: float = 5.0,
) -> Tuple[float, float]:
    """Return ``(value, gradient_magnitude)`` of ``field`` at ``query``."""
    idx = np.asarray(neighbors, dtype=np.int64)
    values = points.field(field)[idx]
    xs = points.x[idx]
    ys = points.y[idx]

    mean_v = float(values.mean())
    std_v = float(values.std())
    if std_v < FLAT_STD:
        return mean_v, 0.0

    mean_x, std_x = float(xs.mean()), _nonzero(float(xs.std()))
    mean_y, std_y = float(ys.mean()), _nonzero(float(ys.std()))

    normal = [[0.0] * 6 for _ in range(6)]
    rhs = [0.0] * 6
    for px, py, pv in zip(xs, ys, values):
        u = (float(px) - mean_x) / std_x
        w = (float(py) - mean_y) / std_y
        row = (1.0, u, w, u * u, w * w, u * w)
        t = (float(pv) - mean_v) / std_v
        for i in range(6):
            rhs[i] += row[i] * t
            for j in range(6):
                normal[i][j] += row[i] * row[j]
    for i in range(6):
        normal[i][i] += ridge_smoothing

    beta = solve_spd6(normal, rhs)

    u = (query[0] - mean_x) / std_x
    w = (query[1] - mean_y) / std_y
    value = beta[0] + beta[1] * u + beta[2] * w + beta[3] * u * u + beta[4] * w * w + beta[5] * u * w
    d_du = beta[1] + 2.0 * beta[3] * u + beta[5] * w
    d_dw = beta[2] + 2.0 * beta[4] * w + beta[5] * u

    grad_x = d_du * std_v / std_x
    grad_y = d_dw * std_v / std_y
    return value * std_v + mean_v, float(np.hypot(grad_x, grad_y))


def interpolate_batch(
    points: PointSet,
    field: str,
    neighbor_idx: np.ndarray,
    query_xy: np.ndarray,
    ridge_smoothing: float = 5.0,
) -> Tuple[np.ndarray, np.ndarray]:
    """Vectorised :func:`interpolate` for ``(m, k)`` neighbour indices and ``(m, 2)`` queries."""
    neighbor_idx = np.asarray(neighbor_idx, dtype=np.int64)
    query_xy = np.asarray(query_xy, dtype=np.float64)
    values = points.field(field)[neighbor_idx]
    xs = points.x[neighbor_idx]
    ys = points.y[neighbor_idx]

    mean_v = values.mean(axis=1)
    std_v = values.std(axis=1)
    flat = std_v < FLAT_STD
    safe_v = np.where(flat, 1.0, std_v)

    mean_x = xs.mean(axis=1)
    mean_y = ys.mean(axis=1)
    std_x = _nonzero_array(xs.std(axis=1))
    std_y = _nonzero_array(ys.std(axis=1))

    u = (xs - mean_x[:, None]) / std_x[:, None]
    w = (ys - mean_y[:, None]) / std_y[:, None]
    design = np.stack([np.ones_like(u), u, w, u * u, w * w, u * w], axis=-1)
    target = (values - mean_v[:, None]) / safe_v[:, None]

    normal = np.einsum("mki,mkj->mij", design, design)
    normal += ridge_smoothing * np.eye(6)
    rhs = np.einsum("mki,mk->mi", design, target)
    beta = np.einsum("mij,mj->mi", inverse_spd6_batched(normal), rhs)

    qu = (query_xy[:, 0] - mean_x) / std_x
    qw = (query_xy[:, 1] - mean_y) / std_y
    basis = np.stack([np.ones_like(qu), qu, qw, qu * qu, qw * qw, qu * qw], axis=-1)
    value = np.einsum("mi,mi->m", basis, beta) * safe_v + mean_v
    d_du = beta[:, 1] + 2.0 * beta[:, 3] * qu + beta[:, 5] * qw
    d_dw = beta[:, 2] + 2.0 * beta[:, 4] * qw + beta[:, 5] * qu
    gradient = np.hypot(d_du * safe_v / std_x, d_dw * safe_v / std_y)

    value = np.where(flat, mean_v, value)
    gradient = np.where(flat, 0.0, gradient)
    return value, gradient


@dataclass
class TileRasters:
    """Interpolated field rasters of one tile and their gradient magnitudes."""

    elevation: RasterGrid
    elevation_gradient: RasterGrid
    intensity: Optional[RasterGrid] = None
    intensity_gradient: Optional[RasterGrid] = None
    return_number: Optional[RasterGrid] = None
    return_number_gradient: Optional[RasterGrid] = None

    def as_dict(self) -> Dict[str, RasterGrid]:
        out = {}
        for name in FIELDS:
            grid = getattr(self, name)
            if grid is not None:
                out[name] = grid
                out[f"{name}_gradient"] = getattr(self, f"{name}_gradient")
        return out


def hull_mask(hull: np.ndarray, xy: np.ndarray, tolerance: float) -> np.ndarray:
    """Boolean mask of ``xy`` rows inside or on the closed polygon ``hull``."""
    path = Path(np.asarray(hull, dtype=np.float64))
    # the sign of radius that grows the path depends on its orientation
    grown = path.contains_points(xy, radius=tolerance)
    shrunk = path.contains_points(xy, radius=-tolerance)
    return grown | shrunk


def compute_rasters(
    points: PointSet,
    hull: np.ndarray,
    top_left: Tuple[float, float],
    side_length: int,
    cell_size: float,
    num_neighbors: int = 32,
    ridge_smoothing: float = 5.0,
    fields: Iterable[str] = FIELDS,
    chunk_size: int = 65536,
    verbose: bool = False,
) -> TileRasters:
    """Interpolate every requested field on a ``side_length`` square grid.

    Only cells whose centre lies inside ``hull`` are filled; the rest stay
    NaN. Work is split into chunks of ``chunk_size`` cells so memory stays
    bounded on large tiles.
    """
    fields = tuple(fields)
    if "elevation" not in fields:
        fields = ("elevation",) + fields
    for name in fields:
        if name not in FIELDS:
            raise ValueError(f"Unknown field {name!r}; expected one of {FIELDS}")
    if len(points) < 6:
        raise InsufficientPointsError(len(points))

    template = RasterGrid.filled(side_length, top_left, cell_size)
    gx, gy = template.world_coords()
    xy = np.column_stack((gx.ravel(), gy.ravel()))
    inside = hull_mask(hull, xy, tolerance=cell_size * 1e-6)
    cells = np.flatnonzero(inside)

    flat_out = {name: np.full(xy.shape[0], np.nan) for name in fields}
    flat_grad = {name: np.full(xy.shape[0], np.nan) for name in fields}
    k = min(int(num_neighbors), len(points))
    chunk_size = max(int(chunk_size), 1)

    for start in range(0, cells.size, chunk_size):
        chunk = cells[start : start + chunk_size]
        query = xy[chunk]
        _, idx = points.nearest(query, k)
        for name in fields:
            value, gradient = interpolate_batch(points, name, idx, query, ridge_smoothing)
            flat_out[name][chunk] = value
            flat_grad[name][chunk] = gradient
        if verbose:
            done = min(start + chunk_size, cells.size)
            print(f"[contours] interpolated {done}/{cells.size} cells", flush=True)

    shape = template.shape
    result: Dict[str, RasterGrid] = {}
    for name in fields:
        result[name] = RasterGrid(flat_out[name].reshape(shape), top_left, cell_size)
        result[f"{name}_gradient"] = RasterGrid(flat_grad[name].reshape(shape), top_left, cell_size)
    return TileRasters(**result)


def _nonzero(std: float) -> float:
    return std if std > 0.0 else 1.0


def _nonzero_array(std: np.ndarray) -> np.ndarray:
    return np.where(std > 0.0, std, 1.0)
