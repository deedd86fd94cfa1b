"""
Contour extraction and the iterative refinement loop.

Tracing a fine, regressed elevation raster directly gives faithful but
jagged contours; smoothing the raster first gives clean lines that drift
from the terrain. ``refine_contours`` searches between the two: it traces a
working copy of the raster, rebuilds a raster from the traced contours by
natural-neighbour interpolation, and nudges the working copy towards the
true surface until

    score = error + lambda * energy

stops improving. ``error`` is the mean squared difference between the true
raster and the rebuilt one, ``energy`` the summed bending energy of the
contours. Corrections follow a cooling schedule: wide, strong box-averaged
adjustments first, narrower and weaker ones as the budget runs out.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .contour import ContourSet
from .interpolate import hull_mask
from .marching import trace_level
from .natural_neighbor import can_triangulate, natural_neighbor_interpolate
from .params import Algorithm, ContourParams
from .raster import RasterGrid


@dataclass
class RefinementResult:
    """Contours plus the diagnostics of the run that produced them.

    ``error`` and ``energy`` are ``None`` when no refinement step was scored.
    ``converged`` is False only when the iteration budget ran out before a
    threshold stopped the loop.
    """

    contours: ContourSet
    error: Optional[float] = None
    energy: Optional[float] = None
    iterations: int = 0
    converged: bool = True
    scores: List[float] = field(default_factory=list)


def trace_levels(raster: RasterGrid, levels: Iterable[float]) -> ContourSet:
    contours = ContourSet()
    for level in levels:
        contours.extend(trace_level(raster, level))
    return contours


def elevation_range(raster: RasterGrid) -> Tuple[float, float]:
    finite = raster.values[np.isfinite(raster.values)]
    if finite.size == 0:
        raise ValueError("Raster holds no finite cells")
    return float(finite.min()), float(finite.max())


def cooling_schedule(iteration: int, budget: int, half_size_step: int = 30) -> Tuple[int, float]:
    """``(filter_half_size, amplitude)`` for one refinement step; both decay linearly."""
    remaining = budget - iteration
    return remaining * half_size_step, (remaining + 1) / (budget + 1)


def clip_mask(raster: RasterGrid, clip: Optional[np.ndarray]) -> np.ndarray:
    """Cells that are finite and, when ``clip`` is given, inside it."""
    mask = np.isfinite(raster.values)
    if clip is not None:
        x, y = raster.world_coords()
        xy = np.column_stack((x.ravel(), y.ravel()))
        inside = hull_mask(np.asarray(clip, dtype=np.float64), xy, tolerance=raster.cell_size * 1e-6)
        mask &= inside.reshape(raster.shape)
    return mask


def reconstruct_raster(
    contours: ContourSet,
    working: RasterGrid,
    mask: np.ndarray,
    control_points_per_side: int = 25,
) -> RasterGrid:
    """Rebuild a raster from contour vertices tagged with their level.

    Border samples of ``working`` and the finite cells along its NaN edge
    are added as control points so the triangulation covers every valid
    cell. Only ``mask`` cells are filled; the result stays all NaN when the
    sites cannot be triangulated.
    """
    site_xy = []
    site_z = []
    for c in contours:
        ring = c.ring()
        site_xy.append(ring)
        site_z.append(np.full(len(ring), c.level))
    for xy, z in (working.border_control_points(control_points_per_side), working.hull_edge_control_points()):
        site_xy.append(xy)
        site_z.append(z)

    out = RasterGrid.like(working)
    sites = np.vstack(site_xy)
    if not mask.any() or not can_triangulate(sites):
        return out
    x, y = working.world_coords()
    query = np.column_stack((x[mask], y[mask]))
    out.values[mask] = natural_neighbor_interpolate(sites, np.concatenate(site_z), query)
    return out


def refine_contours(
    true_raster: RasterGrid,
    z_range: Optional[Sequence[float]],
    params: ContourParams,
    clip: Optional[np.ndarray] = None,
    verbose: Optional[bool] = None,
) -> RefinementResult:
    """Iteratively adjust a copy of ``true_raster`` for smooth, faithful contours.

    The budget is ``params.smoothing_iterations``; with a budget of zero the
    contours of ``true_raster`` are returned unchanged.
    """
    verbose = params.verbose if verbose is None else verbose
    z_min, z_max = elevation_range(true_raster) if z_range is None else z_range
    levels = params.contour_levels(z_min, z_max)
    budget = int(params.smoothing_iterations)
    lam = params.regularization_lambda
    mask = clip_mask(true_raster, clip)

    working = true_raster.copy()
    scores: List[float] = []
    error: Optional[float] = None
    energy: Optional[float] = None
    converged = budget == 0
    previous = math.inf
    i = 0
    while True:
        contours = trace_levels(working, levels)
        if i >= budget:
            break

        interpolated = reconstruct_raster(contours, working, mask, params.control_points_per_side)
        error = true_raster.error(interpolated, mask)
        energy = contours.energy(1.0)
        score = error + lam * energy
        scores.append(score)
        if verbose:
            print(f"[contours] iteration: {i}, score: {score:.6g} (error {error:.6g}, energy {energy:.6g})", flush=True)

        if score <= params.min_threshold or abs(score - previous) <= params.convergence_threshold:
            converged = True
            break

        half_size, amplitude = cooling_schedule(i, budget, params.half_size_step)
        working.adjust(true_raster, interpolated, half_size, amplitude)
        previous = score
        i += 1

    if params.simplify_tolerance > 0:
        contours = contours.simplified(params.simplify_tolerance)
    return RefinementResult(contours, error, energy, i, converged, scores)


def extract_contours(
    raster: RasterGrid,
    z_range: Optional[Sequence[float]],
    params: ContourParams,
) -> ContourSet:
    """Trace ``raster`` directly, or once smoothed when the algorithm asks for it."""
    z_min, z_max = elevation_range(raster) if z_range is None else z_range
    source = raster
    if params.algorithm == Algorithm.NORMAL_FIELD_SMOOTHING:
        source = raster.copy()
        source.smoothen(
            params.max_normal_diff_degrees,
            params.smoothing_filter_size,
            max(1, params.smoothing_iterations),
        )
    contours = trace_levels(source, params.contour_levels(z_min, z_max))
    if params.simplify_tolerance > 0:
        contours = contours.simplified(params.simplify_tolerance)
    return contours


def generate_contours(
    raster: RasterGrid,
    z_range: Optional[Sequence[float]],
    params: ContourParams,
    clip: Optional[np.ndarray] = None,
) -> RefinementResult:
    """Run the configured algorithm on one tile's elevation raster."""
    if params.algorithm == Algorithm.NAIVE_ITERATIVE_REFINEMENT:
        return refine_contours(raster, z_range, params, clip)
    return RefinementResult(extract_contours(raster, z_range, params))
