"""
Sibson natural-neighbour interpolation on a Delaunay triangulation.

Weights follow Watson's circumcircle decomposition. For every triangle
``(v0, v1, v2)`` (counter-clockwise) whose circumcircle strictly contains the
query ``q``, vertex ``vj`` receives the signed area of the triangle

    g(q, vj, vj+1), C, g(q, vj-1, vj)

where ``C`` is the triangle's circumcentre and ``g`` the circumcentre of the
three given points. Summed over the triangles around ``vj`` these pieces
telescope to the area ``q``'s new Voronoi cell takes from ``vj``.

Queries that coincide with a site return the site's value. Queries whose
weights are numerically unusable (``q`` on a line through two sites makes
``g`` run off to infinity) fall back to linear interpolation on the
containing triangle. Queries outside the convex hull of the sites are NaN.
"""

from __future__ import annotations

import warnings
from typing import Tuple

import numpy as np
from scipy.interpolate import LinearNDInterpolator
from scipy.spatial import Delaunay, cKDTree


def _circumcentres(a: np.ndarray, b: np.ndarray, c: np.ndarray) -> np.ndarray:
    """Circumcentres of triangles given as ``(n, 2)`` corner arrays."""
    bx = b[:, 0] - a[:, 0]
    by = b[:, 1] - a[:, 1]
    cx = c[:, 0] - a[:, 0]
    cy = c[:, 1] - a[:, 1]
    d = 2.0 * (bx * cy - by * cx)
    b2 = bx * bx + by * by
    c2 = cx * cx + cy * cy
    with np.errstate(divide="ignore", invalid="ignore"):
        ux = (cy * b2 - by * c2) / d
        uy = (bx * c2 - cx * b2) / d
    return np.column_stack((a[:, 0] + ux, a[:, 1] + uy))


def _signed_area(p: np.ndarray, q: np.ndarray, r: np.ndarray) -> np.ndarray:
    return 0.5 * ((q[:, 0] - p[:, 0]) * (r[:, 1] - p[:, 1]) - (q[:, 1] - p[:, 1]) * (r[:, 0] - p[:, 0]))


def unique_sites(points_xy: np.ndarray, values: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Drop repeated sites, keeping the first value seen for each."""
    points_xy = np.asarray(points_xy, dtype=np.float64).reshape(-1, 2)
    values = np.asarray(values, dtype=np.float64).ravel()
    _, first = np.unique(points_xy, axis=0, return_index=True)
    first = np.sort(first)
    return points_xy[first], values[first]


def can_triangulate(sites: np.ndarray) -> bool:
    """True when ``sites`` hold at least three non-collinear points."""
    sites = np.asarray(sites, dtype=np.float64).reshape(-1, 2)
    return sites.shape[0] >= 3 and bool(np.linalg.matrix_rank(sites - sites.mean(axis=0)) >= 2)


def natural_neighbor_interpolate(
    points_xy: np.ndarray,
    values: np.ndarray,
    query_xy: np.ndarray,
) -> np.ndarray:
    """Interpolate scattered ``values`` at ``query_xy``; returns an ``(m,)`` array."""
    sites, vals = unique_sites(points_xy, values)
    query_xy = np.asarray(query_xy, dtype=np.float64).reshape(-1, 2)
    out = np.full(query_xy.shape[0], np.nan)
    if query_xy.shape[0] == 0:
        return out

    if not can_triangulate(sites):
        raise ValueError("Natural-neighbour interpolation needs at least three non-collinear sites")

    tri = Delaunay(sites)
    inside = tri.find_simplex(query_xy) >= 0

    scale = float(np.ptp(sites, axis=0).max())
    dist, nearest = cKDTree(sites).query(query_xy, k=1)
    on_site = dist <= 1e-12 * scale
    out[on_site] = vals[nearest[on_site]]

    pending = np.flatnonzero(inside & ~on_site)
    if pending.size == 0:
        return out

    simplices = tri.simplices.copy()
    corners = sites[simplices]
    ccw = _signed_area(corners[:, 0], corners[:, 1], corners[:, 2]) > 0
    simplices[~ccw] = simplices[~ccw][:, [0, 2, 1]]
    corners = sites[simplices]
    centres = _circumcentres(corners[:, 0], corners[:, 1], corners[:, 2])
    radii = np.linalg.norm(corners[:, 0] - centres, axis=1)

    # every (triangle, query) pair whose circumcircle holds the query
    queries = query_xy[pending]
    hits = cKDTree(queries).query_ball_point(centres, r=radii)
    counts = np.fromiter((len(h) for h in hits), dtype=np.int64, count=len(hits))
    pair_tri = np.repeat(np.arange(len(hits)), counts)
    pair_q = np.fromiter((q for h in hits for q in h), dtype=np.int64, count=int(counts.sum()))

    q = queries[pair_q]
    d2 = np.sum((q - centres[pair_tri]) ** 2, axis=1)
    strict = d2 < radii[pair_tri] ** 2 * (1.0 - 1e-12)
    pair_tri = pair_tri[strict]
    pair_q = pair_q[strict]
    q = q[strict]

    n_queries = queries.shape[0]
    numerator = np.zeros(n_queries)
    denominator = np.zeros(n_queries)
    lo = np.full(n_queries, np.inf)
    hi = np.full(n_queries, -np.inf)
    tri_vertices = simplices[pair_tri]
    centre = centres[pair_tri]
    with np.errstate(invalid="ignore", over="ignore"):
        for j in range(3):
            vj = sites[tri_vertices[:, j]]
            v_next = sites[tri_vertices[:, (j + 1) % 3]]
            v_prev = sites[tri_vertices[:, (j - 1) % 3]]
            g_next = _circumcentres(q, vj, v_next)
            g_prev = _circumcentres(q, v_prev, vj)
            w = _signed_area(g_next, centre, g_prev)
            site_vals = vals[tri_vertices[:, j]]
            numerator += np.bincount(pair_q, weights=w * site_vals, minlength=n_queries)
            denominator += np.bincount(pair_q, weights=w, minlength=n_queries)
            np.minimum.at(lo, pair_q, site_vals)
            np.maximum.at(hi, pair_q, site_vals)

        result = numerator / denominator
    span = np.maximum(hi - lo, 0.0)
    tol = 1e-9 * np.maximum(span, np.abs(hi))
    good = np.isfinite(result) & (denominator != 0) & (result >= lo - tol) & (result <= hi + tol)
    out[pending[good]] = result[good]

    bad = pending[~good]
    if bad.size:
        warnings.warn(
            f"Natural-neighbour weights degenerate at {bad.size} queries; using linear interpolation",
            RuntimeWarning,
            stacklevel=2,
        )
        out[bad] = LinearNDInterpolator(tri, vals)(query_xy[bad])
    return out
