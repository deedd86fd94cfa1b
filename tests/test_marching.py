import numpy as np
import pytest

from lidar_contours.marching import trace_level
from lidar_contours.raster import RasterGrid


def _radial(n: int, sign: float) -> RasterGrid:
    half = n // 2
    rows, cols = np.indices((n, n))
    x = cols - half
    y = half - rows
    return RasterGrid(sign * (x * x + y * y).astype(float), (-float(half), float(half)), 1.0)


def _endpoints(contours):
    return sorted(
        (tuple(np.round(c.vertices[0], 6)), tuple(np.round(c.vertices[-1], 6))) for c in contours
    )


def test_single_crossing_gives_one_open_two_vertex_contour():
    grid = RasterGrid([[1.0, 1.0], [0.0, 0.0]], (0.0, 1.0), 1.0)
    contours = grid.marching_squares(0.5)
    assert len(contours) == 1
    (c,) = contours
    assert not c.closed
    assert c.level == 0.5
    # left-edge midpoint to right-edge midpoint, higher ground on the left
    assert c.vertices.tolist() == [[0.0, 0.5], [1.0, 0.5]]


def test_uniform_grid_has_no_contours():
    grid = RasterGrid(np.ones((4, 4)), (0.0, 3.0), 1.0)
    assert trace_level(grid, 0.5) == []
    assert trace_level(grid, 1.0) == []


def test_bowl_gives_one_closed_clockwise_ring():
    grid = _radial(21, 1.0)
    contours = trace_level(grid, 30.0)
    assert len(contours) == 1
    (ring,) = contours
    assert ring.closed
    assert np.array_equal(ring.vertices[0], ring.vertices[-1])
    # higher ground outside, so the ring runs clockwise
    area = ring.signed_area()
    assert area < 0
    assert abs(area) == pytest.approx(np.pi * 30.0, rel=0.05)
    assert len(np.unique(ring.vertices[:-1], axis=0)) == len(ring) - 1


def test_hill_gives_counter_clockwise_ring():
    grid = _radial(21, -1.0)
    contours = trace_level(grid, -30.0)
    assert len(contours) == 1
    assert contours[0].closed
    assert contours[0].signed_area() > 0


def test_two_hills_give_two_rings():
    n = 31
    rows, cols = np.indices((n, n))
    z = np.exp(-((cols - 8) ** 2 + (rows - 15) ** 2) / 20.0) + np.exp(-((cols - 22) ** 2 + (rows - 15) ** 2) / 20.0)
    grid = RasterGrid(z, (0.0, float(n - 1)), 1.0)
    contours = trace_level(grid, 0.5)
    assert len(contours) == 2
    assert all(c.closed and c.signed_area() > 0 for c in contours)


def test_nan_cells_are_skipped_and_break_the_ring():
    grid = _radial(21, -1.0)
    # node at world (6, 0), just outside the -30 ring
    grid.values[10, 16] = np.nan
    contours = trace_level(grid, -30.0)
    assert len(contours) == 1
    assert not contours[0].closed
    for x, y in contours[0].vertices:
        assert not (5.0 < x < 7.0 and -1.0 < y < 1.0)


def test_open_contour_on_a_plane_runs_boundary_to_boundary():
    rows, cols = np.indices((10, 10))
    grid = RasterGrid(cols.astype(float), (0.0, 9.0), 1.0)
    contours = trace_level(grid, 4.5)
    assert len(contours) == 1
    (c,) = contours
    assert not c.closed
    assert len(c) == 10
    assert np.all(c.vertices[:, 0] == 4.5)
    # east is higher, so travel is southwards
    assert c.vertices[0, 1] == 9.0
    assert c.vertices[-1, 1] == 0.0
    assert np.all(np.diff(c.vertices[:, 1]) < 0)


def test_saddle_follows_the_diagonal_farther_from_the_level():
    # corners TL=1, TR=0, BR=1, BL=0.2: the high diagonal dominates
    grid = RasterGrid([[1.0, 0.0], [0.2, 1.0]], (0.0, 1.0), 1.0)
    contours = trace_level(grid, 0.5)
    assert _endpoints(contours) == sorted(
        [
            ((0.0, 0.375), (0.5, 1.0)),
            ((1.0, 0.5), (0.375, 0.0)),
        ]
    )


def test_saddle_tie_connects_the_other_way():
    grid = RasterGrid([[1.0, 0.0], [0.0, 1.0]], (0.0, 1.0), 1.0)
    contours = trace_level(grid, 0.5)
    assert _endpoints(contours) == sorted(
        [
            ((1.0, 0.5), (0.5, 1.0)),
            ((0.0, 0.5), (0.5, 0.0)),
        ]
    )


def test_corner_on_level_counts_as_above():
    grid = RasterGrid([[1.0, 1.0], [0.5, 0.0]], (0.0, 1.0), 1.0)
    (c,) = trace_level(grid, 0.5)
    # bottom-left equals the level, so the line starts on that corner
    assert c.vertices[0].tolist() == [0.0, 0.0]
    assert c.vertices[-1].tolist() == [1.0, 0.5]
