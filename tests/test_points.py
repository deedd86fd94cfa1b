import numpy as np
import pytest

from lidar_contours.errors import LidarContoursError, NoGroundPointsError
from lidar_contours.points import GROUND, WATER, Bounds, Point, PointSet, graham_scan


def _grid_points(n: int = 6, spacing: float = 2.0, z: float = 3.0) -> PointSet:
    xs, ys = np.meshgrid(np.arange(n) * spacing, np.arange(n) * spacing)
    return PointSet(xs.ravel(), ys.ravel(), np.full(xs.size, z))


def test_graham_scan_skips_interior_and_collinear_points():
    pts = np.array(
        [
            [0.0, 0.0],
            [2.0, 0.0],
            [2.0, 2.0],
            [0.0, 2.0],
            [1.0, 1.0],
            [1.0, 0.0],
            [2.0, 1.0],
        ]
    )
    hull = graham_scan(pts)
    assert hull.tolist() == [[0.0, 0.0], [2.0, 0.0], [2.0, 2.0], [0.0, 2.0]]


def test_graham_scan_is_counter_clockwise():
    rng = np.random.default_rng(3)
    hull = graham_scan(rng.random((200, 2)))
    x, y = hull[:, 0], hull[:, 1]
    area = 0.5 * (np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1)))
    assert area > 0


def test_convex_hull_without_ground_points_fails():
    ps = PointSet([0.0, 1.0, 0.0], [0.0, 0.0, 1.0], [1.0, 1.0, 1.0], classification=[WATER] * 3)
    with pytest.raises(NoGroundPointsError, match="no ground points"):
        ps.convex_hull()
    with pytest.raises(LidarContoursError):
        ps.bounded_convex_hull(Bounds(0, 0, 1, 1), 0.1)


def test_convex_hull_ignores_water_points():
    ps = PointSet(
        [0.0, 1.0, 0.0, 5.0],
        [0.0, 0.0, 1.0, 5.0],
        [1.0, 1.0, 1.0, 0.0],
        classification=[GROUND, GROUND, GROUND, WATER],
    )
    assert ps.convex_hull().tolist() == [[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]]


def test_bounded_convex_hull_snaps_to_target_and_closes():
    ps = PointSet(
        [0.1, 9.9, 9.9, 0.1, 5.0, 3.0],
        [0.1, 0.1, 9.9, 9.9, 5.0, 7.0],
        [1.0] * 6,
    )
    hull = ps.bounded_convex_hull(Bounds(0.0, 0.0, 10.0, 10.0), snap_epsilon=0.5)
    assert np.array_equal(hull[0], hull[-1])
    assert {tuple(p) for p in hull.tolist()} == {(0.0, 0.0), (10.0, 0.0), (10.0, 10.0), (0.0, 10.0)}


def test_bounded_convex_hull_does_not_mutate_points():
    ps = _grid_points()
    before = ps.x.copy()
    ps.bounded_convex_hull(Bounds(-1.0, -1.0, 11.0, 11.0), snap_epsilon=2.0)
    assert np.array_equal(ps.x, before)


def test_ghost_points_extrapolate_corner_elevation():
    ps = _grid_points(z=3.0)
    ps.bounds = Bounds(-1.0, -1.0, 11.0, 11.0)
    n = len(ps)
    ghosts = ps.add_ghost_points(k=8)

    assert len(ps) == n + 4
    assert {(g.x, g.y) for g in ghosts} == {(-1.0, 11.0), (-1.0, -1.0), (11.0, -1.0), (11.0, 11.0)}
    for g in ghosts:
        assert g.z == pytest.approx(3.0)
        assert g.classification == GROUND
        assert g.return_number == 1
        assert g.intensity == 0
    dist, _ = ps.nearest(np.array([[11.0, 11.0]]), 1)
    assert dist[0, 0] == pytest.approx(0.0)


def test_ghost_point_on_existing_point_copies_its_elevation():
    ps = PointSet([0.0, 1.0, 2.0], [0.0, 1.0, 2.0], [5.0, 6.0, 7.0], bounds=Bounds(0.0, 0.0, 2.0, 2.0))
    ghosts = ps.add_ghost_points(k=3)
    by_corner = {(g.x, g.y): g.z for g in ghosts}
    assert by_corner[(0.0, 0.0)] == 5.0
    assert by_corner[(2.0, 2.0)] == 7.0


def test_raster_bounds_stretch_to_tile_and_shift_half_cell():
    ps = PointSet([0.0, 8.0], [0.0, 6.0], [0.0, 1.0])
    b = ps.raster_bounds(tile_size=10.0, cell_size=0.5)
    assert b.min_x == pytest.approx(-0.75)
    assert b.max_x == pytest.approx(9.25)
    assert b.min_y == pytest.approx(-2.25)
    assert b.max_y == pytest.approx(7.75)
    assert b.top_left == pytest.approx((-0.75, 7.75))


def test_jitter_returns_new_set_within_amplitude():
    ps = _grid_points()
    jittered = ps.jitter(np.random.default_rng(0), amplitude=1e-3)
    assert jittered is not ps
    assert np.all(np.abs(jittered.x - ps.x) <= 1e-3)
    assert np.all(np.abs(jittered.y - ps.y) <= 1e-3)
    assert not np.array_equal(jittered.x, ps.x)
    assert np.array_equal(jittered.z, ps.z)


def test_from_points_and_fields():
    ps = PointSet.from_points([Point(0.0, 0.0, 1.0, intensity=7, return_number=2), Point(1.0, 0.0, 2.0)])
    assert len(ps) == 2
    assert ps[0] == Point(0.0, 0.0, 1.0, GROUND, 2, 7)
    assert ps.field("intensity").tolist() == [7.0, 0.0]
    assert ps.field("return_number").tolist() == [2.0, 1.0]
    with pytest.raises(ValueError, match="Unknown field"):
        ps.field("colour")


def test_add_rebuilds_index():
    ps = _grid_points()
    _ = ps.index
    ps.add([Point(100.0, 100.0, 0.0)])
    _, idx = ps.nearest(np.array([[99.0, 99.0]]), 1)
    assert idx[0, 0] == len(ps) - 1
