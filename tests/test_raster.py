import numpy as np
import pytest

from lidar_contours.errors import DimensionMismatchError
from lidar_contours.raster import RasterGrid


def _random_grid(n: int = 9, seed: int = 0) -> RasterGrid:
    rng = np.random.default_rng(seed)
    return RasterGrid(rng.normal(100.0, 5.0, size=(n, n)), (500.0, 800.0), 0.5)


def test_index_coordinate_round_trip():
    grid = RasterGrid.filled(7, (123.25, 456.75), 0.5)
    for row in range(7):
        for col in range(7):
            assert grid.coord_to_index(*grid.index_to_coord(row, col)) == (row, col)


def test_index_to_coord_orientation():
    grid = RasterGrid.filled(4, (100.0, 200.0), 0.5)
    assert grid.index_to_coord(2, 3) == (101.5, 199.0)
    assert grid.coord_to_index(101.5, 199.0) == (2, 3)
    x, y = grid.world_coords()
    assert x[0, 3] == 101.5
    assert y[2, 0] == 199.0


def test_difference_requires_equal_shapes():
    a = RasterGrid.filled(4, (0.0, 0.0), 1.0, fill=1.0)
    b = RasterGrid.filled(5, (0.0, 0.0), 1.0, fill=1.0)
    with pytest.raises(DimensionMismatchError):
        a.difference(b)
    with pytest.raises(ValueError, match="mismatch"):
        a.adjust(b, b, 1, 1.0)
    with pytest.raises(DimensionMismatchError):
        a.error(b)


def test_difference_is_cellwise():
    a = RasterGrid(np.arange(4.0).reshape(2, 2), (0.0, 1.0), 1.0)
    b = RasterGrid(np.ones((2, 2)), (0.0, 1.0), 1.0)
    assert a.difference(b).values.tolist() == [[-1.0, 0.0], [1.0, 2.0]]


def test_error_is_mean_squared_difference_over_finite_cells():
    a = RasterGrid(np.zeros((2, 2)), (0.0, 1.0), 1.0)
    b = RasterGrid(np.array([[1.0, 3.0], [np.nan, 1.0]]), (0.0, 1.0), 1.0)
    assert a.error(b) == pytest.approx((1.0 + 9.0 + 1.0) / 3.0)
    mask = np.array([[True, False], [True, True]])
    assert a.error(b, mask) == pytest.approx(1.0)


def test_adjust_with_identical_truth_and_interpolation_is_identity():
    a = _random_grid()
    before = a.values.copy()
    a.adjust(a, a, 3, 1.0)
    assert np.array_equal(a.values, before)

    b = a.copy()
    a.adjust(a, b, 2, 1.0)
    assert np.array_equal(a.values, before)


def test_adjust_uses_edge_clamped_box_average():
    working = RasterGrid(np.zeros((5, 5)), (0.0, 5.0), 1.0)
    interpolated = RasterGrid(np.zeros((5, 5)), (0.0, 5.0), 1.0)

    centre = np.zeros((5, 5))
    centre[2, 2] = 9.0
    working.adjust(RasterGrid(centre, (0.0, 5.0), 1.0), interpolated, 1, 1.0)
    assert working.values[1:4, 1:4] == pytest.approx(np.ones((3, 3)))
    assert working.values[0, 0] == 0.0

    corner = np.zeros((5, 5))
    corner[0, 0] = 9.0
    working = RasterGrid(np.zeros((5, 5)), (0.0, 5.0), 1.0)
    working.adjust(RasterGrid(corner, (0.0, 5.0), 1.0), interpolated, 1, 0.5)
    # the corner window is clamped to 2x2 cells
    assert working.values[0, 0] == pytest.approx(0.5 * 9.0 / 4.0)
    assert working.values[1, 1] == pytest.approx(0.5 * 9.0 / 9.0)
    assert working.values[2, 2] == 0.0


def test_smoothen_with_zero_threshold_changes_nothing():
    grid = _random_grid(12, seed=3)
    before = grid.values.copy()
    grid.smoothen(0.0, 5, 3)
    assert np.array_equal(grid.values, before)


def test_smoothen_keeps_a_plane_in_the_interior():
    n = 12
    rows, cols = np.indices((n, n))
    cs = 0.5
    x = cols * cs
    y = -rows * cs
    plane = 0.4 * x - 0.3 * y + 50.0
    grid = RasterGrid(plane, (0.0, 0.0), cs)
    grid.smoothen(15.0, 3, 1)
    assert np.allclose(grid.values[3:-3, 3:-3], plane[3:-3, 3:-3], atol=1e-9)


def test_smoothen_flattens_noise():
    rng = np.random.default_rng(2)
    noise = rng.normal(0.0, 0.05, size=(20, 20))
    grid = RasterGrid(10.0 + noise, (0.0, 0.0), 1.0)
    grid.smoothen(30.0, 5, 2)
    assert np.std(grid.values[4:-4, 4:-4]) < np.std(noise[4:-4, 4:-4])


def test_smoothen_parameters_are_forced_into_range():
    grid = _random_grid(8, seed=5)
    # even filter, zero iterations and an oversized angle must not fail
    grid.smoothen(120.0, 4, 0)
    assert np.isfinite(grid.values).all()


def test_normalized():
    grid = RasterGrid(np.array([[0.0, 5.0], [10.0, np.nan]]), (0.0, 1.0), 1.0)
    out = grid.normalized().values
    assert out[0].tolist() == [0.0, 0.5]
    assert out[1, 0] == 1.0
    assert np.isnan(out[1, 1])
    flat = RasterGrid(np.full((2, 2), 3.0), (0.0, 1.0), 1.0).normalized()
    assert np.all(flat.values == 0.0)


def test_border_control_points():
    values = np.arange(25.0).reshape(5, 5)
    grid = RasterGrid(values, (0.0, 4.0), 1.0)
    xy, z = grid.border_control_points(3)
    assert len(z) == 8
    for (x, y), v in zip(xy, z):
        row, col = grid.coord_to_index(x, y)
        assert row in (0, 2, 4) and col in (0, 2, 4)
        assert (row, col) != (2, 2)
        assert values[row, col] == v


def test_hull_edge_control_points_ring_the_finite_block():
    values = np.full((5, 5), np.nan)
    values[1:4, 1:4] = np.arange(9.0).reshape(3, 3)
    grid = RasterGrid(values, (0.0, 4.0), 1.0)
    xy, z = grid.hull_edge_control_points()
    assert xy.shape == (8, 2)
    cells = {grid.coord_to_index(x, y) for x, y in xy}
    assert (2, 2) not in cells
    assert all(1 <= r <= 3 and 1 <= c <= 3 for r, c in cells)
    assert sorted(z.tolist()) == [0.0, 1.0, 2.0, 3.0, 5.0, 6.0, 7.0, 8.0]


def test_fully_finite_grid_has_no_hull_edge():
    xy, z = _random_grid(6).hull_edge_control_points()
    assert xy.shape == (0, 2)
    assert z.shape == (0,)


def test_copy_is_independent():
    grid = _random_grid()
    dup = grid.copy()
    dup.values[0, 0] = -1.0
    assert grid.values[0, 0] != -1.0


def test_values_must_be_two_dimensional():
    with pytest.raises(ValueError):
        RasterGrid(np.zeros(4), (0.0, 0.0), 1.0)
