import itertools
import random

import pytest

from autoleveler.autolevel.mesh import HeightMesh, Point3
from autoleveler.utils.exceptions import InsufficientProbeData


@pytest.fixture
def square():
    return [Point3(0, 0, 1.0), Point3(10, 0, 2.0), Point3(0, 10, 3.0), Point3(10, 10, 6.0)]


def test_build_rejects_zero_points():
    with pytest.raises(InsufficientProbeData):
        HeightMesh.build([])


def test_empty_mesh_queries_zero():
    assert HeightMesh().query(5, 5) == 0.0


def test_single_point_is_flat():
    mesh = HeightMesh.build([Point3(3, 4, 1.25)])
    assert mesh.query(-100, 200) == 1.25
    assert mesh.query(3, 4) == 1.25


def test_single_row_returns_first_point_z():
    mesh = HeightMesh.build([Point3(10, 0, 2.0), Point3(0, 0.0005, 1.0)])
    assert mesh.row_count() == 1
    assert mesh.query(7, 9) == 1.0


def test_corners_are_exact(square):
    mesh = HeightMesh.build(square)
    for pt in square:
        assert mesh.query(pt.x, pt.y) == pytest.approx(pt.z)


def test_centroid_is_mean_of_corners(square):
    mesh = HeightMesh.build(square)
    assert mesh.query(5, 5) == pytest.approx(sum(p.z for p in square) / 4)


def test_point_order_does_not_matter(square):
    reference = HeightMesh.build(square)
    probes = [(x * 1.7 - 3, y * 1.3 - 2) for x in range(10) for y in range(10)]
    for perm in itertools.permutations(square):
        mesh = HeightMesh.build(perm)
        for x, y in probes:
            assert mesh.query(x, y) == pytest.approx(reference.query(x, y))


def test_serpentine_order_matches_sorted_order():
    pts = []
    for row, y in enumerate((0, 5, 10)):
        xs = [0, 5, 10] if row % 2 == 0 else [10, 5, 0]
        pts.extend(Point3(x, y, x * 0.1 + y * 0.2) for x in xs)
    shuffled = list(pts)
    random.Random(4).shuffle(shuffled)
    a = HeightMesh.build(pts)
    b = HeightMesh.build(shuffled)
    assert a.rows == b.rows
    assert a.query(7.5, 2.5) == pytest.approx(0.75 + 0.5)


def test_rows_tolerate_small_y_jitter():
    pts = [Point3(0, 0.0004, 0), Point3(10, -0.0003, 1), Point3(0, 10, 2), Point3(10, 10.0002, 3)]
    mesh = HeightMesh.build(pts)
    assert mesh.row_count() == 2
    assert [p.x for p in mesh.rows[0]] == [0, 10]


def test_queries_clamp_to_edges(square):
    mesh = HeightMesh.build(square)
    assert mesh.query(-50, 5) == pytest.approx(mesh.query(0, 5))
    assert mesh.query(5, 80) == pytest.approx(mesh.query(5, 10))
    assert mesh.query(99, -99) == pytest.approx(mesh.query(10, 0))


def test_degenerate_column_uses_linear_interpolation():
    pts = [Point3(0, 0, 0), Point3(0, 10, 10)]
    mesh = HeightMesh.build(pts)
    assert mesh.query(0, 2.5) == pytest.approx(2.5)


def test_scenario_corner_lift():
    mesh = HeightMesh.build(
        [Point3(0, 0, 0), Point3(100, 0, 0), Point3(0, 100, 0), Point3(100, 100, 10)]
    )
    assert mesh.query(50, 50) == pytest.approx(2.5)


def test_scenario_raised_center():
    pts = [Point3(x, y, 20 if (x, y) == (50, 50) else 10) for y in (0, 50, 100) for x in (0, 50, 100)]
    mesh = HeightMesh.build(pts)
    assert mesh.query(50, 50) == pytest.approx(20)
    assert mesh.query(25, 50) == pytest.approx(15)
    assert mesh.query(50, 75) == pytest.approx(15)


def test_build_accepts_dicts_and_tuples():
    mesh = HeightMesh.build([{"x": 0, "y": 0, "z": 1}, (10, 0, 3), [0, 10, 1], (10, 10, 3)])
    assert mesh.point_count() == 4
    assert mesh.query(5, 5) == pytest.approx(2)


def test_stats(square):
    stats = HeightMesh.build(square).stats()
    assert stats.min_z == 1.0
    assert stats.max_z == 6.0
    assert stats.mean_z == pytest.approx(3.0)
    assert stats.span() == 5.0
