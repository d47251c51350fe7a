import numpy as np
import pytest

from meshpaths.mesh import TriangleMesh, oriented_bounding_box

SQUARE_POINTS = [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [0.0, 1.0, 0.0]]
SQUARE_FACES = [[0, 1, 2], [0, 2, 3]]


@pytest.fixture
def square():
    return TriangleMesh(SQUARE_POINTS, SQUARE_FACES)


def test_bounds(square):
    assert square.bounds() == (0.0, 1.0, 0.0, 1.0, 0.0, 0.0)


def test_with_normals_points_up(square):
    mesh = square.with_normals()
    np.testing.assert_allclose(mesh.cell_normals, [[0.0, 0.0, 1.0]] * 2)
    np.testing.assert_allclose(mesh.point_normals, [[0.0, 0.0, 1.0]] * 4)
    assert square.point_normals is None


def test_with_normals_keeps_given_normals():
    given = [[0.0, 0.0, -1.0]] * 2
    mesh = TriangleMesh(SQUARE_POINTS, SQUARE_FACES, cell_normals=given).with_normals()
    np.testing.assert_allclose(mesh.cell_normals, given)


def test_center_of_mass_is_mean(square):
    np.testing.assert_allclose(square.center_of_mass(), np.mean(SQUARE_POINTS, axis=0))


def test_cell_centroid_data(square):
    center, normal, area = square.cell_centroid_data(0)
    np.testing.assert_allclose(center, np.mean([SQUARE_POINTS[i] for i in SQUARE_FACES[0]], axis=0))
    np.testing.assert_allclose(np.abs(normal), [0.0, 0.0, 1.0])
    assert area == pytest.approx(0.5)


def test_areas_sum_to_square(square):
    total = sum(square.cell_centroid_data(i)[2] for i in range(len(SQUARE_FACES)))
    assert total == pytest.approx(1.0)


def test_invalid_cell_raises(square):
    with pytest.raises(IndexError):
        square.cell_centroid_data(len(SQUARE_FACES))


def test_face_with_missing_point_raises():
    with pytest.raises(ValueError):
        TriangleMesh(SQUARE_POINTS, [[0, 1, 9]])


def test_non_triangle_faces_raise():
    with pytest.raises(ValueError):
        TriangleMesh(SQUARE_POINTS, [[0, 1, 2, 3]])


def test_wrong_normal_count_raises():
    with pytest.raises(ValueError):
        TriangleMesh(SQUARE_POINTS, SQUARE_FACES, point_normals=[[0.0, 0.0, 1.0]])


def test_oriented_box_of_rectangle():
    length, width = 4.0, 1.0
    pts = np.array([[x, y, 0.0] for x in np.linspace(0, length, 9) for y in np.linspace(0, width, 3)])
    corner, max_axis, mid_axis, min_axis, sizes = oriented_bounding_box(pts)
    assert np.linalg.norm(max_axis) == pytest.approx(length)
    assert np.linalg.norm(mid_axis) == pytest.approx(width)
    assert np.linalg.norm(min_axis) == pytest.approx(0.0, abs=1e-9)
    assert sizes[0] >= sizes[1] >= sizes[2]
    far = corner + max_axis + mid_axis + min_axis
    found = sorted([tuple(np.round(corner, 9)), tuple(np.round(far, 9))])
    expected_pairs = [
        sorted([(0.0, 0.0, 0.0), (length, width, 0.0)]),
        sorted([(0.0, width, 0.0), (length, 0.0, 0.0)]),
    ]
    assert [tuple(abs(c) + 0.0 for c in p) for p in found] in [
        [tuple(abs(c) + 0.0 for c in p) for p in pair] for pair in expected_pairs
    ]


def test_oriented_box_contains_points():
    rng = np.random.default_rng(3)
    pts = rng.normal(size=(50, 3)) * [3.0, 1.0, 0.2]
    corner, max_axis, mid_axis, min_axis, _ = oriented_bounding_box(pts)
    for axis in (max_axis, mid_axis, min_axis):
        length_sq = float(axis @ axis)
        if length_sq == 0.0:
            continue
        t = (pts - corner) @ axis / length_sq
        assert t.min() >= -1e-9 and t.max() <= 1 + 1e-9


def test_oriented_box_of_nothing_raises():
    with pytest.raises(ValueError):
        oriented_bounding_box(np.zeros((0, 3)))