import numpy as np
import pytest

from meshpaths.intersection import (
    closest_cell,
    connected_line,
    find_cell,
    intersect_meshes,
    join_connected_lines,
    ray_intersections,
)
from meshpaths.mesh import TriangleMesh

SQUARE_POINTS = [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [0.0, 1.0, 0.0]]
SQUARE_FACES = [[0, 1, 2], [0, 2, 3]]
WALL_POINTS = [[0.5, -1.0, -1.0], [0.5, 2.0, -1.0], [0.5, 2.0, 1.0], [0.5, -1.0, 1.0]]
WALL_FACES = [[0, 1, 2], [0, 2, 3]]


def _square(z=0.0):
    pts = np.array(SQUARE_POINTS)
    pts[:, 2] = z
    return pts


def _line_points(count):
    return np.array([[float(i), 0.0, 0.0] for i in range(count)])


def test_intersection_points_lie_on_both_meshes():
    points, segments = intersect_meshes(SQUARE_POINTS, SQUARE_FACES, WALL_POINTS, WALL_FACES)
    assert len(segments) > 0
    assert np.allclose(points[:, 0], 0.5)
    assert np.allclose(points[:, 2], 0.0)


def test_intersection_spans_square_width():
    points, segments = intersect_meshes(SQUARE_POINTS, SQUARE_FACES, WALL_POINTS, WALL_FACES)
    assert points[:, 1].min() == pytest.approx(0.0)
    assert points[:, 1].max() == pytest.approx(1.0)
    total = sum(np.linalg.norm(points[a] - points[b]) for a, b in segments)
    assert total == pytest.approx(1.0)


def test_intersection_points_are_unique():
    points, _ = intersect_meshes(SQUARE_POINTS, SQUARE_FACES, WALL_POINTS, WALL_FACES)
    gaps = np.linalg.norm(points[:, None, :] - points[None, :, :], axis=2)
    np.fill_diagonal(gaps, np.inf)
    assert gaps.min() > 1e-6


def test_intersection_segments_are_consistently_oriented():
    points, segments = intersect_meshes(SQUARE_POINTS, SQUARE_FACES, WALL_POINTS, WALL_FACES)
    start = int(np.argmin(points[:, 1]))
    ids, length = connected_line(points, segments, [], start)
    assert sorted(ids) == list(range(len(points)))
    assert np.all(np.diff(points[ids, 1]) > 0.0)
    assert length == pytest.approx(1.0)


def test_parallel_meshes_do_not_intersect():
    points, segments = intersect_meshes(_square(0.0), SQUARE_FACES, _square(1.0), SQUARE_FACES)
    assert segments == []
    assert points.shape == (0, 3)


def test_intersect_rejects_bad_face_index():
    with pytest.raises(ValueError):
        intersect_meshes(SQUARE_POINTS, [[0, 1, 7]], WALL_POINTS, WALL_FACES)


def test_connected_line_follows_chain_forward():
    pts = _line_points(4)
    ids, length = connected_line(pts, [(0, 1), (1, 2), (2, 3)], [], 0)
    assert ids == [0, 1, 2, 3]
    assert length == pytest.approx(np.linalg.norm(pts[3] - pts[0]))


def test_connected_line_walks_back_from_middle():
    pts = _line_points(4)
    ids, length = connected_line(pts, [(0, 1), (1, 2), (2, 3)], [], 1)
    assert ids == [0, 1, 2, 3]
    assert length == pytest.approx(np.linalg.norm(pts[3] - pts[0]))


def test_connected_line_stops_at_used_point():
    pts = _line_points(4)
    ids, _ = connected_line(pts, [(0, 1), (1, 2), (2, 3)], [2], 0)
    assert ids == [0, 1, 2]


def test_connected_line_from_segment_end_is_single_point():
    pts = _line_points(2)
    ids, length = connected_line(pts, [(0, 1)], [], 1)
    assert ids == [1]
    assert length == 0.0


def test_connected_line_stops_when_all_points_taken():
    pts = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
    ids, _ = connected_line(pts, [(0, 1), (1, 2), (2, 0)], [], 0)
    assert ids == [0, 1, 2]


def test_join_appends_following_piece():
    pts = _line_points(6)
    joined = join_connected_lines(pts, [(0, 1), (1, 2), (3, 4), (4, 5)], 0.5)
    assert np.allclose(joined, pts)


def test_join_prepends_piece_before_start():
    pts = _line_points(6)
    joined = join_connected_lines(pts, [(0, 1), (3, 4), (4, 5)], 0.5)
    assert np.allclose(joined, pts[[0, 1, 3, 4, 5]])


def test_join_drops_short_pieces():
    pts = np.vstack([_line_points(3), [[10.0, 0.0, 0.0], [10.1, 0.0, 0.0]]])
    joined = join_connected_lines(pts, [(0, 1), (1, 2), (3, 4)], 0.5)
    assert np.allclose(joined, pts[:3])


def test_join_with_nothing_long_enough_is_empty():
    pts = _line_points(2)
    joined = join_connected_lines(pts, [(0, 1)], 5.0)
    assert joined.shape == (0, 3)


def test_ray_hits_square_once():
    mesh = TriangleMesh(SQUARE_POINTS, SQUARE_FACES)
    hits = ray_intersections(mesh, [0.25, 0.75, 1.0], [0.25, 0.75, -1.0], 0.001)
    assert hits.shape == (1, 3)
    assert np.allclose(hits[0], [0.25, 0.75, 0.0])


def test_ray_through_shared_edge_is_merged():
    mesh = TriangleMesh(SQUARE_POINTS, SQUARE_FACES)
    hits = ray_intersections(mesh, [0.5, 0.5, 1.0], [0.5, 0.5, -1.0], 0.001)
    assert hits.shape == (1, 3)
    assert np.allclose(hits[0], [0.5, 0.5, 0.0])


def test_ray_hits_are_sorted_from_source():
    pts = np.vstack([_square(0.0), _square(0.5)])
    faces = SQUARE_FACES + [[i + 4 for i in f] for f in SQUARE_FACES]
    mesh = TriangleMesh(pts, faces)
    hits = ray_intersections(mesh, [0.25, 0.75, 1.0], [0.25, 0.75, -1.0], 0.001)
    assert np.allclose(hits[:, 2], [0.5, 0.0])


def test_ray_missing_mesh_is_empty():
    mesh = TriangleMesh(SQUARE_POINTS, SQUARE_FACES)
    hits = ray_intersections(mesh, [5.0, 5.0, 1.0], [5.0, 5.0, -1.0], 0.001)
    assert hits.shape == (0, 3)


def test_ray_with_equal_ends_is_rejected():
    mesh = TriangleMesh(SQUARE_POINTS, SQUARE_FACES)
    with pytest.raises(ValueError):
        ray_intersections(mesh, [0.0, 0.0, 1.0], [0.0, 0.0, 1.0], 0.001)


def test_find_cell_inside_each_triangle():
    mesh = TriangleMesh(SQUARE_POINTS, SQUARE_FACES)
    assert find_cell(mesh, [0.75, 0.25, 0.0], 1e-6) == 0
    assert find_cell(mesh, [0.25, 0.75, 0.0], 1e-6) == 1


def test_find_cell_far_away_is_none():
    mesh = TriangleMesh(SQUARE_POINTS, SQUARE_FACES)
    assert find_cell(mesh, [0.25, 0.75, 3.0], 0.1) is None


def test_closest_cell_projects_onto_surface():
    mesh = TriangleMesh(SQUARE_POINTS, SQUARE_FACES)
    point, cell, distance = closest_cell(mesh, [0.25, 0.75, 2.0])
    assert np.allclose(point, [0.25, 0.75, 0.0])
    assert cell == 1
    assert distance == pytest.approx(2.0)


def test_closest_cell_outside_snaps_to_corner():
    mesh = TriangleMesh(SQUARE_POINTS, SQUARE_FACES)
    point, _, distance = closest_cell(mesh, [2.0, 2.0, 0.0])
    assert np.allclose(point, SQUARE_POINTS[2])
    assert distance == pytest.approx(np.linalg.norm(np.array([2.0, 2.0, 0.0]) - SQUARE_POINTS[2]))


def test_closest_cell_of_empty_mesh_raises():
    mesh = TriangleMesh(SQUARE_POINTS, [])
    with pytest.raises(ValueError):
        closest_cell(mesh, [0.0, 0.0, 0.0])