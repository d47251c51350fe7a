import numpy as np
import pytest

from meshpaths.utilities import (
    ToolPathError,
    create_tool_path_segment,
    flip_point_order,
    to_rotation_matrix,
    to_tool_paths_data,
)

LINE = [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [2.0, 0.0, 0.0]]
UP = [[0.0, 0.0, 1.0]] * 3


def _bent_path():
    pts = [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1.0, 1.0, 0.5], [2.0, 1.5, 0.5]]
    normals = [[0.0, 0.0, 1.0], [0.0, 0.3, 1.0], [0.1, 0.0, 1.0], [0.0, 0.0, 1.0]]
    first = create_tool_path_segment(pts, normals)
    second = create_tool_path_segment(pts[::-1], normals[::-1])
    return [first, second]


def test_rotation_matrix_columns_are_axes():
    vx, vy, vz = np.array([0.0, 1.0, 0.0]), np.array([-1.0, 0.0, 0.0]), np.array([0.0, 0.0, 1.0])
    rot = to_rotation_matrix(vx, vy, vz)
    np.testing.assert_allclose(rot[:, 0], vx)
    np.testing.assert_allclose(rot[:, 1], vy)
    np.testing.assert_allclose(rot[:, 2], vz)


def test_straight_line_gives_identity_orientation():
    segment = create_tool_path_segment(LINE, UP)
    assert len(segment) == len(LINE)
    for pose, point in zip(segment, LINE):
        np.testing.assert_allclose(pose[:3, 3], point)
        np.testing.assert_allclose(pose[:3, :3], np.eye(3), atol=1e-12)


def test_poses_are_proper_rotations():
    for segment in _bent_path():
        for pose in segment:
            rot = pose[:3, :3]
            np.testing.assert_allclose(rot.T @ rot, np.eye(3), atol=1e-9)
            assert np.linalg.det(rot) == pytest.approx(1.0)


def test_last_pose_keeps_previous_orientation():
    segment = _bent_path()[0]
    np.testing.assert_allclose(segment[-1][:3, :3], segment[-2][:3, :3])


def test_indices_select_points_in_order():
    segment = create_tool_path_segment(LINE, UP, [2, 0])
    assert len(segment) == 2
    np.testing.assert_allclose(segment[0][:3, 3], LINE[2])
    np.testing.assert_allclose(segment[1][:3, 3], LINE[0])
    travel = np.subtract(LINE[0], LINE[2])
    assert np.dot(segment[0][:3, 0], travel) > 0


def test_index_out_of_range_raises():
    with pytest.raises(ToolPathError):
        create_tool_path_segment(LINE, UP, [0, 5])


def test_negative_index_raises():
    with pytest.raises(ToolPathError):
        create_tool_path_segment(LINE, UP, [-1, 0])


def test_single_point_raises():
    with pytest.raises(ToolPathError):
        create_tool_path_segment(LINE[:1], UP[:1])


def test_mismatched_normals_raise():
    with pytest.raises(ValueError):
        create_tool_path_segment(LINE, UP[:2])


def test_flip_twice_restores_path():
    path = _bent_path()
    restored = flip_point_order(flip_point_order(path))
    for seg_a, seg_b in zip(path, restored):
        assert len(seg_a) == len(seg_b)
        for a, b in zip(seg_a, seg_b):
            np.testing.assert_allclose(a, b, atol=1e-12)


def test_flip_reverses_and_turns_poses():
    path = _bent_path()
    flipped = flip_point_order(path)
    original = path[-1][-1]
    turned = flipped[0][0]
    np.testing.assert_allclose(turned[:3, 3], original[:3, 3])
    np.testing.assert_allclose(turned[:3, 0], -original[:3, 0])
    np.testing.assert_allclose(turned[:3, 1], -original[:3, 1])
    np.testing.assert_allclose(turned[:3, 2], original[:3, 2])


def test_tool_paths_data_extracts_axes():
    path = _bent_path()
    data = to_tool_paths_data([path])
    assert len(data) == 1 and len(data[0]) == len(path)
    for seg_data, segment in zip(data[0], path):
        for i, pose in enumerate(segment):
            np.testing.assert_allclose(seg_data.points[i], pose[:3, 3])
            np.testing.assert_allclose(seg_data.line_normals[i], pose[:3, 2])
            np.testing.assert_allclose(seg_data.derivatives[i], -pose[:3, 0])


def test_tool_paths_data_empty_segment():
    data = to_tool_paths_data([[[]]])
    assert data[0][0].points.shape == (0, 3)