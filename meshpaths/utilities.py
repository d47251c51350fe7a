"""Pose and tool path helpers shared by the path generators.

A pose is a 4x4 homogeneous transform held in a numpy array. A tool path
segment is a list of poses, a tool path is a list of segments and a set of
tool paths is a list of tool paths.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

import numpy as np

# Rotation of pi radians about the local z axis, as a homogeneous transform.
_ROT_Z_PI = np.diag([-1.0, -1.0, 1.0, 1.0])


class ToolPathError(Exception):
    """Raised when a tool path cannot be built from the given data."""


@dataclass
class ToolPathSegmentData:
    """Points of a segment with their surface normals and travel directions."""

    points: np.ndarray
    line_normals: np.ndarray
    derivatives: np.ndarray


def _normalized(v: np.ndarray) -> np.ndarray:
    v = np.asarray(v, dtype=float)
    norm = np.linalg.norm(v)
    return v / norm if norm > 0.0 else v.copy()


def flip_point_order(path: Sequence[Sequence[np.ndarray]]) -> list[list[np.ndarray]]:
    """Reverse a tool path and turn every pose 180 degrees about its z axis."""
    return [
        [np.asarray(pose, dtype=float) @ _ROT_Z_PI for pose in reversed(segment)]
        for segment in reversed(path)
    ]


def _segment_data(segment: Sequence[np.ndarray]) -> ToolPathSegmentData:
    if len(segment) == 0:
        empty = np.zeros((0, 3))
        return ToolPathSegmentData(empty, empty.copy(), empty.copy())
    poses = np.asarray(segment, dtype=float).reshape(-1, 4, 4)
    return ToolPathSegmentData(
        points=poses[:, :3, 3].copy(),
        line_normals=poses[:, :3, 2].copy(),
        derivatives=-poses[:, :3, 0],
    )


def to_tool_paths_data(paths: Iterable[Sequence[Sequence[np.ndarray]]]) -> list[list[ToolPathSegmentData]]:
    """Split every pose into its position, its z axis and its negated x axis."""
    return [[_segment_data(segment) for segment in path] for path in paths]


def to_rotation_matrix(vx, vy, vz) -> np.ndarray:
    """Build a 3x3 matrix whose columns are the three given axes."""
    return np.column_stack(
        [np.asarray(vx, dtype=float), np.asarray(vy, dtype=float), np.asarray(vz, dtype=float)]
    )


def create_tool_path_segment(points, normals, indices: Optional[Sequence[int]] = None) -> list[np.ndarray]:
    """Create poses along a sequence of points with normals.

    Each pose points its x axis at the next point and its z axis along the
    point's normal. The last pose keeps the orientation of the one before it.
    When ``indices`` is empty or omitted, all points are used in order.
    """
    pts = np.asarray(points, dtype=float).reshape(-1, 3)
    nrm = np.asarray(normals, dtype=float).reshape(-1, 3)
    if len(pts) != len(nrm):
        raise ValueError(f"got {len(pts)} points but {len(nrm)} normals")

    order = list(range(len(pts))) if indices is None or len(indices) == 0 else [int(i) for i in indices]
    if len(order) < 2:
        raise ToolPathError("a tool path segment needs at least two points")

    count = len(pts)
    segment: list[np.ndarray] = []
    for current, following in zip(order, order[1:]):
        if not (0 <= current < count and 0 <= following < count):
            raise ToolPathError(
                f"invalid indices (current: {current}, next: {following}) for a cloud of {count} points"
            )
        p1, p2 = pts[current], pts[following]
        x_dir = _normalized(p2 - p1)
        z_dir = _normalized(nrm[current])
        y_dir = _normalized(np.cross(z_dir, x_dir))
        pose = np.eye(4)
        pose[:3, :3] = to_rotation_matrix(x_dir, y_dir, z_dir)
        pose[:3, 3] = p1
        segment.append(pose)

    last = segment[-1].copy()
    last[:3, 3] = pts[order[-1]]
    segment.append(last)
    return segment