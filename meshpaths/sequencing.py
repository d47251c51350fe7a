"""Ordering of tool path segments and small point helpers.

Segments are lists of 4x4 homogeneous poses. Quaternions are arrays in
(x, y, z, w) order.
"""

from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass
from typing import Sequence

import numpy as np
from scipy.spatial.transform import Rotation


@dataclass
class PathEndPoints:
    """First (``a``) and last (``b``) positions of a segment, in a reference frame.

    ``id`` is the index of the segment in the input that produced it.
    """

    a: np.ndarray
    b: np.ndarray
    id: int


@dataclass
class SequencePoint:
    """A place in the ordered output.

    ``id`` indexes the sorted end points; ``from_a`` tells whether the segment
    is travelled from its first pose to its last.
    """

    id: int
    from_a: bool


def _as_segments(segments) -> list[list[np.ndarray]]:
    result = []
    for k, segment in enumerate(segments):
        poses = [np.asarray(pose, dtype=float).reshape(4, 4) for pose in segment]
        if not poses:
            raise ValueError(f"segment {k} holds no poses")
        result.append(poses)
    return result


def to_end_points(segments, ref_rotation) -> list[PathEndPoints]:
    """Express the end positions of every segment in the frame of ``ref_rotation``."""
    inverse = Rotation.from_quat(np.asarray(ref_rotation, dtype=float).reshape(4)).as_matrix().T
    result = []
    for i, segment in enumerate(_as_segments(segments)):
        a = inverse @ segment[0][:3, 3]
        b = inverse @ segment[-1][:3, 3]
        result.append(PathEndPoints(a, b, i))
    return result


def make_sequence(paths, seqs: Sequence[SequencePoint], end_points: Sequence[PathEndPoints]) -> list[list[np.ndarray]]:
    """Reorder ``paths`` as ``seqs`` says, reversing segments not travelled from A."""
    if len(paths) != len(seqs):
        raise ValueError(f"got {len(paths)} paths but {len(seqs)} sequence points")
    result = []
    for seq in seqs:
        segment = [np.array(pose, dtype=float) for pose in paths[end_points[seq.id].id]]
        if not seq.from_a:
            segment.reverse()
        result.append(segment)
    return result


def average_quaternion(quaternions) -> np.ndarray:
    """Average rotation of a set of quaternions, by the largest eigenvector method.

    The result does not depend on the sign of each input quaternion.
    """
    quats = np.asarray(quaternions, dtype=float).reshape(-1, 4)
    if len(quats) == 0:
        raise ValueError("cannot average no quaternions")
    q = quats.T
    eigen_vals, eigen_vecs = np.linalg.eigh(q @ q.T)
    max_idx = 0
    max_value = 0.0
    for i, value in enumerate(eigen_vals):
        if value > max_value:
            max_idx = i
            max_value = float(value)
    return eigen_vecs[:, max_idx].copy()


def longest_segment(segments) -> int:
    """Index of the segment whose first and last positions lie furthest apart.

    Returns 0 when there are no segments.
    """
    max_index = 0
    max_dist = 0.0
    for i, segment in enumerate(_as_segments(segments)):
        dist = float(np.sum((segment[0][:3, 3] - segment[-1][:3, 3]) ** 2))
        if dist > max_dist:
            max_index = i
            max_dist = dist
    return max_index


def sequence(paths) -> list[list[np.ndarray]]:
    """Order segments across the nominal cut direction, choosing each one's direction.

    The cut direction comes from the average rotation of the longest segment.
    Segments are sorted by their lowest end in that frame's y, and each one
    starts at the end nearer to where the previous one finished.
    """
    segments = _as_segments(paths)
    if not segments:
        return []

    longest = segments[longest_segment(segments)]
    rotations = Rotation.from_matrix(np.array([pose[:3, :3] for pose in longest]))
    avg = average_quaternion(rotations.as_quat())
    end_points = to_end_points(segments, avg)
    end_points.sort(key=lambda e: min(e.a[1], e.b[1]))

    def current_position(point: SequencePoint) -> np.ndarray:
        ends = end_points[point.id]
        return ends.b if point.from_a else ends.a

    seqs = [SequencePoint(0, True)]
    for i in range(1, len(end_points)):
        position = current_position(seqs[-1])
        dist_a = float(np.sum((end_points[i].a - position) ** 2))
        dist_b = float(np.sum((end_points[i].b - position) ** 2))
        seqs.append(SequencePoint(i, dist_a < dist_b))

    return make_sequence(segments, seqs, end_points)


def compute_angle(v1, v2) -> float:
    """Angle in radians between two vectors."""
    a = np.asarray(v1, dtype=float)
    b = np.asarray(v2, dtype=float)
    norms = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norms == 0.0:
        raise ValueError("the angle to a zero vector is undefined")
    return math.acos(max(-1.0, min(1.0, float(a @ b) / norms)))


def compute_squared_distance(pt1, pt2) -> float:
    """Squared distance between two 3D points; 0 when either is not 3D."""
    if len(pt1) != 3 or len(pt2) != 3:
        return 0.0
    return float(sum((float(x) - float(y)) ** 2 for x, y in zip(pt1, pt2)))


def find_closest_point(pt, pts) -> int:
    """Index of the point in ``pts`` closest to ``pt``; the first one on ties."""
    if len(pts) == 0:
        raise ValueError("cannot find the closest of no points")
    best = min(range(len(pts)), key=lambda i: compute_squared_distance(pt, pts[i]))
    return best


def sort_points(points) -> np.ndarray:
    """Order points into a chain, growing it from whichever end is nearer."""
    remaining = [list(map(float, p)) for p in np.asarray(points, dtype=float).reshape(-1, 3)]
    if not remaining:
        return np.zeros((0, 3))
    chain = deque([remaining.pop(0)])
    while remaining:
        nxt = find_closest_point(chain[-1], remaining)
        candidate = remaining[nxt]
        if compute_squared_distance(chain[-1], candidate) < compute_squared_distance(chain[0], candidate):
            chain.append(remaining.pop(nxt))
        else:
            nxt = find_closest_point(chain[0], remaining)
            chain.appendleft(remaining.pop(nxt))
    return np.asarray(chain, dtype=float)