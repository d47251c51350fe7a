"""Cutting triangle meshes with planes and joining the cut segments into lines."""

from __future__ import annotations

from collections import defaultdict
from typing import Iterable, Optional, Sequence

import numpy as np

_Key = tuple


def _crossing_key(a: int, b: int, dist: np.ndarray) -> Optional[_Key]:
    """Identify where the plane meets the edge (a, b), if it does."""
    da, db = dist[a], dist[b]
    if da == 0.0:
        return ("v", a)
    if db == 0.0:
        return ("v", b)
    if (da < 0.0) != (db < 0.0):
        return ("e", min(a, b), max(a, b))
    return None


def slice_mesh(points, faces, origin, normal) -> tuple[np.ndarray, list[tuple[int, int]]]:
    """Cut a triangle mesh with the plane through ``origin`` normal to ``normal``.

    Returns the cut points and the line segments between them as pairs of
    indices into those points. A point on an edge shared by two triangles is
    returned once; a mesh vertex lying on the plane becomes a cut point itself.
    """
    pts = np.asarray(points, dtype=float).reshape(-1, 3)
    tris = np.asarray(faces, dtype=np.int64).reshape(-1, 3)
    direction = np.asarray(normal, dtype=float).reshape(3)
    length = float(np.linalg.norm(direction))
    if length == 0.0:
        raise ValueError("the plane normal must not be the zero vector")
    direction = direction / length
    dist = (pts - np.asarray(origin, dtype=float).reshape(3)) @ direction

    cut_points: list[np.ndarray] = []
    point_index: dict[_Key, int] = {}

    def point_id(key: _Key) -> int:
        if key not in point_index:
            if key[0] == "v":
                position = pts[key[1]].copy()
            else:
                a, b = key[1], key[2]
                t = dist[a] / (dist[a] - dist[b])
                position = pts[a] + t * (pts[b] - pts[a])
            point_index[key] = len(cut_points)
            cut_points.append(position)
        return point_index[key]

    segments: list[tuple[int, int]] = []
    seen: set[frozenset] = set()
    for face in tris:
        a, b, c = (int(v) for v in face)
        keys: list[_Key] = []
        for start, end in ((a, b), (b, c), (c, a)):
            key = _crossing_key(start, end, dist)
            if key is not None and key not in keys:
                keys.append(key)
        if len(keys) != 2:
            continue
        pair = (point_id(keys[0]), point_id(keys[1]))
        marker = frozenset(pair)
        if marker in seen:
            continue
        seen.add(marker)
        segments.append(pair)

    return np.asarray(cut_points, dtype=float).reshape(-1, 3), segments


def strip_segments(segments: Iterable[Sequence[int]]) -> list[list[int]]:
    """Join line segments that share end points into polylines.

    Open chains are walked from one of their ends. A closed loop comes back
    as a polyline whose first and last ids are the same.
    """
    segs = [(int(a), int(b)) for a, b in segments if int(a) != int(b)]
    incident: dict[int, list[int]] = defaultdict(list)
    for k, (a, b) in enumerate(segs):
        incident[a].append(k)
        incident[b].append(k)

    used = [False] * len(segs)
    order = list(dict.fromkeys(v for seg in segs for v in seg))
    starts = [v for v in order if len(incident[v]) % 2 == 1] + order

    lines: list[list[int]] = []
    for start in starts:
        while any(not used[k] for k in incident[start]):
            line = [start]
            current = start
            while True:
                step = next((k for k in incident[current] if not used[k]), None)
                if step is None:
                    break
                used[step] = True
                a, b = segs[step]
                current = b if a == current else a
                line.append(current)
            lines.append(line)
    return lines