"""Intersections between triangle meshes, lines and points.

These are the geometric queries the surface walk generator needs: the
curve where two meshes cross, the joining of that curve's pieces into one
polyline, ray casting and point-to-cell lookups.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

import numpy as np
from scipy.spatial import cKDTree

from .mesh import TriangleMesh


def _triangles(points, faces) -> tuple[np.ndarray, np.ndarray]:
    pts = np.asarray(points, dtype=float).reshape(-1, 3)
    tris = np.asarray(faces, dtype=np.int64).reshape(-1, 3)
    if tris.size and (tris.min() < 0 or tris.max() >= len(pts)):
        raise ValueError("a face refers to a point that does not exist")
    return pts, tris


def _plane(tri: np.ndarray) -> Optional[tuple[np.ndarray, float]]:
    normal = np.cross(tri[1] - tri[0], tri[2] - tri[0])
    length = float(np.linalg.norm(normal))
    if length == 0.0:
        return None
    normal = normal / length
    return normal, float(normal @ tri[0])


def _plane_crossing(tri: np.ndarray, normal: np.ndarray, offset: float, eps: float) -> Optional[np.ndarray]:
    """Points where the triangle meets the plane, or None when it does not."""
    d = tri @ normal - offset
    d[np.abs(d) < eps] = 0.0
    if np.all(d > 0.0) or np.all(d < 0.0) or np.all(d == 0.0):
        return None
    found = []
    for i, j in ((0, 1), (1, 2), (2, 0)):
        if d[i] == 0.0:
            found.append(tri[i])
        if (d[i] < 0.0 < d[j]) or (d[j] < 0.0 < d[i]):
            t = d[i] / (d[i] - d[j])
            found.append(tri[i] + t * (tri[j] - tri[i]))
    return np.asarray(found) if found else None


def _merge_points(raw: list[np.ndarray], tolerance: float) -> tuple[np.ndarray, list[int]]:
    """Merge points closer than ``tolerance``; return the kept points and the mapping."""
    if not raw:
        return np.zeros((0, 3)), []
    array = np.asarray(raw)
    parent = list(range(len(array)))

    def root(k: int) -> int:
        while parent[k] != k:
            parent[k] = parent[parent[k]]
            k = parent[k]
        return k

    for i, j in cKDTree(array).query_pairs(tolerance):
        ri, rj = root(i), root(j)
        if ri != rj:
            parent[max(ri, rj)] = min(ri, rj)

    new_index: dict[int, int] = {}
    kept: list[np.ndarray] = []
    mapping: list[int] = []
    for k in range(len(array)):
        r = root(k)
        if r not in new_index:
            new_index[r] = len(kept)
            kept.append(array[r])
        mapping.append(new_index[r])
    return np.asarray(kept), mapping


def intersect_meshes(points_a, faces_a, points_b, faces_b) -> tuple[np.ndarray, list[tuple[int, int]]]:
    """Find the curve along which two triangle meshes cross.

    Returns the curve points and its line segments as pairs of indices into
    those points. Each segment runs along the cross product of the normal of
    the triangle from the first mesh and that of the second, so pieces of a
    curve are oriented the same way. Coplanar contact is not reported.
    """
    pts_a, tris_a = _triangles(points_a, faces_a)
    pts_b, tris_b = _triangles(points_b, faces_b)
    if len(tris_a) == 0 or len(tris_b) == 0:
        return np.zeros((0, 3)), []

    corners_a = pts_a[tris_a]
    corners_b = pts_b[tris_b]
    every = np.vstack([corners_a.reshape(-1, 3), corners_b.reshape(-1, 3)])
    scale = max(float(np.linalg.norm(every.max(axis=0) - every.min(axis=0))), 1.0)
    eps = 1e-10 * scale

    low_a, high_a = corners_a.min(axis=1), corners_a.max(axis=1)
    low_b, high_b = corners_b.min(axis=1), corners_b.max(axis=1)
    planes_b = [_plane(tri) for tri in corners_b]

    raw_points: list[np.ndarray] = []
    raw_segments: list[tuple[int, int]] = []
    for ia, tri_a in enumerate(corners_a):
        plane_a = _plane(tri_a)
        if plane_a is None:
            continue
        normal_a, offset_a = plane_a
        overlap = np.all(low_b <= high_a[ia] + eps, axis=1) & np.all(high_b >= low_a[ia] - eps, axis=1)
        for ib in np.flatnonzero(overlap):
            plane_b = planes_b[ib]
            if plane_b is None:
                continue
            normal_b, offset_b = plane_b
            direction = np.cross(normal_a, normal_b)
            length = float(np.linalg.norm(direction))
            if length < 1e-12:
                continue
            direction = direction / length

            cross_a = _plane_crossing(tri_a, normal_b, offset_b, eps)
            if cross_a is None:
                continue
            cross_b = _plane_crossing(corners_b[ib], normal_a, offset_a, eps)
            if cross_b is None:
                continue

            t_a = cross_a @ direction
            t_b = cross_b @ direction
            lo = max(float(t_a.min()), float(t_b.min()))
            hi = min(float(t_a.max()), float(t_b.max()))
            if hi - lo <= eps:
                continue
            start, end = cross_a[int(np.argmin(t_a))], cross_a[int(np.argmax(t_a))]
            t0, t1 = float(t_a.min()), float(t_a.max())
            p_lo = start + (lo - t0) / (t1 - t0) * (end - start)
            p_hi = start + (hi - t0) / (t1 - t0) * (end - start)
            raw_segments.append((len(raw_points), len(raw_points) + 1))
            raw_points.extend([p_lo, p_hi])

    points, mapping = _merge_points(raw_points, 1e3 * eps)
    segments: list[tuple[int, int]] = []
    seen: set[frozenset] = set()
    for a, b in raw_segments:
        pair = (mapping[a], mapping[b])
        marker = frozenset(pair)
        if pair[0] == pair[1] or marker in seen:
            continue
        seen.add(marker)
        segments.append(pair)
    return points, segments


def connected_line(points, lines: Sequence[Sequence[int]], used_ids: Iterable[int], start: int) -> tuple[list[int], float]:
    """Follow line segments from ``start`` to collect one connected polyline.

    The walk goes forward along segments that begin at the current point,
    then backward from ``start`` along segments that end at it. It stops at
    a point listed in ``used_ids``, after closing a loop, or once every point
    is taken. Returns the point ids in order and the polyline length.
    """
    pts = np.asarray(points, dtype=float).reshape(-1, 3)
    cells = [[int(v) for v in cell] for cell in lines]
    used = set(int(v) for v in used_ids)
    num_points = len(pts)

    search_location = 0
    ids = [int(start)]
    next_id = int(start)
    line_length = 0.0

    while len(ids) < num_points:
        if next_id in used:
            break

        found = False
        for cell in cells:
            if not cell:
                continue
            if cell[search_location] == next_id:
                location = (search_location + 1) % 2
                previous = pts[next_id]
                next_id = cell[location]
                line_length += float(np.linalg.norm(pts[next_id] - previous))
                if search_location:
                    ids.insert(0, next_id)
                else:
                    ids.append(next_id)
                found = True
                break

        if (next_id == ids[0] and search_location == 0) or (next_id == ids[-1] and search_location == 1):
            break

        if not found and len(ids) < num_points and search_location == 0:
            search_location = 1
            next_id = ids[0]
        elif not found and search_location == 1:
            break

    return ids, line_length


def _squared(a: np.ndarray, b: np.ndarray) -> float:
    return float(np.sum((a - b) ** 2))


def join_connected_lines(points, lines: Sequence[Sequence[int]], min_segment_size: float) -> np.ndarray:
    """Join the pieces of an intersection curve into a single polyline.

    Connected pieces longer than ``min_segment_size`` are collected; starting
    from the one with most points, the piece whose nearest end is closest is
    attached at that end, reversed where needed, until none are left.
    Returns an empty (0, 3) array when no piece is long enough.
    """
    pts = np.asarray(points, dtype=float).reshape(-1, 3)
    used: set[int] = set()
    pieces: list[np.ndarray] = []
    while len(used) < len(pts):
        start = next(i for i in range(len(pts)) if i not in used)
        ids, length = connected_line(pts, lines, used, start)
        used.update(ids)
        if length > min_segment_size:
            pieces.append(pts[ids].copy())

    if not pieces:
        return np.zeros((0, 3))
    if len(pieces) == 1:
        return pieces[0]

    largest = 0
    for i, piece in enumerate(pieces):
        if len(piece) > len(pieces[largest]):
            largest = i
    joined = pieces.pop(largest)

    while pieces:
        next_index = 0
        order = 0
        min_dist = float("inf")
        for i, piece in enumerate(pieces):
            dist1 = _squared(joined[0], piece[0])
            dist2 = _squared(joined[-1], piece[0])
            dist3 = _squared(joined[0], piece[-1])
            dist4 = _squared(joined[-1], piece[-1])
            dist = min(dist1, dist2, dist3, dist4)
            if dist < min_dist:
                next_index = i
                min_dist = dist
                order = 1 if dist1 == min_dist else order
                order = 2 if dist2 == min_dist else order
                order = 3 if dist3 == min_dist else order
                order = 4 if dist4 == min_dist else order

        piece = pieces.pop(next_index)
        if order == 1:
            joined = np.vstack([piece[::-1], joined])
        elif order == 2:
            joined = np.vstack([joined, piece])
        elif order == 3:
            joined = np.vstack([piece, joined])
        elif order == 4:
            joined = np.vstack([joined, piece[::-1]])
    return joined


def ray_intersections(mesh: TriangleMesh, source, target, tolerance: float) -> np.ndarray:
    """Points where the segment from ``source`` to ``target`` meets the mesh.

    Points are ordered from ``source`` outward; hits closer than
    ``tolerance`` to the previous one, such as on a shared edge, are merged.
    """
    s = np.asarray(source, dtype=float).reshape(3)
    e = np.asarray(target, dtype=float).reshape(3)
    direction = e - s
    if not np.any(direction):
        raise ValueError("the ray source and target must differ")
    if len(mesh.faces) == 0:
        return np.zeros((0, 3))

    tris = mesh.points[mesh.faces]
    v0 = tris[:, 0]
    e1 = tris[:, 1] - v0
    e2 = tris[:, 2] - v0
    h = np.cross(direction, e2)
    a = np.einsum("ij,ij->i", e1, h)
    valid = np.abs(a) > 1e-15
    with np.errstate(divide="ignore", invalid="ignore"):
        f = np.where(valid, 1.0 / np.where(valid, a, 1.0), 0.0)
        offset = s - v0
        u = f * np.einsum("ij,ij->i", offset, h)
        q = np.cross(offset, e1)
        v = f * (q @ direction)
        t = f * np.einsum("ij,ij->i", e2, q)

    slack = 1e-9
    hit = valid & (u >= -slack) & (v >= -slack) & (u + v <= 1.0 + slack) & (t >= -slack) & (t <= 1.0 + slack)
    params = np.sort(t[hit])
    kept: list[np.ndarray] = []
    for param in params:
        point = s + param * direction
        if not kept or np.linalg.norm(point - kept[-1]) > tolerance:
            kept.append(point)
    return np.asarray(kept).reshape(-1, 3)


def _closest_on_triangles(point: np.ndarray, tris: np.ndarray) -> np.ndarray:
    """Closest point of each triangle to ``point``."""
    a, b, c = tris[:, 0], tris[:, 1], tris[:, 2]
    ab, ac = b - a, c - a
    ap, bp, cp = point - a, point - b, point - c

    def dot(x: np.ndarray, y: np.ndarray) -> np.ndarray:
        return np.einsum("ij,ij->i", x, y)

    d1, d2 = dot(ab, ap), dot(ac, ap)
    d3, d4 = dot(ab, bp), dot(ac, bp)
    d5, d6 = dot(ab, cp), dot(ac, cp)
    va = d3 * d6 - d5 * d4
    vb = d5 * d2 - d1 * d6
    vc = d1 * d4 - d3 * d2

    with np.errstate(divide="ignore", invalid="ignore"):
        total = va + vb + vc
        result = a + ab * (vb / total)[:, None] + ac * (vc / total)[:, None]
        on_bc = b + (c - b) * ((d4 - d3) / ((d4 - d3) + (d5 - d6)))[:, None]
        on_ac = a + ac * (d2 / (d2 - d6))[:, None]
        on_ab = a + ab * (d1 / (d1 - d3))[:, None]

    regions = [
        ((va <= 0) & ((d4 - d3) >= 0) & ((d5 - d6) >= 0), on_bc),
        ((vb <= 0) & (d2 >= 0) & (d6 <= 0), on_ac),
        ((d6 >= 0) & (d5 <= d6), c),
        ((vc <= 0) & (d1 >= 0) & (d3 <= 0), on_ab),
        ((d3 >= 0) & (d4 <= d3), b),
        ((d1 <= 0) & (d2 <= 0), a),
    ]
    for condition, candidate in regions:
        result = np.where(condition[:, None], candidate, result)

    broken = ~np.all(np.isfinite(result), axis=1)
    if np.any(broken):
        corners = tris[broken]
        nearest = np.argmin(np.sum((corners - point) ** 2, axis=2), axis=1)
        result[broken] = corners[np.arange(len(corners)), nearest]
    return result


def closest_cell(mesh: TriangleMesh, point) -> tuple[np.ndarray, int, float]:
    """Closest point on the mesh, the cell it lies on and its distance."""
    if len(mesh.faces) == 0:
        raise ValueError("the mesh has no cells")
    p = np.asarray(point, dtype=float).reshape(3)
    closest = _closest_on_triangles(p, mesh.points[mesh.faces])
    distances = np.linalg.norm(closest - p, axis=1)
    cell = int(np.argmin(distances))
    return closest[cell].copy(), cell, float(distances[cell])


def find_cell(mesh: TriangleMesh, point, tolerance: float) -> Optional[int]:
    """The cell within ``tolerance`` of ``point`` that is nearest, or None."""
    if len(mesh.faces) == 0:
        return None
    _, cell, distance = closest_cell(mesh, point)
    return cell if distance <= tolerance else None