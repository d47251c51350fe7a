"""Tool paths that follow the open boundaries of a triangle mesh."""

from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

import numpy as np
from scipy.spatial import cKDTree

from .mesh import TriangleMesh
from .spline import ParametricSpline
from .utilities import ToolPathError, create_tool_path_segment

logger = logging.getLogger(__name__)

MIN_POINT_DIST_ALLOWED = 1e-8


class PointSpacingMethod(enum.IntEnum):
    """How the points of a boundary are respaced before poses are built."""

    NONE = 0
    EQUAL_SPACING = 1
    MIN_DISTANCE = 2
    PARAMETRIC_SPLINE = 3


@dataclass
class HalfedgeConfig:
    """Settings of the boundary edge generator."""

    min_num_points: int = 200
    normal_averaging: bool = True
    normal_search_radius: float = 0.02
    normal_influence_weight: float = 0.5
    point_spacing_method: PointSpacingMethod = PointSpacingMethod.EQUAL_SPACING
    point_dist: float = 0.01

    def __post_init__(self) -> None:
        try:
            self.point_spacing_method = PointSpacingMethod(self.point_spacing_method)
        except ValueError:
            raise ValueError(f"the point spacing method {self.point_spacing_method!r} is not valid") from None


def _normalized(v: np.ndarray) -> np.ndarray:
    norm = float(np.linalg.norm(v))
    return v / norm if norm > 0.0 else v.copy()


def _as_cloud(points, normals) -> tuple[np.ndarray, np.ndarray]:
    pts = np.asarray(points, dtype=float).reshape(-1, 3)
    nrm = np.asarray(normals, dtype=float).reshape(-1, 3)
    if len(pts) != len(nrm):
        raise ValueError(f"got {len(pts)} points but {len(nrm)} normals")
    return pts, nrm


def boundary_loops(faces: Iterable[Sequence[int]]) -> list[list[int]]:
    """Return every boundary loop of a triangle mesh as a list of vertex ids.

    Faces whose edges would be used twice in the same direction are left out
    of the mesh, as are degenerate faces.
    """
    half_edges: list[tuple[int, int]] = []
    has_face: list[bool] = []
    index: dict[tuple[int, int], int] = {}

    for face in faces:
        verts = [int(v) for v in face]
        if len(verts) != 3:
            raise ValueError(f"found polygon with {len(verts)} sides, only triangle meshes are supported")
        if len(set(verts)) != 3:
            logger.debug("skipping degenerate face %s", verts)
            continue
        directed = [(verts[k], verts[(k + 1) % 3]) for k in range(3)]
        if any(edge in index and has_face[index[edge]] for edge in directed):
            logger.debug("skipping face %s: one of its edges is already taken", verts)
            continue
        for a, b in directed:
            if (a, b) not in index:
                index[(a, b)] = len(half_edges)
                half_edges.append((a, b))
                has_face.append(False)
                index[(b, a)] = len(half_edges)
                half_edges.append((b, a))
                has_face.append(False)
            has_face[index[(a, b)]] = True

    outgoing: dict[int, list[int]] = {}
    for h, (origin, _) in enumerate(half_edges):
        if not has_face[h]:
            outgoing.setdefault(origin, []).append(h)

    visited_edges: set[int] = set()
    loops: list[list[int]] = []
    for start, (origin, _) in enumerate(half_edges):
        if has_face[start] or start // 2 in visited_edges:
            continue
        loop: list[int] = []
        current: Optional[int] = start
        while current is not None:
            visited_edges.add(current // 2)
            loop.append(half_edges[current][0])
            candidates = outgoing.get(half_edges[current][1], [])
            if start in candidates:
                break
            current = next((c for c in candidates if c // 2 not in visited_edges), None)
        loops.append(loop)
    return loops


def apply_min_point_distance(points, normals, min_point_dist: float) -> tuple[np.ndarray, np.ndarray]:
    """Drop inner points that lie within ``min_point_dist`` of the last kept one.

    The first and last points are always kept. Raises ToolPathError when no
    more than two points remain.
    """
    pts, nrm = _as_cloud(points, normals)
    if len(pts) == 0:
        raise ValueError("cannot space an empty set of points")
    keep = [0]
    for i in range(1, len(pts) - 1):
        if np.linalg.norm(pts[keep[-1]] - pts[i]) > min_point_dist:
            keep.append(i)
    keep.append(len(pts) - 1)
    if len(keep) <= 2:
        raise ToolPathError("minimum point distance left two points or fewer")
    return pts[keep].copy(), nrm[keep].copy()


def _nearest_normals(tree: cKDTree, normals: np.ndarray, query: np.ndarray) -> np.ndarray:
    _, idx = tree.query(query, k=1)
    return normals[np.atleast_1d(idx)].copy()


def apply_equal_distance(points, normals, dist: float) -> tuple[np.ndarray, np.ndarray]:
    """Place new points along the polyline, each ``dist`` from the one before.

    The first and last input points are kept. Each new point takes the normal
    of the nearest input point.
    """
    pts, nrm = _as_cloud(points, normals)
    if len(pts) < 2:
        raise ValueError("equal spacing needs at least two points")

    p_start = pts[0].copy()
    p_mid = pts[1].copy()
    v_1 = p_mid - p_start
    out = [pts[0].copy()]
    for p_end in pts[2:]:
        while dist < np.linalg.norm(v_1):
            p_start = p_start + dist * _normalized(v_1)
            out.append(p_start.copy())
            v_1 = p_mid - p_start

        v_2 = p_end - p_mid
        if dist < np.linalg.norm(v_1 + v_2):
            # solve x^2 + 2 x dot(v_1, unit_v2) + |v_1|^2 - dist^2 = 0
            unit_v2 = _normalized(v_2)
            b = 2.0 * float(v_1 @ unit_v2)
            c = float(v_1 @ v_1) - dist**2
            root = math.sqrt(max(b * b - 4.0 * c, 0.0))
            x = 0.5 * (-b + root)
            if not 0.0 < x < dist:
                x = 0.5 * (-b - root)
            if x > dist:
                raise ToolPathError("equal spacing could not place the next point on the curve")
            p_start = p_start + v_1 + x * unit_v2
            out.append(p_start.copy())

        p_mid = p_end.copy()
        v_1 = p_mid - p_start

    if np.linalg.norm(out[-1] - pts[-1]) > MIN_POINT_DIST_ALLOWED:
        out.append(pts[-1].copy())
    if len(out) < 2:
        raise ToolPathError("points in curve segment are too close together")

    result = np.asarray(out)
    return result, _nearest_normals(cKDTree(pts), nrm, result)


def apply_parametric_spline(points, normals, dist: float) -> tuple[np.ndarray, np.ndarray]:
    """Sample a spline through the points at steps of about ``dist``.

    The spline is parameterized by point index. Samples closer than a tiny
    tolerance to the previous one are skipped; normals come from the nearest
    input point.
    """
    pts, nrm = _as_cloud(points, normals)
    if len(pts) == 0:
        raise ValueError("cannot sample a spline through no points")

    total_length = float(np.linalg.norm(np.diff(pts, axis=0), axis=1).sum())
    logger.debug("total boundary length = %f", total_length)
    num_points = math.ceil(total_length / dist) + 1
    tree = cKDTree(pts)

    out_pts = [pts[0].copy()]
    out_nrm = [nrm[0].copy()]
    if num_points > 1:
        spline = ParametricSpline(pts, parameterize_by_length=False, closed=False)
        incr = dist / total_length
        for i in range(1, num_points):
            new_point = np.asarray(spline.evaluate(min(incr * i, 1.0)), dtype=float)
            if np.linalg.norm(new_point - out_pts[-1]) < MIN_POINT_DIST_ALLOWED:
                continue
            _, idx = tree.query(new_point, k=1)
            out_pts.append(new_point)
            out_nrm.append(nrm[int(idx)].copy())
    logger.debug("parametric spline computed %d points", len(out_pts))
    return np.asarray(out_pts), np.asarray(out_nrm)


def average_normals(src_points, src_normals, points, normals, radius: float, weight: float) -> np.ndarray:
    """Blend each normal with the source normals found within ``radius``.

    Neighbours count less the further they are, by ``weight`` (clamped to
    [0, 1]); a weight of 0 gives every neighbour the same influence. The
    results are unit vectors.
    """
    src_pts, src_nrm = _as_cloud(src_points, src_normals)
    pts, nrm = _as_cloud(points, normals)
    weight = min(abs(weight), 1.0)
    r_2 = radius**2
    tree = cKDTree(src_pts)
    result = np.empty_like(nrm)
    for k, (p, n) in enumerate(zip(pts, nrm)):
        total = n.copy()
        for idx in tree.query_ball_point(p, radius):
            d_2 = float(np.sum((src_pts[idx] - p) ** 2))
            factor = 0.0 if d_2 > r_2 else (radius - weight * math.sqrt(d_2)) / radius
            total = total + src_nrm[idx] * max(factor, 0.0)
        result[k] = _normalized(total)
    return result


class HalfedgeEdgeGenerator:
    """Builds one tool path along each sufficiently long boundary of a mesh."""

    def __init__(self, config: Optional[HalfedgeConfig] = None):
        self.config = config if config is not None else HalfedgeConfig()
        self._mesh: Optional[TriangleMesh] = None

    def set_input(self, mesh: TriangleMesh) -> None:
        """Use ``mesh`` as the surface whose boundaries are followed."""
        if not isinstance(mesh, TriangleMesh):
            raise TypeError("the input must be a TriangleMesh")
        self._mesh = mesh

    def _respace(self, points: np.ndarray, normals: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        method = self.config.point_spacing_method
        dist = self.config.point_dist
        if method is PointSpacingMethod.NONE:
            return points, normals
        if method is PointSpacingMethod.EQUAL_SPACING:
            return apply_equal_distance(points, normals, dist)
        if method is PointSpacingMethod.MIN_DISTANCE:
            return apply_min_point_distance(points, normals, dist)
        return apply_parametric_spline(points, normals, dist)

    def generate(self) -> list[list[list[np.ndarray]]]:
        """Return the boundary tool paths, longest first.

        Each tool path holds a single segment of 4x4 poses.
        """
        if self._mesh is None:
            raise ToolPathError("no input mesh has been set")
        mesh = self._mesh
        cfg = self.config
        logger.info("input mesh has %d polygons", len(mesh.faces))
        if len(mesh.faces) == 0:
            raise ToolPathError("the triangle mesh contains no data")

        prepared = mesh.with_normals()
        cloud_points = prepared.points
        cloud_normals = prepared.point_normals

        paths: list[list[list[np.ndarray]]] = []
        for loop in boundary_loops(mesh.faces):
            ids = np.asarray(loop, dtype=np.int64)
            seg_points = cloud_points[ids]
            seg_normals = cloud_normals[ids]
            if len(seg_points) < cfg.min_num_points:
                continue

            logger.debug("found boundary with %d points", len(seg_points))
            if cfg.point_dist > MIN_POINT_DIST_ALLOWED:
                count = len(seg_points)
                seg_points, seg_normals = self._respace(seg_points, seg_normals)
                logger.debug("boundary with %d points was respaced to %d points", count, len(seg_points))

            if len(seg_points) < cfg.min_num_points:
                logger.debug(
                    "respaced boundary has %d points, fewer than the minimum of %d",
                    len(seg_points),
                    cfg.min_num_points,
                )
                continue

            if cfg.normal_averaging:
                seg_normals = average_normals(
                    cloud_points,
                    cloud_normals,
                    seg_points,
                    seg_normals,
                    cfg.normal_search_radius,
                    cfg.normal_influence_weight,
                )

            paths.append([create_tool_path_segment(seg_points, seg_normals)])
            logger.info("added boundary with %d points", len(paths[-1][0]))

        paths.sort(key=lambda path: len(path[0]), reverse=True)
        paths = [path for path in paths if len(path[0]) >= cfg.min_num_points]
        if not paths:
            raise ToolPathError("no valid edge segments were found, the mesh may have duplicate vertices")
        logger.info("found %d valid edge segments", len(paths))
        return paths