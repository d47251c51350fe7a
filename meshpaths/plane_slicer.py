"""Raster tool paths made by cutting a mesh with a stack of parallel planes."""

from __future__ import annotations

import itertools
import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from scipy.spatial import cKDTree

from .mesh import TriangleMesh, oriented_bounding_box
from .slicing import slice_mesh, strip_segments
from .spline import ParametricSpline
from .utilities import ToolPathError, to_rotation_matrix

logger = logging.getLogger(__name__)

EPSILON = 1e-6


@dataclass
class PlaneSlicerConfig:
    """Settings of the plane slicer raster generator."""

    raster_spacing: float = 0.04
    point_spacing: float = 0.01
    raster_rot_offset: float = 0.0
    min_segment_size: float = 0.01
    search_radius: float = 0.01
    min_hole_size: float = 0.01

    def __post_init__(self) -> None:
        if self.raster_spacing <= 0.0:
            raise ValueError("raster_spacing must be positive")
        if self.point_spacing <= 0.0:
            raise ValueError("point_spacing must be positive")


def _unit(v: np.ndarray) -> np.ndarray:
    norm = float(np.linalg.norm(v))
    return v / norm if norm > 0.0 else np.asarray(v, dtype=float).copy()


def _as_points(points) -> np.ndarray:
    return np.asarray(points, dtype=float).reshape(-1, 3)


def compute_length(points) -> float:
    """Length of the polyline through the points."""
    pts = _as_points(points)
    if len(pts) < 2:
        return 0.0
    return float(np.linalg.norm(np.diff(pts, axis=0), axis=1).sum())


def resample_spline(points, total_length: float, point_spacing: float) -> np.ndarray:
    """Sample a spline through the points, keeping samples ``point_spacing`` apart.

    The first and last input points are always kept.
    """
    pts = _as_points(points)
    if len(pts) == 0:
        raise ValueError("cannot resample no points")
    spline = ParametricSpline(pts, parameterize_by_length=True, closed=False)
    out = [pts[0].copy()]
    previous = pts[0]
    num_points = int(math.ceil(total_length / point_spacing) + 1)
    for i in range(1, num_points):
        interv = min(i / (num_points - 1), 1.0)
        if abs(interv - 1.0) < EPSILON:
            break
        pt = np.asarray(spline.evaluate(interv), dtype=float)
        if np.linalg.norm(pt - previous) >= point_spacing:
            out.append(pt)
            previous = pt
    out.append(pts[-1].copy())
    return np.asarray(out)


def remove_redundant(point_lists: Sequence[Sequence[int]]) -> list[list[int]]:
    """Drop ids already used by an earlier list; lists left empty are dropped."""
    lists = [list(ids) for ids in point_lists]
    if len(lists) < 2:
        return lists
    kept = [lists[0]]
    seen = set(lists[0])
    for current in lists[1:]:
        fresh = [i for i in current if i not in seen]
        if fresh:
            kept.append(fresh)
            seen.update(fresh)
    return kept


def _try_merge(points: np.ndarray, current: list[int], following: list[int], merge_dist: float) -> Optional[list[int]]:
    if np.linalg.norm(points[current[0]] - points[following[-1]]) < merge_dist:
        return following + current
    if np.linalg.norm(points[current[-1]] - points[following[0]]) < merge_dist:
        return current + following
    return None


def merge_raster_segments(points, merge_dist: float, point_lists: Sequence[Sequence[int]]) -> list[list[int]]:
    """Join lists whose end points lie closer than ``merge_dist``.

    Later lists are joined onto earlier ones, reversed where that brings the
    ends together. Lists with a single id are dropped from the result.
    """
    pts = _as_points(points)
    lists = [list(ids) for ids in point_lists]
    if len(lists) < 2:
        return lists

    merged: set[int] = set()
    result: list[list[int]] = []
    for i, ids in enumerate(lists):
        if i in merged:
            logger.debug("segment %d has already been merged, skipping", i)
            continue
        current = list(ids)
        seek_adjacent = True
        while seek_adjacent:
            seek_adjacent = False
            for j in range(i + 1, len(lists)):
                if j in merged:
                    continue
                combined = _try_merge(pts, current, lists[j], merge_dist)
                if combined is None:
                    combined = _try_merge(pts, current, lists[j][::-1], merge_dist)
                if combined is not None:
                    logger.debug("merged segment %d onto segment %d", j, i)
                    current = combined
                    merged.add(j)
                    seek_adjacent = True
        result.append(current)
    final = [ids for ids in result if len(ids) > 1]
    logger.debug("final raster contains %d segments", len(final))
    return final


def rectify_direction(points, ref_point, point_lists: Sequence[Sequence[int]]) -> list[list[int]]:
    """Reverse the raster when its far end is closer to ``ref_point`` than its start."""
    lists = [list(ids) for ids in point_lists]
    if not lists:
        return lists
    pts = _as_points(points)
    ref = np.asarray(ref_point, dtype=float).reshape(3)
    first = pts[lists[0][0]]
    last = pts[lists[-1][-1]]
    if np.linalg.norm(ref - first) > np.linalg.norm(ref - last):
        return [ids[::-1] for ids in reversed(lists)]
    return lists


def _frame(axis_x: np.ndarray, axis_y: np.ndarray) -> np.ndarray:
    """Right-handed rotation whose first two columns follow the given axes."""
    x = _unit(np.asarray(axis_x, dtype=float))
    if not np.any(x):
        x = np.array([1.0, 0.0, 0.0])
    y = np.asarray(axis_y, dtype=float)
    y = _unit(y - (y @ x) * x)
    if not np.any(y):
        helper = np.eye(3)[int(np.argmin(np.abs(x)))]
        y = _unit(np.cross(x, helper))
    z = np.cross(x, y)
    return to_rotation_matrix(x, y, z)


def _apply(transform: np.ndarray, points: np.ndarray) -> np.ndarray:
    return points @ transform[:3, :3].T + transform[:3, 3]


def _segment_poses(points: np.ndarray, normals: np.ndarray) -> list[np.ndarray]:
    pose = np.eye(4)
    if len(points) == 1:
        pose[:3, 3] = points[0]
        return [pose]
    poses = []
    for p, p_next, normal in zip(points, points[1:], normals):
        vx = _unit(p_next - p)
        vy = _unit(np.cross(normal, vx))
        vz = _unit(np.cross(vx, vy))
        pose = np.eye(4)
        pose[:3, :3] = to_rotation_matrix(vx, vy, vz)
        pose[:3, 3] = p
        poses.append(pose)
    last = pose.copy()
    last[:3, 3] = points[-1]
    poses.append(last)
    return poses


def _to_poses(rasters: list[list[tuple[np.ndarray, np.ndarray]]]) -> list[list[list[np.ndarray]]]:
    paths = []
    reverse = True
    for raster in rasters:
        reverse = not reverse
        segments = list(reversed(raster)) if reverse else raster
        path = []
        for points, normals in segments:
            if reverse:
                points, normals = points[::-1], normals[::-1]
            path.append(_segment_poses(points, normals))
        paths.append(path)
    return paths


class PlaneSlicerRasterGenerator:
    """Cuts a mesh with evenly spaced planes and turns the cuts into rasters."""

    def __init__(self, config: Optional[PlaneSlicerConfig] = None):
        self.config = config if config is not None else PlaneSlicerConfig()
        self._mesh: Optional[TriangleMesh] = None
        self._tree: Optional[cKDTree] = None

    def set_input(self, mesh: TriangleMesh) -> None:
        """Use a copy of ``mesh``, computing any normals it lacks."""
        if not isinstance(mesh, TriangleMesh):
            raise TypeError("the input must be a TriangleMesh")
        if mesh.point_normals is not None and mesh.cell_normals is not None:
            logger.info("normal data is available")
        else:
            logger.warning("generating normal data")
        self._mesh = mesh.with_normals()
        self._tree = cKDTree(self._mesh.points)

    def _require_mesh(self) -> TriangleMesh:
        if self._mesh is None:
            raise ToolPathError("no mesh data has been provided")
        return self._mesh

    def insert_normals(self, search_radius: float, points) -> np.ndarray:
        """Average the mesh point normals around each point.

        Uses the normals within ``search_radius``, or that of the closest mesh
        point when none is that near.
        """
        mesh = self._require_mesh()
        pts = _as_points(points)
        if len(mesh.points) == 0:
            raise ToolPathError("failed to find closest point for normal computation")
        unit_normals = mesh.point_normals / np.where(
            np.linalg.norm(mesh.point_normals, axis=1, keepdims=True) > 0.0,
            np.linalg.norm(mesh.point_normals, axis=1, keepdims=True),
            1.0,
        )
        result = np.empty_like(pts)
        for k, point in enumerate(pts):
            ids = self._tree.query_ball_point(point, search_radius)
            if not ids:
                logger.warning("no points found within radius for normal averaging, using closest")
                _, idx = self._tree.query(point, k=1)
                ids = [int(idx)]
            result[k] = _unit(unit_normals[ids].mean(axis=0))
        return result

    def generate(self) -> list[list[list[np.ndarray]]]:
        """Return one tool path per cutting plane that meets the mesh.

        Each tool path is a list of segments of 4x4 poses; every other path
        runs in the opposite direction.
        """
        mesh = self._require_mesh()
        cfg = self.config
        if len(mesh.faces) == 0:
            raise ToolPathError("the mesh has no faces to slice")

        _, axis_x, axis_y, _, _ = oriented_bounding_box(mesh.points)
        transform = np.eye(4)
        transform[:3, :3] = _frame(axis_x, axis_y)
        transform[:3, 3] = mesh.center_of_mass()
        inverse = np.linalg.inv(transform)

        moved = _apply(transform, mesh.points)
        low, high = moved.min(axis=0), moved.max(axis=0)
        half_ext = (high - low) / 2.0
        center = low + half_ext

        angle = cfg.raster_rot_offset
        raster_dir = np.array([-math.sin(angle), math.cos(angle), 0.0])
        corners = np.array(list(itertools.product((1.0, -1.0), repeat=3))) * half_ext
        projections = corners @ raster_dir
        max_coeff, min_coeff = float(projections.max()), float(projections.min())
        num_planes = int(math.ceil((max_coeff - min_coeff) / cfg.raster_spacing))
        start = center + min_coeff * raster_dir

        rasters: list[list[tuple[np.ndarray, np.ndarray]]] = []
        for i in range(num_planes + 1):
            location = start + i * cfg.raster_spacing * raster_dir
            cut_points, segments = slice_mesh(moved, mesh.faces, location, raster_dir)
            lines = strip_segments(segments)
            logger.debug("raster %d has %d lines and %d points", i, len(lines), len(cut_points))
            if not lines:
                continue

            raster_ids = [list(dict.fromkeys(line)) for line in lines]
            raster_ids = [ids for ids in raster_ids if ids]
            if not raster_ids:
                continue

            raster_ids = remove_redundant(raster_ids)
            raster_ids = merge_raster_segments(cut_points, cfg.min_hole_size, raster_ids)
            if rasters and rasters[-1]:
                reference = _apply(transform, rasters[-1][0][0][:1])[0]
                raster_ids = rectify_direction(cut_points, reference, raster_ids)

            raster: list[tuple[np.ndarray, np.ndarray]] = []
            for ids in raster_ids:
                segment_points = cut_points[ids]
                line_length = compute_length(segment_points)
                if line_length > cfg.min_segment_size and len(segment_points) > 1:
                    resampled = resample_spline(segment_points, line_length, cfg.point_spacing)
                    original = _apply(inverse, resampled)
                    normals = self.insert_normals(cfg.search_radius, original)
                    raster.append((original, normals))
            rasters.append(raster)

        return _to_poses(rasters)