"""Raster tool paths made by walking offset cuts across a mesh surface.

A first cut is made through the weighted centre of the mesh along its main
axis. Each further cut is a strip extruded from a copy of the previous path
moved sideways by the raster spacing, until the strips run off the mesh.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from typing import Optional

import numpy as np
from scipy.spatial.transform import Rotation

from .intersection import (
    closest_cell,
    find_cell,
    intersect_meshes,
    join_connected_lines,
    ray_intersections,
)
from .mesh import TriangleMesh, oriented_bounding_box
from .sequencing import compute_angle, sequence
from .spline import ParametricSpline
from .utilities import ToolPathError

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 1000
ANGLE_CORRECTION_THRESHOLD = (150.0 / 180.0) * math.pi
EXTRUDE_EXTEND_PERCENTAGE = 1.5
RAY_INTERSECTION_TOLERANCE = 0.001


def _empty_points() -> np.ndarray:
    return np.zeros((0, 3))


def _empty_faces() -> np.ndarray:
    return np.zeros((0, 3), dtype=np.int64)


def _unit(v: np.ndarray) -> np.ndarray:
    norm = float(np.linalg.norm(v))
    return v / norm if norm > 0.0 else np.asarray(v, dtype=float).copy()


def _points(values) -> np.ndarray:
    return np.asarray(values, dtype=float).reshape(-1, 3)


@dataclass
class SurfaceWalkConfig:
    """Settings of the surface walk raster generator."""

    point_spacing: float = 0.006
    raster_spacing: float = 0.05
    tool_offset: float = 0.0
    intersection_plane_height: float = 0.2
    min_hole_size: float = 0.01
    min_segment_size: float = 0.01
    raster_rot_offset: float = 0.0
    generate_extra_rasters: bool = False
    cut_direction: tuple[float, float, float] = (0.0, 0.0, 0.0)

    def __post_init__(self) -> None:
        if self.point_spacing <= 0.0:
            raise ValueError("point_spacing must be positive")
        if len(self.cut_direction) != 3:
            raise ValueError("cut_direction must have three components")


@dataclass
class ProcessPath:
    """One raster line with its normals, travel directions and cutting surface."""

    line: np.ndarray = field(default_factory=_empty_points)
    normals: np.ndarray = field(default_factory=_empty_points)
    derivatives: np.ndarray = field(default_factory=_empty_points)
    plane_points: np.ndarray = field(default_factory=_empty_points)
    plane_faces: np.ndarray = field(default_factory=_empty_faces)
    spline_points: np.ndarray = field(default_factory=_empty_points)


def flip_process_path(path: ProcessPath) -> ProcessPath:
    """Reverse a path; travel directions are reversed and negated."""
    derivatives = -path.derivatives[::-1]
    return replace(
        path,
        line=path.line[::-1].copy(),
        normals=path.normals[::-1].copy(),
        derivatives=derivatives.copy(),
        spline_points=path.line[::-1].copy(),
    )


def to_poses(paths) -> list[list[np.ndarray]]:
    """Turn each path into 4x4 poses: z along the normal, x along the travel."""
    result = []
    for path in paths:
        poses = []
        for point, normal, derivative in zip(path.line, path.normals, path.derivatives):
            u = np.asarray(normal, dtype=float)
            w = _unit(np.cross(u, derivative))
            v = _unit(np.cross(u, w))
            pose = np.eye(4)
            pose[:3, 0] = v
            pose[:3, 1] = -w
            pose[:3, 2] = u
            pose[:3, 3] = point
            poses.append(pose)
        result.append(poses)
    return result


class SurfaceWalkRasterGenerator:
    """Generates rasters by repeatedly offsetting a cut across the surface."""

    def __init__(self, config: Optional[SurfaceWalkConfig] = None):
        self.config = config if config is not None else SurfaceWalkConfig()
        self._mesh: Optional[TriangleMesh] = None
        self._paths: list[ProcessPath] = []

    def set_input(self, mesh: TriangleMesh) -> None:
        """Use a copy of ``mesh``, computing any normals it lacks."""
        if not isinstance(mesh, TriangleMesh):
            raise TypeError("the input must be a TriangleMesh")
        if mesh.point_normals is None or mesh.cell_normals is None:
            logger.warning("generating normal data")
        self._mesh = mesh.with_normals()
        self._paths = []

    def _require_mesh(self) -> TriangleMesh:
        if self._mesh is None:
            raise ToolPathError("no mesh data has been provided")
        return self._mesh

    def generate(self) -> list[list[list[np.ndarray]]]:
        """Return the rasters, each a tool path of one segment of 4x4 poses."""
        self._require_mesh()
        cfg = self.config
        if len(self._paths) != 1:
            if self.get_first_path() is None:
                raise ToolPathError("failed to generate the first path")

        for _ in range(MAX_ATTEMPTS):
            following = self.get_next_path(self._paths[-1], cfg.raster_spacing)
            if following is None:
                break
            self._paths.append(following)
        for _ in range(MAX_ATTEMPTS):
            following = self.get_next_path(self._paths[0], -cfg.raster_spacing)
            if following is None:
                break
            self._paths.insert(0, following)

        new_paths: list[ProcessPath] = []
        delete: list[int] = []
        for i, path in enumerate(self._paths):
            pieces = self.check_path_for_holes(path)
            if pieces:
                delete.append(i)
                new_paths.extend(pieces)

        first, last = self._paths[0], self._paths[-1]
        if delete:
            logger.info("deleting %d paths", len(delete))
        self._paths = [p for i, p in enumerate(self._paths) if i not in set(delete)]

        for path in new_paths:
            average = _unit(path.normals.sum(axis=0))
            flip = path.normals @ average < 0.0
            path.normals = np.where(flip[:, None], -path.normals, path.normals)
        self._paths.extend(new_paths)

        if cfg.generate_extra_rasters and self._paths:
            try:
                self._paths.insert(0, self.get_extra_path(first, -cfg.raster_spacing))
            except ToolPathError:
                logger.error("failed to generate path off leading edge")
            try:
                self._paths.append(self.get_extra_path(last, cfg.raster_spacing))
            except ToolPathError:
                logger.error("failed to generate path off trailing edge")

        if not self._paths:
            raise ToolPathError("all tool paths generated are empty")
        ordered = sequence(to_poses(self._paths))
        return [[segment] for segment in ordered]

    def get_first_path(self) -> Optional[ProcessPath]:
        """Cut the mesh along its main axis; return the first path or None."""
        mesh = self._require_mesh()
        self._paths = []
        start_points, start_normals = self.create_start_curve()
        b = mesh.bounds()
        size = max(abs(b[1] - b[0]), abs(b[3] - b[2]), abs(b[5] - b[4]))
        surface = self.extrude_spline_to_surface(start_points, start_normals, size)
        if surface is None:
            return None
        line = self.find_intersection_line(*surface)
        if line is None:
            logger.debug("no intersection found")
            return None
        self.compute_surface_line_normals(line)
        path = self.get_next_path(ProcessPath(plane_points=line), 0.0)
        if path is not None:
            self._paths.append(path)
        return path

    def get_next_path(
        self, this_path: ProcessPath, dist: float = 0.0, test_self_intersection: bool = True
    ) -> Optional[ProcessPath]:
        """Return the path ``dist`` to the side of ``this_path``, or None.

        With ``dist`` 0 the path is made from the points of the given
        path's cutting surface instead.
        """
        cfg = self.config
        if dist == 0.0 and len(this_path.plane_points) < 2:
            logger.debug("no path offset and no intersection plane given")
            return None
        if dist != 0.0:
            offset = self.create_offset_line(this_path.line, this_path.normals, this_path.derivatives, dist)
            if offset is None:
                return None
            offset_points, offset_normals = offset
        else:
            if len(this_path.plane_points) < 4:
                return None
            offset_points = self.resample_points(this_path.plane_points)
            offset_normals = self.compute_surface_line_normals(offset_points)
        surface = self.extrude_spline_to_surface(offset_points, offset_normals, cfg.intersection_plane_height)
        if surface is None:
            return None
        plane_points, plane_faces = surface

        line = self.find_intersection_line(plane_points, plane_faces)
        if line is None:
            logger.debug("no intersection found for creating spline")
            return None

        if test_self_intersection and self._paths:
            for other in (self._paths[-1], self._paths[0]):
                found, _ = intersect_meshes(plane_points, plane_faces, other.plane_points, other.plane_faces)
                if len(found) > 0:
                    logger.debug("self intersection found")
                    return None

        points, normals, derivatives = self.smooth_data(line)
        if len(points) < 2:
            return None
        result = ProcessPath(points, normals, derivatives, plane_points, plane_faces, line)
        if dist != 0.0:
            origin = this_path.line[0]
            if np.sum((origin - points[0]) ** 2) > np.sum((origin - points[-1]) ** 2):
                result = flip_process_path(result)
        return result

    def get_extra_path(self, last_path: ProcessPath, dist: float) -> ProcessPath:
        """Copy ``last_path`` moved ``dist`` sideways, off the edge of the part."""
        if dist == 0.0:
            raise ToolPathError("no offset given, cannot generate extra path")
        offset = self.create_offset_line(last_path.line, last_path.normals, last_path.derivatives, dist)
        if offset is None:
            raise ToolPathError("could not create offset line")
        points, normals, derivatives = self.smooth_data(offset[0])
        return ProcessPath(points, normals, derivatives, spline_points=offset[0])

    def check_path_for_holes(self, path: ProcessPath) -> list[ProcessPath]:
        """Split a path where it crosses holes wider than the minimum hole size.

        Returns the pieces, or an empty list when the path is continuous.
        """
        mesh = self._require_mesh()
        line = self.find_intersection_line(path.plane_points, path.plane_faces)
        if line is None:
            return []
        pieces: list[ProcessPath] = []

        def add_piece(ids: range) -> None:
            piece = line[list(ids)]
            if len(piece) >= 4:
                piece = self.resample_points(piece)
            self.compute_surface_line_normals(piece)
            made = self.get_next_path(ProcessPath(plane_points=piece), 0.0, False)
            if made is not None:
                pieces.append(made)

        prev_start = 0
        for i in range(1, len(line) - 1):
            diff = 0.1 * (line[i] - line[i - 1])
            tol = float(np.linalg.norm(diff))
            cell1 = find_cell(mesh, line[i - 1] + diff, tol)
            cell2 = find_cell(mesh, line[i] - diff, tol) if cell1 is not None else None
            if cell1 is not None and cell1 == cell2:
                continue
            if float(np.linalg.norm(line[i] - line[i - 1])) > self.config.min_hole_size:
                add_piece(range(prev_start, i))
                prev_start = i
        if prev_start > 0:
            add_piece(range(prev_start, len(line)))
        return pieces

    def create_start_curve(self) -> tuple[np.ndarray, np.ndarray]:
        """Three points through the area-weighted centre along the raster axis, with normals."""
        mesh = self._require_mesh()
        center_sum = np.zeros(3)
        normal_sum = np.zeros(3)
        area_sum = 0.0
        for cell in range(len(mesh.faces)):
            center, normal, area = mesh.cell_centroid_data(cell)
            center_sum += center * area
            normal_sum += normal * area
            area_sum += area
        if area_sum <= 0.0:
            raise ToolPathError("the mesh has no area")
        avg_center = center_sum / area_sum
        avg_norm = normal_sum / area_sum

        _, axis_max, axis_mid, axis_min, sizes = oriented_bounding_box(mesh.points)
        cut_dir = np.asarray(self.config.cut_direction, dtype=float)
        rotation_axis = axis_min
        if not np.allclose(cut_dir, 0.0):
            n = _unit(avg_norm)
            raster_axis = _unit(cut_dir - (cut_dir @ n) * n) * np.linalg.norm(axis_max)
            rotation_axis = n
        elif sizes[0] > 0.0 and sizes[1] / sizes[0] > 0.99:
            raster_axis = (_unit(axis_max) + _unit(axis_mid)) * np.linalg.norm(axis_max)
        else:
            raster_axis = axis_max
        if not np.any(rotation_axis):
            rotation_axis = avg_norm
        rotation = Rotation.from_rotvec(self.config.raster_rot_offset * _unit(rotation_axis))
        raster_axis = rotation.apply(raster_axis)

        points = np.array([avg_center + raster_axis, avg_center, avg_center - raster_axis])
        normals = np.tile(_unit(avg_norm), (3, 1))
        return points, normals

    def find_intersection_line(self, cut_points, cut_faces) -> Optional[np.ndarray]:
        """The connected curve where the cutting surface meets the mesh, or None."""
        mesh = self._require_mesh()
        faces = np.asarray(cut_faces, dtype=np.int64).reshape(-1, 3)
        if len(faces) < 1:
            logger.error("the cutting surface has no cells, cannot compute intersection")
            return None
        points, segments = intersect_meshes(mesh.points, mesh.faces, cut_points, faces)
        if len(points) <= 1:
            return None
        joined = join_connected_lines(points, segments, self.config.min_segment_size)
        if len(joined) == 0:
            logger.error("no connected lines were found")
            return None
        return joined

    def resample_points(self, points) -> np.ndarray:
        """Half as many points along a spline, with both ends pushed outward."""
        pts = _points(points)
        count = len(pts) // 2
        if count < 2:
            raise ValueError("resampling needs at least four points")
        spline = ParametricSpline(pts)
        new = np.asarray(spline.evaluate(np.arange(count) / (count - 1)), dtype=float)
        new[-1] = new[-1] + (new[-1] - new[-2])
        new[0] = new[0] + (new[0] - new[1])
        return new

    def smooth_data(self, spline_points) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Evenly spaced points on a spline, with surface normals and unit directions."""
        pts = _points(spline_points)
        length = float(np.linalg.norm(np.diff(pts, axis=0), axis=1).sum()) if len(pts) > 1 else 0.0
        num = int(math.ceil(length / self.config.point_spacing)) + 1
        du = 1.0 / num
        spline = ParametricSpline(pts)
        us = np.arange(num + 1) * du
        points = np.asarray(spline.evaluate(us), dtype=float).reshape(-1, 3)
        before = np.asarray(spline.evaluate(us - du), dtype=float).reshape(-1, 3)
        after = np.asarray(spline.evaluate(us + du), dtype=float).reshape(-1, 3)
        derivatives = np.array([_unit(d) for d in after - before])
        return points, self.compute_surface_line_normals(points), derivatives

    def compute_surface_line_normals(self, points) -> np.ndarray:
        """Normal of the closest mesh cell for each point."""
        mesh = self._require_mesh()
        pts = _points(points)
        if len(mesh.faces) == 0:
            raise ToolPathError("the mesh has no cells to take normals from")
        return np.array([mesh.cell_normals[closest_cell(mesh, p)[1]] for p in pts]).reshape(-1, 3)

    def create_offset_line(self, line, line_normals, derivatives, dist: float):
        """Move each point ``dist`` across its travel direction on the surface.

        Returns ``(points, normals)`` with both ends pushed outward, or None
        when the normals and directions do not match the points.
        """
        if line_normals is None or derivatives is None:
            logger.error("could not create offset line")
            return None
        pts = _points(line)
        nrm = _points(line_normals)
        der = _points(derivatives)
        if len(nrm) != len(der) or len(nrm) != len(pts) or len(pts) < 2:
            logger.error("could not create offset line")
            return None
        offset_dir = None
        new = np.empty_like(pts)
        for i, (p, n, d) in enumerate(zip(pts, nrm, der)):
            w = _unit(np.cross(n, d))
            if offset_dir is not None and np.any(offset_dir) and np.any(w):
                if compute_angle(offset_dir, w) > ANGLE_CORRECTION_THRESHOLD:
                    w = -w
            offset_dir = w
            new[i] = p + w * dist
        new[-1] = new[-1] + (new[-1] - new[-2])
        new[0] = new[0] + (new[0] - new[1])
        return new, self.compute_surface_line_normals(new)

    @staticmethod
    def _strip_faces(count: int) -> np.ndarray:
        faces = []
        for i in range(count - 1):
            s = 2 * i
            faces.append((s, s + 1, s + 3))
            faces.append((s, s + 3, s + 2))
        return np.asarray(faces, dtype=np.int64).reshape(-1, 3)

    def extrude_spline_to_surface(self, line, normals, intersection_dist: float):
        """Strip of triangles through the line, spanning the surface along each normal.

        Returns ``(points, faces)``, or None without normals.
        """
        if normals is None:
            logger.error("no normals, cannot create surface from spline")
            return None
        mesh = self._require_mesh()
        pts = _points(line)
        nrm = _points(normals)
        out = []
        for p, n in zip(pts, nrm):
            n = _unit(n)
            source = p + intersection_dist * n
            target = p - intersection_dist * n
            hits = _empty_points()
            if np.any(source != target):
                hits = ray_intersections(mesh, source, target, RAY_INTERSECTION_TOLERANCE)
            a, b = source, target
            if len(hits) > 0:
                direction = hits[0] - p
                dist = float(np.linalg.norm(direction))
                if dist > RAY_INTERSECTION_TOLERANCE:
                    unit = direction / dist
                    a = hits[0] - EXTRUDE_EXTEND_PERCENTAGE * dist * unit
                    b = p + EXTRUDE_EXTEND_PERCENTAGE * dist * unit
            out.extend([a, b])
        return np.asarray(out, dtype=float).reshape(-1, 3), self._strip_faces(len(pts))

    def create_surface_from_spline(self, line, normals, dist: float):
        """Strip of triangles ``dist`` above and below the line along its normals."""
        if normals is None:
            logger.error("no normals, cannot create surface from spline")
            return None
        pts = _points(line)
        nrm = np.array([_unit(n) for n in _points(normals)]).reshape(-1, 3)
        out = np.empty((2 * len(pts), 3))
        out[0::2] = pts + dist * nrm
        out[1::2] = pts - dist * nrm
        return out, self._strip_faces(len(pts))