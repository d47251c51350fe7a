"""Triangle meshes with optional per-point and per-cell normals."""

from __future__ import annotations

from typing import Optional

import numpy as np


def _normalize_rows(vectors: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    safe = np.where(norms > 0.0, norms, 1.0)
    return vectors / safe


class TriangleMesh:
    """A mesh of triangles over a shared list of points."""

    def __init__(self, points, faces, point_normals=None, cell_normals=None):
        self.points = np.asarray(points, dtype=float).reshape(-1, 3)
        face_array = np.asarray(faces, dtype=np.int64)
        if face_array.size == 0:
            face_array = face_array.reshape(0, 3)
        if face_array.ndim != 2 or face_array.shape[1] != 3:
            raise ValueError("faces must be triangles given as rows of three point indices")
        if face_array.size and (face_array.min() < 0 or face_array.max() >= len(self.points)):
            raise ValueError("a face refers to a point that does not exist")
        self.faces = face_array
        self.point_normals = self._check_normals(point_normals, len(self.points), "point")
        self.cell_normals = self._check_normals(cell_normals, len(self.faces), "cell")

    @staticmethod
    def _check_normals(normals, count: int, kind: str) -> Optional[np.ndarray]:
        if normals is None:
            return None
        array = np.asarray(normals, dtype=float).reshape(-1, 3)
        if len(array) != count:
            raise ValueError(f"expected {count} {kind} normals, got {len(array)}")
        return array

    def bounds(self) -> tuple[float, float, float, float, float, float]:
        """Axis-aligned bounds as (xmin, xmax, ymin, ymax, zmin, zmax)."""
        if len(self.points) == 0:
            raise ValueError("an empty mesh has no bounds")
        low, high = self.points.min(axis=0), self.points.max(axis=0)
        return (float(low[0]), float(high[0]), float(low[1]), float(high[1]), float(low[2]), float(high[2]))

    def _face_normals(self) -> np.ndarray:
        corners = self.points[self.faces]
        crosses = np.cross(corners[:, 1] - corners[:, 0], corners[:, 2] - corners[:, 0])
        return _normalize_rows(crosses)

    def with_normals(self) -> "TriangleMesh":
        """Return a copy with any missing point or cell normals computed.

        Cell normals follow the winding of each triangle; point normals are the
        normalized sum of the normals of the cells that use the point.
        """
        face_normals = self._face_normals()
        cell_normals = self.cell_normals if self.cell_normals is not None else face_normals
        point_normals = self.point_normals
        if point_normals is None:
            sums = np.zeros_like(self.points)
            for corner in range(3):
                np.add.at(sums, self.faces[:, corner], face_normals)
            point_normals = _normalize_rows(sums)
        return TriangleMesh(self.points.copy(), self.faces.copy(), point_normals.copy(), cell_normals.copy())

    def center_of_mass(self) -> np.ndarray:
        """Unweighted mean of the mesh points."""
        if len(self.points) == 0:
            raise ValueError("an empty mesh has no center of mass")
        return self.points.mean(axis=0)

    def cell_centroid_data(self, cell_id: int) -> tuple[np.ndarray, np.ndarray, float]:
        """Return the centroid, normal and area of one triangle."""
        if not 0 <= cell_id < len(self.faces):
            raise IndexError(f"cell {cell_id} does not exist")
        p0, p1, p2 = self.points[self.faces[cell_id]]
        cross = np.cross(p1 - p0, p2 - p0)
        area = 0.5 * float(np.linalg.norm(cross))
        if self.cell_normals is not None:
            normal = self.cell_normals[cell_id].copy()
        else:
            norm = np.linalg.norm(cross)
            normal = cross / norm if norm > 0.0 else cross
        return (p0 + p1 + p2) / 3.0, normal, area


def oriented_bounding_box(points):
    """Box aligned with the principal axes of a set of points.

    Returns ``(corner, max_axis, mid_axis, min_axis, sizes)``: the box spans
    ``corner`` plus any combination of the three axis vectors, which are
    scaled to the box extents, and ``sizes`` holds the covariance eigenvalues
    in decreasing order.
    """
    pts = np.asarray(points, dtype=float).reshape(-1, 3)
    if len(pts) == 0:
        raise ValueError("cannot compute a bounding box of no points")
    mean = pts.mean(axis=0)
    centered = pts - mean
    covariance = centered.T @ centered / len(pts)
    eigenvalues, eigenvectors = np.linalg.eigh(covariance)
    order = np.argsort(eigenvalues)[::-1]
    sizes = eigenvalues[order]
    axes = eigenvectors[:, order]
    projections = centered @ axes
    t_min, t_max = projections.min(axis=0), projections.max(axis=0)
    corner = mean + axes @ t_min
    extents = t_max - t_min
    return corner, extents[0] * axes[:, 0], extents[1] * axes[:, 1], extents[2] * axes[:, 2], sizes