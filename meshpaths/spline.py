"""Parametric cubic spline through a sequence of 3D points."""

from __future__ import annotations

import numpy as np
from scipy.interpolate import CubicSpline


class ParametricSpline:
    """Cubic spline through 3D points, evaluated on the parameter range [0, 1].

    The parameter follows the arc length of the control polygon, or the point
    index when ``parameterize_by_length`` is false. Open curves have zero end
    slopes; closed curves join the last point back to the first smoothly.
    """

    def __init__(self, points, parameterize_by_length: bool = True, closed: bool = False):
        pts = np.asarray(points, dtype=float).reshape(-1, 3)
        if len(pts) == 0:
            raise ValueError("a spline needs at least one point")
        self.points = pts
        self.parameterize_by_length = parameterize_by_length
        self.closed = closed

        nodes = np.vstack([pts, pts[:1]]) if closed and len(pts) > 1 else pts
        gaps = np.linalg.norm(np.diff(nodes, axis=0), axis=1)
        self._length = float(gaps.sum())

        if parameterize_by_length:
            keep = np.concatenate([[True], gaps > 0.0])
            nodes = nodes[keep]
            params = np.concatenate([[0.0], np.cumsum(gaps[gaps > 0.0])])
        else:
            params = np.arange(len(nodes), dtype=float)

        self._constant = nodes[0].copy()
        if len(nodes) < 2:
            self._curve = None
            self._span = 0.0
        else:
            self._curve = CubicSpline(params, nodes, axis=0, bc_type="periodic" if closed else "clamped")
            self._span = float(params[-1])

    def evaluate(self, u) -> np.ndarray:
        """Return the point (or points) at parameter ``u``, clamped to [0, 1]."""
        u = np.clip(np.asarray(u, dtype=float), 0.0, 1.0)
        if self._curve is None:
            return np.broadcast_to(self._constant, u.shape + (3,)).copy()
        return np.asarray(self._curve(u * self._span))

    def length(self) -> float:
        """Length of the control polygon, closing segment included when closed."""
        return self._length