# meshpaths

Generate tool paths over triangle meshes. Every generator returns a list of
tool paths. A tool path is a list of segments, and a segment is a list of
4x4 homogeneous poses held in numpy arrays. In each pose the x axis points
along the direction of travel and the z axis follows the surface normal.

## Installation

```
pip install .
```

To run the test suite, install the `test` extra:

```
pip install ".[test]"
pytest
```

## Meshes

A mesh is a `meshpaths.mesh.TriangleMesh`. You build it from an `(N, 3)`
array of vertices and an `(M, 3)` array of triangle vertex indices. Point
normals and cell normals are optional. `TriangleMesh.with_normals()` returns
a copy with any missing normals filled in: cell normals follow the winding
of each triangle, and point normals are the normalized sum of the normals of
the cells around them. The class also provides `bounds()`,
`center_of_mass()` and `cell_centroid_data(cell_id)`.

`meshpaths.mesh.oriented_bounding_box(points)` computes the principal-axis
bounding box of a point set.

## Generators

You use each generator in three steps:

1. Construct it with its configuration. Leave the configuration out to use the defaults.
2. Call `set_input(mesh)` with a `TriangleMesh`.
3. Call `generate()`.

When a generator cannot produce paths, it raises
`meshpaths.utilities.ToolPathError`.

### Boundary edges

`meshpaths.halfedge.HalfedgeEdgeGenerator` follows the open boundary loops
of a mesh and builds one single-segment tool path for each loop that has at
least `min_num_points` points. The paths come back longest first.

Its configuration is `HalfedgeConfig`. The following options control it:

- `min_num_points`: the fewest points a loop may have.
- `point_spacing_method` and `point_dist`: how the points along each loop are respaced.
- `normal_averaging`, `normal_search_radius` and `normal_influence_weight`: whether and how normals are smoothed.

`PointSpacingMethod` selects one of these methods:

- `NONE`
- `EQUAL_SPACING`
- `MIN_DISTANCE`
- `PARAMETRIC_SPLINE`

The same module provides `boundary_loops`, the spacing functions
`apply_equal_distance`, `apply_min_point_distance` and
`apply_parametric_spline`, and `average_normals`.

```python
import numpy as np
from meshpaths.mesh import TriangleMesh
from meshpaths.halfedge import HalfedgeConfig, HalfedgeEdgeGenerator, PointSpacingMethod

points = np.array([[0, 0, 0], [1, 0, 0], [1, 1, 0], [0, 1, 0]], dtype=float)
faces = np.array([[0, 1, 2], [0, 2, 3]])
mesh = TriangleMesh(points, faces)

generator = HalfedgeEdgeGenerator(
    HalfedgeConfig(point_spacing_method=PointSpacingMethod.NONE, min_num_points=3)
)
generator.set_input(mesh)
paths = generator.generate()  # one path, one segment of four poses
```

### Plane-slicer rasters

`meshpaths.plane_slicer.PlaneSlicerRasterGenerator` cuts the mesh with
evenly spaced parallel planes. The planes are aligned with the principal
axes of the mesh and turned by `raster_rot_offset`. Each cut is joined into
segments: segments whose ends lie closer than `min_hole_size` are merged,
and segments no longer than `min_segment_size` are dropped. The points along
each segment are resampled at `point_spacing`, and normals are averaged from
the mesh within `search_radius`. Consecutive rasters run in alternating
directions. All of these options are set in `PlaneSlicerConfig`.

The helpers `meshpaths.slicing.slice_mesh` and
`meshpaths.slicing.strip_segments` can be used on their own to take
plane–mesh cross sections and join them into polylines.

### Surface-walk rasters

`meshpaths.surface_walk.SurfaceWalkRasterGenerator` starts from a cut
through the area-weighted centre of the mesh, along its main axis or along
`cut_direction` when that is set. It then offsets the cut across the
surface one `raster_spacing` at a time, in both directions, until the cuts
run off the mesh. Rasters that cross holes wider than `min_hole_size` are
split into separate paths. With `generate_extra_rasters`, one more raster is
added past each edge of the part. The options are set in
`SurfaceWalkConfig`.

The finished paths are put in order by `meshpaths.sequencing.sequence`. It
sorts segments across the nominal cut direction and starts each segment at
the end nearer to where the previous one finished.

The geometric queries behind this generator live in
`meshpaths.intersection`:

- `intersect_meshes`
- `connected_line`
- `join_connected_lines`
- `ray_intersections`
- `find_cell`
- `closest_cell`

## Utilities

`meshpaths.utilities` provides:

- `flip_point_order`: reverse a path and turn each pose 180° about its z axis.
- `to_tool_paths_data`: split poses into points, normals and negated x axes, returned as `ToolPathSegmentData`.
- `to_rotation_matrix`: build a 3x3 matrix from three axis vectors.
- `create_tool_path_segment`: build a segment of poses from points and normals.

`meshpaths.spline.ParametricSpline` is a cubic spline through 3D points,
evaluated on the range [0, 1].

## What this package does not do

`meshpaths` is a library only. It has no command-line tool. It does not
read or write mesh files and does not display meshes or paths. You load
meshes yourself as numpy arrays, and you consume the returned poses in your
own code.