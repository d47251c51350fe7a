"""Tool path generation over triangle meshes: boundary edges, plane-slicer and surface-walk rasters."""

__version__ = "0.1.0"

__all__ = [
    "halfedge",
    "intersection",
    "mesh",
    "plane_slicer",
    "sequencing",
    "slicing",
    "spline",
    "surface_walk",
    "utilities",
]