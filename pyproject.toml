[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "meshpaths"
version = "0.1.0"
description = "Tool path generation on triangle meshes: boundary edge paths, plane-slicer rasters and surface-walk rasters."
requires-python = ">=3.10"
keywords = ["tool path", "mesh", "raster", "path planning", "robotics", "geometry"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Manufacturing",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering",
]
dependencies = [
    "numpy",
    "scipy",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["meshpaths"]

[tool.pytest.ini_options]
addopts = "-ra"
