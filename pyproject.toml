[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "slam3d"
version = "0.1.0"
description = "A generic frontend for graph-based simultaneous localization and mapping in 3D"
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = ["slam", "mapping", "pose graph", "robotics", "localization"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["slam3d"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
