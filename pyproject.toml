[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kissmatch"
version = "0.1.0"
description = "Point cloud registration helpers: fast FPFH features, feature matching and geometry utilities"
requires-python = ">=3.10"
keywords = ["point cloud", "registration", "fpfh", "feature matching", "lidar"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Science/Research",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
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
packages = ["kissmatch"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
