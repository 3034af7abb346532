[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rockhalo"
version = "0.1.0"
description = "Centre finding, potentials and bound-halo properties of a dark-matter halo and its stars in N-body snapshots"
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = [
    "astronomy",
    "astrophysics",
    "n-body",
    "dark matter",
    "halo",
    "gravitational potential",
    "barnes-hut",
    "nfw",
    "merger tree",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Astronomy",
    "Topic :: Scientific/Engineering :: Physics",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["rockhalo"]

[tool.hatch.build.targets.sdist]
include = [
    "rockhalo",
    "tests",
]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
