[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "wxbridge"
version = "0.1.0"
description = "Observation-time authority, EXIF timestamp stamping, FTPS upload and update checks for aviation weather camera bridges"
requires-python = ">=3.10"
dependencies = []
keywords = ["aviation", "weather", "webcam", "exif", "ntp", "ftps"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Atmospheric Science",
    "Topic :: Multimedia :: Graphics",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["wxbridge"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
