[build-system]
requires = ["setuptools>=64"]
build-backend = "setuptools.build_meta"

[project]
name = "maplight"
version = "0.1.0"
description = "Radiosity lighting and portal visibility for BSP map worlds"
requires-python = ">=3.10"
dependencies = []
keywords = ["bsp", "radiosity", "lightmap", "visibility", "portals", "level-design"]
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
    "Topic :: Multimedia :: Graphics :: 3D Rendering",
    "Topic :: Games/Entertainment",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.setuptools.packages.find]
include = ["maplight*"]

[tool.pytest.ini_options]
addopts = "-ra"
