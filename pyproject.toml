[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pairstore"
version = "0.1.0"
description = "A log-structured key-value storage node with commit log, memtable, SSTables, cache and vector clocks"
requires-python = ">=3.10"
dependencies = [
    "pyyaml",
]
keywords = [
    "key-value",
    "storage",
    "lsm-tree",
    "sstable",
    "memtable",
    "commit-log",
    "bloom-filter",
    "vector-clock",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database :: Database Engines/Servers",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["pairstore"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
