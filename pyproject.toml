[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sqlitepool"
version = "0.1.0"
description = "SQLite client with separate read and write connection pools, WAL defaults and file-based migrations"
requires-python = ">=3.10"
dependencies = []
keywords = ["sqlite", "wal", "database", "migrations", "connection-pool"]
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
    "Topic :: Database",
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Environment :: Console",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
mig8 = "sqlitepool.mig8:main"

[tool.hatch.build.targets.wheel]
packages = ["sqlitepool"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
