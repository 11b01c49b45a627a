[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "smlmarketsync"
version = "0.1.0"
description = "Push inventory, barcode, price, customer and stock balance changes from a PostgreSQL database to a remote SQL-over-HTTP API"
requires-python = ">=3.10"
keywords = [
    "postgresql",
    "synchronisation",
    "inventory",
    "triggers",
    "change-tracking",
    "stock-balance",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database",
    "Topic :: Office/Business",
]
dependencies = [
    "requests>=2.28",
    "sqlalchemy>=2.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
    "responses>=0.23",
]

[project.scripts]
smlmarketsync = "smlmarketsync.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["smlmarketsync"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
ignore_missing_imports = true
