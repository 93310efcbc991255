[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "quoteledger"
version = "1.0.0"
description = "Append-only quote ledger with event sourcing, SQLite persistence and streaming subscriptions"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "event-sourcing",
    "ledger",
    "quotes",
    "pricing",
    "sqlite",
    "idempotency",
    "streaming",
]
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
    "Framework :: AsyncIO",
    "Topic :: Office/Business :: Financial",
    "Topic :: Database",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["quoteledger"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
