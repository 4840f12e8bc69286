[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "agentcrew"
version = "0.1.0"
description = "Building blocks for coordinating teams of AI coding agents: message protocol, permission gate, Claude CLI session manager, NATS bridge and SQLite models."
requires-python = ">=3.10"
keywords = [
    "agents",
    "claude",
    "nats",
    "orchestration",
    "permissions",
    "sqlite",
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
    "Topic :: Software Development :: Libraries :: Application Frameworks",
]
dependencies = [
    "sqlalchemy>=2.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[tool.hatch.build.targets.wheel]
packages = ["agentcrew"]

[tool.hatch.build.targets.sdist]
include = [
    "agentcrew",
    "tests",
]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
