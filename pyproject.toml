[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "wsgateway"
version = "0.1.0"
description = "State-keeping core of a WebSocket push gateway: connection registry, sessions, topic subscriptions, customer binding, rate limiting, metrics, business commands and the framed business-process link."
requires-python = ">=3.11"
dependencies = []
keywords = [
    "websocket",
    "gateway",
    "pubsub",
    "topics",
    "push",
    "broadcast",
    "rate-limit",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP",
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["wsgateway"]

[tool.hatch.build.targets.sdist]
include = ["wsgateway", "tests", "pyproject.toml", "README.md"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
warn_redundant_casts = true
