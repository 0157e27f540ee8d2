[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "layerscan"
version = "0.1.0"
description = "Storage models, an SQLite datastore and API helpers for scanning container image layers for vulnerabilities"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "containers",
    "vulnerabilities",
    "security",
    "image-layers",
    "ancestry",
    "sqlite",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security",
    "Topic :: Database",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["layerscan"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
