[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "maco"
version = "0.1.0"
description = "Master/minion remote execution: minion key registry, call dispatch, shell execution and reporting"
requires-python = ">=3.11"
keywords = ["remote-execution", "orchestration", "minion", "master", "key-management"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
]
dependencies = [
    "cryptography",
    "pyyaml",
    "tomli-w",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["maco"]

[tool.pytest.ini_options]
addopts = "-ra"
