[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tinyreactor"
version = "0.1.0"
description = "Reactor-style building blocks: timestamps, timer queues, a timing wheel and buffered TCP connections"
requires-python = ">=3.10"
dependencies = []
keywords = ["reactor", "timer", "timing-wheel", "tcp", "networking"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["tinyreactor"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
