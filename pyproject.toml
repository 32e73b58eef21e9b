[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "srpclite"
version = "0.1.0"
description = "A small RPC framework with a pickle codec, HTTP CONNECT tunnelling, service discovery and broadcast calls"
requires-python = ">=3.10"
dependencies = []
keywords = ["rpc", "remote procedure call", "service discovery", "load balancing", "networking"]
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
    "Topic :: System :: Distributed Computing",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
srpclite-demo = "srpclite.demo:main"

[tool.hatch.build.targets.wheel]
packages = ["srpclite"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
