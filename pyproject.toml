[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mcpwire"
version = "0.1.0"
description = "Wire-level building blocks for Model Context Protocol sessions: JSON-RPC framing, method dispatch, tool argument validation and streamable HTTP helpers."
requires-python = ">=3.10"
keywords = ["mcp", "json-rpc", "model context protocol", "json schema", "streamable http"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Software Development :: Libraries :: Python Modules",
]
dependencies = [
    "jsonschema",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["mcpwire"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
