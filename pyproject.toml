[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pgrpc"
version = "0.1.0"
description = "Generate Rust type definitions from PostgreSQL catalog metadata: composite types, domains, enums and task-queue payloads."
requires-python = ">=3.10"
dependencies = []
keywords = ["postgresql", "codegen", "rust", "introspection", "task-queue"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database",
    "Topic :: Software Development :: Code Generators",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["pgrpc"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
