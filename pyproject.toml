[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rln_prover"
version = "0.1.0"
description = "Building blocks of an RLN prover service: epoch tracking, rate-limit counters, registration handling, settings and metrics"
requires-python = ">=3.11"
dependencies = []
keywords = ["rln", "rate-limiting", "nullifier", "epoch", "prover", "metrics"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Topic :: Security :: Cryptography",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["rln_prover"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
