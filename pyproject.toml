[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "payjoin"
version = "0.1.0"
description = "Payjoin building blocks: PSBT validation, receiver parameters and errors, OHTTP key handling"
requires-python = ">=3.10"
keywords = ["bitcoin", "payjoin", "psbt", "bip78", "bip77", "ohttp"]
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
    "Topic :: Office/Business :: Financial",
    "Topic :: Security :: Cryptography",
]
dependencies = [
    "cryptography",
    "httpx>=0.26",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["payjoin"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
