[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ferrolink"
version = "0.1.0"
description = "Agent and client for remote system monitoring and chunked file transfer over a line-delimited JSON protocol"
requires-python = ">=3.10"
dependencies = ["psutil"]
keywords = ["monitoring", "remote", "agent", "file-transfer", "metrics", "asyncio"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Framework :: AsyncIO",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest", "pytest-asyncio"]

[project.scripts]
ferrolink-agent = "ferrolink.agent:main"
ferrolink-client = "ferrolink.client:main"

[tool.hatch.build.targets.wheel]
packages = ["ferrolink"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
