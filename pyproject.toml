[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "netlabs"
version = "0.1.0"
description = "Small asyncio network services: a toy DNS server and client, a TCP log collector, a length-prefixed JSON calculation protocol and a WebSocket chat server."
requires-python = ">=3.11"
dependencies = [
    "websockets>=10.1",
]
keywords = [
    "asyncio",
    "dns",
    "udp",
    "tcp",
    "websocket",
    "chat",
    "logging",
    "protocol",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Framework :: AsyncIO",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
    "Topic :: Internet :: Name Service (DNS)",
    "Topic :: Communications :: Chat",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
netlabs-dns-server = "netlabs.dns_server:main"
netlabs-dns-client = "netlabs.dns_client:main"
netlabs-log-server = "netlabs.log_server:main"
netlabs-log-client = "netlabs.log_client:main"
netlabs-calc-server = "netlabs.calc_server:main"
netlabs-calc-client = "netlabs.calc_client:main"
netlabs-chat-server = "netlabs.ws_server:main"

[tool.hatch.build.targets.wheel]
packages = ["netlabs"]

[tool.hatch.build.targets.sdist]
include = [
    "netlabs",
    "tests",
    "pyproject.toml",
]

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
