[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tunnelkit"
version = "0.1.0"
description = "Transport, network and DNS building blocks: datagram dialers, UDP packet proxies, a Happy Eyeballs v2 stream dialer and DNS resolvers over UDP and TCP"
requires-python = ">=3.11"
dependencies = [
    "dnspython",
]
keywords = ["dns", "udp", "tcp", "happy-eyeballs", "proxy", "networking", "dialer"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
    "Topic :: Internet :: Name Service (DNS)",
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Framework :: AsyncIO",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["tunnelkit"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
