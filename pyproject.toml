[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ecservices"
version = "0.1.0"
description = "Asyncio embedded-controller services: CRC, NVRAM, reset coordination, power button, storage bus types, interrupt passthrough, power policy, charger and USB Type-C handling"
requires-python = ">=3.10"
dependencies = []
keywords = ["embedded", "power-policy", "usb-pd", "type-c", "charger", "crc", "nvram", "debounce", "asyncio"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Framework :: AsyncIO",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Embedded Systems",
]

[project.optional-dependencies]
test = ["pytest", "pytest-asyncio"]

[tool.hatch.build.targets.wheel]
packages = ["ecservices"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
