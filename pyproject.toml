[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mudbus"
version = "0.1.0"
description = "A small Modbus TCP slave with DHCP and DNS client helpers and Internet checksums"
requires-python = ">=3.10"
dependencies = []
keywords = ["modbus", "modbus-tcp", "slave", "dhcp", "dns", "checksum"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
mudbus = "mudbus.slave:main"

[tool.hatch.build.targets.wheel]
packages = ["mudbus"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
