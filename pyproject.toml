[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mosdns"
version = "5.0.0"
description = "A plugin-driven DNS forwarder core: configuration, plugin registry, domain and IP matchers, caches and DNS message helpers."
requires-python = ">=3.10"
keywords = ["dns", "forwarder", "hosts", "cache", "matcher", "rate-limit"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Name Service (DNS)",
]
dependencies = [
    "dnspython>=2.4",
    "pyyaml>=6.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[project.scripts]
mosdns = "mosdns.coremain.run:main"

[tool.hatch.build.targets.wheel]
packages = ["mosdns"]

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
