[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "glbc"
version = "0.9.5"
description = "L7 load balancer management for cloud HTTP(S) load balancing: naming, storage pools and load balancer resource reconciliation"
requires-python = ">=3.10"
dependencies = []
keywords = ["load-balancer", "ingress", "url-map", "forwarding-rule", "ssl"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["glbc"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
