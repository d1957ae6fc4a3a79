[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "nmanager"
version = "0.1.0"
description = "Alert notification building blocks: alert models, templating, silencing, buffering, a webhook receiver and tenant sidecars"
requires-python = ">=3.10"
keywords = ["alerts", "notifications", "alertmanager", "webhook", "monitoring", "tenants"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
]
dependencies = [
    "jinja2",
    "pyyaml",
    "requests",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
nmanager-k8s-sidecar = "nmanager.k8s_sidecar:main"
nmanager-ks-sidecar = "nmanager.ks_sidecar:main"

[tool.hatch.build.targets.wheel]
packages = ["nmanager"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
