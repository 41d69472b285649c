[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rukpak"
version = "0.1.0"
description = "Bundle and BundleDeployment model, plain and registry+v1 bundle handling, and safe CRD upgrade checks"
requires-python = ">=3.10"
keywords = [
    "kubernetes",
    "operators",
    "bundles",
    "crd",
    "provisioner",
    "olm",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Software Distribution",
]
dependencies = [
    "pyyaml>=6.0",
    "jsonschema>=4.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[project.scripts]
rukpak-unpack = "rukpak.unpack:main"

[tool.hatch.build.targets.wheel]
packages = ["rukpak"]

[tool.hatch.build.targets.sdist]
include = ["rukpak", "tests", "pyproject.toml", "README.md"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 120
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
