"""Provisioner for registry+v1 bundles, stored as plain+v0 bundles."""

from __future__ import annotations

from .api import Bundle
from .bundlefs import BundleFS
from .convert import registry_v1_to_plain
from .plain import validate_bundle

PROVISIONER_ID = "core-rukpak-io-registry"


def handle_bundle(fsys: BundleFS, bundle: Bundle) -> BundleFS:
    """Convert a registry+v1 bundle and check the result as a plain bundle."""
    try:
        plain_fs = registry_v1_to_plain(fsys)
    except (OSError, ValueError) as exc:
        raise ValueError(f"convert registry+v1 bundle to plain+v0 bundle: {exc}") from exc
    try:
        validate_bundle(plain_fs)
    except ValueError as exc:
        raise ValueError(f"validate bundle: {exc}") from exc
    return plain_fs