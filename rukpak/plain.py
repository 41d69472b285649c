"""The plain+v0 bundle format: a manifests directory of Kubernetes objects."""

from __future__ import annotations

import copy
import hashlib
from dataclasses import dataclass, field
from typing import Any

import yaml

from .api import BUNDLE_DEPLOYMENT_KIND, Bundle, BundleDeployment
from .bundlefs import BundleFS

PROVISIONER_ID = "core-rukpak-io-plain"
MANIFESTS_DIR = "manifests"

CORE_OWNER_KIND_KEY = "core.rukpak.io/owner-kind"
CORE_OWNER_NAME_KEY = "core.rukpak.io/owner-name"


@dataclass
class ChartFile:
    """One rendered template of a chart."""

    name: str
    data: bytes


@dataclass
class Chart:
    """A chart built from the objects of a bundle; it has no values."""

    metadata: dict[str, Any] = field(default_factory=dict)
    templates: list[ChartFile] = field(default_factory=list)


def _decode_objects(data: bytes, source: str) -> list[dict[str, Any]]:
    try:
        documents = list(yaml.safe_load_all(data))
    except yaml.YAMLError as exc:
        raise ValueError(f"read {source}: {exc}") from exc
    objects = []
    for document in documents:
        if document is None:
            continue
        if not isinstance(document, dict):
            raise ValueError(f"read {source}: object is not a mapping")
        if not document.get("kind"):
            raise ValueError(f"read {source}: Object 'Kind' is missing")
        objects.append(document)
    return objects


def get_bundle_objects(fsys: BundleFS) -> list[dict[str, Any]]:
    """Return every object of every file in the manifests directory, in file name order."""
    objects: list[dict[str, Any]] = []
    for name in fsys.list_dir(MANIFESTS_DIR):
        path = f"{MANIFESTS_DIR}/{name}"
        if fsys.is_dir(path):
            raise ValueError(
                f'subdirectories are not allowed within the "{MANIFESTS_DIR}" directory '
                f'of the bundle image filesystem: found "{path}"'
            )
        objects.extend(_decode_objects(fsys.read_bytes(path), path))
    return objects


def validate_bundle(fsys: BundleFS) -> None:
    """Raise ValueError unless the bundle holds at least one readable object."""
    try:
        objects = get_bundle_objects(fsys)
    except (OSError, ValueError) as exc:
        raise ValueError(f"get objects from bundle manifests: {exc}") from exc
    if not objects:
        raise ValueError(
            "invalid bundle: found zero objects: plain+v0 bundles are required to contain at least one object"
        )


def handle_bundle(fsys: BundleFS, bundle: Bundle) -> BundleFS:
    """Check a plain bundle and store it unchanged."""
    validate_bundle(fsys)
    return fsys


def _chart_from_bundle(fsys: BundleFS, bundle_deployment: BundleDeployment) -> Chart:
    try:
        objects = get_bundle_objects(fsys)
    except (OSError, ValueError) as exc:
        raise ValueError(f"read bundle objects from bundle: {exc}") from exc

    chart = Chart()
    for obj in objects:
        obj = copy.deepcopy(obj)
        metadata = obj.get("metadata") or {}
        obj["metadata"] = metadata
        labels = dict(metadata.get("labels") or {})
        labels[CORE_OWNER_KIND_KEY] = BUNDLE_DEPLOYMENT_KIND
        labels[CORE_OWNER_NAME_KEY] = bundle_deployment.metadata.name
        metadata["labels"] = labels
        data = yaml.safe_dump(obj, sort_keys=True, default_flow_style=False).encode()
        digest = hashlib.sha256(data).digest()
        chart.templates.append(ChartFile(name=f"object-{digest[:8].hex()}.yaml", data=data))
    return chart


def handle_bundle_deployment(fsys: BundleFS, bundle_deployment: BundleDeployment) -> tuple[Chart, None]:
    """Build a chart whose templates are the bundle's objects, labelled with their owner."""
    return _chart_from_bundle(fsys, bundle_deployment), None