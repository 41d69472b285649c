"""Conversion of registry+v1 bundles into plain+v0 bundles."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

import yaml

from .annotations import parse_annotations_file
from .bundlefs import BundleFS, MemoryFS

MAX_NAME_LENGTH = 63

INSTALL_MODE_OWN_NAMESPACE = "OwnNamespace"
INSTALL_MODE_SINGLE_NAMESPACE = "SingleNamespace"
INSTALL_MODE_MULTI_NAMESPACE = "MultiNamespace"
INSTALL_MODE_ALL_NAMESPACES = "AllNamespaces"

_MANIFESTS_DIR = "manifests"
_ALPHANUMS = "bcdfghjklmnpqrstvwxz2456789"
_RBAC_GROUP = "rbac.authorization.k8s.io"
_RBAC_API_VERSION = f"{_RBAC_GROUP}/v1"


@dataclass
class RegistryV1:
    """The parsed content of a registry+v1 bundle; objects are plain dictionaries."""

    package_name: str = ""
    csv: dict[str, Any] = field(default_factory=dict)
    crds: list[dict[str, Any]] = field(default_factory=list)
    others: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class Plain:
    objects: list[dict[str, Any]] = field(default_factory=list)


def _nested(data: Any, *keys: str) -> dict[str, Any]:
    for key in keys:
        if not isinstance(data, Mapping):
            return {}
        data = data.get(key)
    return data if isinstance(data, dict) else {}


def _go_list(values: Iterable[str]) -> str:
    return "[" + " ".join(values) + "]"


def _decode_objects(data: bytes, name: str) -> list[dict[str, Any]]:
    try:
        documents = list(yaml.safe_load_all(data))
    except yaml.YAMLError as exc:
        raise ValueError(f'read "{name}": {exc}') from exc
    objects = []
    for document in documents:
        if document is None:
            continue
        if not isinstance(document, dict):
            raise ValueError(f'read "{name}": object is not a mapping')
        if not document.get("kind"):
            raise ValueError(f"read \"{name}\": Object 'Kind' is missing")
        objects.append(document)
    return objects


def registry_v1_to_plain(fsys: BundleFS) -> MemoryFS:
    """Convert a registry+v1 bundle into a plain+v0 bundle with a single manifest."""
    annotations_file = parse_annotations_file(fsys.read_bytes("metadata/annotations.yaml"))
    registry = RegistryV1(package_name=annotations_file.annotations.package_name)

    objects: list[dict[str, Any]] = []
    for name in fsys.list_dir(_MANIFESTS_DIR):
        path = f"{_MANIFESTS_DIR}/{name}"
        if fsys.is_dir(path):
            raise ValueError(
                f'subdirectories are not allowed within the "{_MANIFESTS_DIR}" directory '
                f'of the bundle image filesystem: found "{path}"'
            )
        objects.extend(_decode_objects(fsys.read_bytes(path), name))

    for obj in objects:
        kind = obj.get("kind")
        if kind == "ClusterServiceVersion":
            registry.csv = obj
        elif kind == "CustomResourceDefinition":
            registry.crds.append(obj)
        else:
            registry.others.append(obj)

    plain = simple(registry)
    manifest = "".join(
        f"---\n{yaml.safe_dump(obj, sort_keys=True, default_flow_style=False)}\n" for obj in plain.objects
    )
    return MemoryFS({f"{_MANIFESTS_DIR}/manifest.yaml": manifest})


def _validate_target_namespaces(supported: set[str], install_namespace: str, target_namespaces: list[str]) -> None:
    targets = set(target_namespaces)
    if len(targets) == 0:
        if INSTALL_MODE_ALL_NAMESPACES in supported:
            return
    elif len(targets) == 1:
        if "" in targets and INSTALL_MODE_ALL_NAMESPACES in supported:
            return
        if INSTALL_MODE_SINGLE_NAMESPACE in supported:
            return
        if INSTALL_MODE_OWN_NAMESPACE in supported and target_namespaces[0] == install_namespace:
            return
    elif INSTALL_MODE_MULTI_NAMESPACE in supported:
        return
    raise ValueError(
        f"supported install modes {_go_list(sorted(supported))} "
        f"do not support target namespaces {_go_list(target_namespaces)}"
    )


def simple(registry: RegistryV1) -> Plain:
    """Convert with the suggested namespace and all target namespaces."""
    return convert(registry, "", None)


def _sa_name_or_default(name: str | None) -> str:
    return name or "default"


def _metadata(name: str, namespace: str = "", labels=None, annotations=None) -> dict[str, Any]:
    out: dict[str, Any] = {"name": name}
    if namespace:
        out["namespace"] = namespace
    if labels:
        out["labels"] = dict(labels)
    if annotations:
        out["annotations"] = dict(annotations)
    return out


def _service_account(namespace: str, name: str) -> dict[str, Any]:
    return {"apiVersion": "v1", "kind": "ServiceAccount", "metadata": _metadata(name, namespace)}


def _role(namespace: str, name: str, rules: list) -> dict[str, Any]:
    return {"apiVersion": _RBAC_API_VERSION, "kind": "Role", "metadata": _metadata(name, namespace), "rules": rules}


def _cluster_role(name: str, rules: list) -> dict[str, Any]:
    return {"apiVersion": _RBAC_API_VERSION, "kind": "ClusterRole", "metadata": _metadata(name), "rules": rules}


def _subjects(sa_namespace: str, sa_names: Iterable[str]) -> list[dict[str, str]]:
    return [{"kind": "ServiceAccount", "namespace": sa_namespace, "name": sa} for sa in sa_names]


def _role_binding(namespace: str, name: str, role_name: str, sa_namespace: str, *sa_names: str) -> dict[str, Any]:
    return {
        "apiVersion": _RBAC_API_VERSION,
        "kind": "RoleBinding",
        "metadata": _metadata(name, namespace),
        "subjects": _subjects(sa_namespace, sa_names),
        "roleRef": {"apiGroup": _RBAC_GROUP, "kind": "Role", "name": role_name},
    }


def _cluster_role_binding(name: str, role_name: str, sa_namespace: str, *sa_names: str) -> dict[str, Any]:
    return {
        "apiVersion": _RBAC_API_VERSION,
        "kind": "ClusterRoleBinding",
        "metadata": _metadata(name),
        "subjects": _subjects(sa_namespace, sa_names),
        "roleRef": {"apiGroup": _RBAC_GROUP, "kind": "ClusterRole", "name": role_name},
    }


def convert(
    registry: RegistryV1,
    install_namespace: str = "",
    target_namespaces: list[str] | None = None,
) -> Plain:
    """Turn a registry+v1 bundle into the objects that install it."""
    csv = registry.csv
    csv_metadata = _nested(csv, "metadata")
    csv_name = csv_metadata.get("name", "") or ""
    csv_annotations = csv_metadata.get("annotations") or {}
    spec = _nested(csv, "spec")

    if not install_namespace:
        install_namespace = csv_annotations.get("operatorframework.io/suggested-namespace", "") or ""
    if not install_namespace:
        install_namespace = f"{registry.package_name}-system"

    supported = {mode.get("type") for mode in spec.get("installModes") or [] if mode.get("supported")}
    if INSTALL_MODE_ALL_NAMESPACES not in supported:
        raise ValueError("AllNamespace install mode must be enabled")
    if target_namespaces is None:
        target_namespaces = [""]
    target_namespaces = list(target_namespaces)

    _validate_target_namespaces(supported, install_namespace, target_namespaces)

    if _nested(spec, "apiservicedefinitions").get("owned"):
        raise ValueError("apiServiceDefintions are not supported")
    if spec.get("webhookdefinitions"):
        raise ValueError("webhookDefinitions are not supported")

    strategy = _nested(spec, "install", "spec")
    deployments: list[dict[str, Any]] = []
    service_accounts: dict[str, dict[str, Any]] = {}
    for dep in strategy.get("deployments") or []:
        dep_spec = dep.get("spec") or {}
        annotations = {**csv_annotations, **(_nested(dep_spec, "template", "metadata").get("annotations") or {})}
        annotations["olm.targetNamespaces"] = ",".join(target_namespaces)
        deployments.append(
            {
                "apiVersion": "apps/v1",
                "kind": "Deployment",
                "metadata": _metadata(dep.get("name", ""), install_namespace, dep.get("label"), annotations),
                "spec": dep_spec,
            }
        )
        sa_name = _sa_name_or_default(_nested(dep_spec, "template", "spec").get("serviceAccountName"))
        service_accounts[sa_name] = _service_account(install_namespace, sa_name)

    permissions = list(strategy.get("permissions") or [])
    cluster_permissions = list(strategy.get("clusterPermissions") or [])

    for permission in permissions + cluster_permissions:
        sa_name = _sa_name_or_default(permission.get("serviceAccountName"))
        service_accounts.setdefault(sa_name, _service_account(install_namespace, sa_name))

    # In AllNamespaces mode namespaced permissions are granted cluster-wide,
    # with their rules unchanged.
    if len(target_namespaces) == 1 and target_namespaces[0] == "":
        cluster_permissions += permissions
        permissions = []

    roles, role_bindings = [], []
    for permission in permissions:
        sa_name = _sa_name_or_default(permission.get("serviceAccountName"))
        name = generate_name(f"{csv_name}-{sa_name}", [csv_name, permission])
        roles.append(_role(install_namespace, name, permission.get("rules") or []))
        role_bindings.append(_role_binding(install_namespace, name, name, install_namespace, sa_name))

    cluster_roles, cluster_role_bindings = [], []
    for permission in cluster_permissions:
        sa_name = _sa_name_or_default(permission.get("serviceAccountName"))
        name = generate_name(f"{csv_name}-{sa_name}", [csv_name, permission])
        cluster_roles.append(_cluster_role(name, permission.get("rules") or []))
        cluster_role_bindings.append(_cluster_role_binding(name, name, install_namespace, sa_name))

    namespace = {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": install_namespace}}
    objects = [namespace]
    objects += [sa for name, sa in service_accounts.items() if name != "default"]
    objects += roles + role_bindings + cluster_roles + cluster_role_bindings
    objects += list(registry.crds) + list(registry.others) + deployments
    return Plain(objects=objects)


def _fnv32a(data: bytes) -> int:
    value = 0x811C9DC5
    for byte in data:
        value ^= byte
        value = (value * 0x01000193) & 0xFFFFFFFF
    return value


def generate_name(base: str, obj: Any) -> str:
    """Append a short hash of obj to base, keeping the result within the name length limit."""
    encoded = json.dumps(obj, sort_keys=True, default=str, separators=(",", ":")).encode()
    hash_str = "".join(_ALPHANUMS[ord(ch) % len(_ALPHANUMS)] for ch in str(_fnv32a(encoded)))
    if len(base) + len(hash_str) > MAX_NAME_LENGTH:
        base = base[: MAX_NAME_LENGTH - len(hash_str) - 1]
    return f"{base}-{hash_str}"