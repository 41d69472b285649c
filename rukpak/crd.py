"""Safety checks for upgrading a CustomResourceDefinition that is already installed.

CRDs and custom resources are plain dictionaries in their API form.
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from typing import Any, Iterable, Mapping

import jsonschema
from jsonschema.exceptions import SchemaError


class CRDValidationError(ValueError):
    """An upgrade of a CRD is unsafe, or could not be checked."""


class CRDClient(ABC):
    """The cluster access that CRD validation needs."""

    @abstractmethod
    def get_crd(self, name: str) -> dict[str, Any] | None:
        """Return the installed CRD of that name, or None when there is none."""

    @abstractmethod
    def list_resources(self, group: str, version: str, list_kind: str) -> list[dict[str, Any]]:
        """Return every custom resource of the kind, served at the given version."""


def _go_list(values: Iterable[str]) -> str:
    return "[" + " ".join(values) + "]"


def _spec(crd: Mapping[str, Any]) -> Mapping[str, Any]:
    return crd.get("spec") or {}


def _versions(crd: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
    return {v.get("name", ""): v for v in _spec(crd).get("versions") or []}


def _stored_versions(crd: Mapping[str, Any]) -> set[str]:
    return set((crd.get("status") or {}).get("storedVersions") or [])


def _crd_name(crd: Mapping[str, Any]) -> str:
    return (crd.get("metadata") or {}).get("name", "") or ""


def validate(client: CRDClient, new_crd: Mapping[str, Any]) -> None:
    """Raise CRDValidationError if replacing the installed CRD with new_crd is unsafe."""
    name = _crd_name(new_crd)
    old_crd = client.get_crd(name)
    if old_crd is None:
        # A CRD that does not exist yet is always safe to create.
        return

    try:
        validate_crd_compatibility(client, old_crd, new_crd)
    except CRDValidationError as exc:
        raise CRDValidationError(
            f'error validating existing CRs against new CRD\'s schema for "{name}": {exc}'
        ) from exc

    try:
        safe_storage_version_upgrade(old_crd, new_crd)
    except CRDValidationError as exc:
        raise CRDValidationError(f'risk of data loss updating "{name}": {exc}') from exc


def validate_crd_compatibility(client: CRDClient, old_crd: Mapping[str, Any], new_crd: Mapping[str, Any]) -> None:
    """Check that existing custom resources remain valid under the new CRD.

    Stored versions may not be removed; changed versions must accept the
    existing resources; added versions must accept them too unless a
    conversion webhook is configured.
    """
    old_versions = _versions(old_crd)
    new_versions = _versions(new_crd)

    removed = old_versions.keys() - new_versions.keys()
    invalid_removed = _stored_versions(old_crd) & removed
    if invalid_removed:
        raise CRDValidationError(f"cannot remove stored versions {_go_list(sorted(invalid_removed))}")

    old_spec = _spec(old_crd)
    group = old_spec.get("group", "") or ""
    list_kind = (old_spec.get("names") or {}).get("listKind", "") or ""

    similar = sorted(old_versions.keys() & new_versions.keys())
    changed = [v for v in similar if old_versions[v].get("schema") != new_versions[v].get("schema")]
    for version in changed:
        if old_versions[version].get("served"):
            _validate_existing_crs(client, group, version, list_kind, new_versions[version])

    added = sorted(new_versions.keys() - old_versions.keys())
    conversion = _spec(new_crd).get("conversion")
    if added and (conversion is None or conversion.get("strategy") == "None"):
        for added_version in added:
            for version in similar:
                if old_versions[version].get("served"):
                    _validate_existing_crs(client, group, version, list_kind, new_versions[added_version])


def _json_schema(schema: Any) -> Any:
    """Turn an OpenAPI v3 schema of a CRD into a JSON schema."""
    if not isinstance(schema, Mapping):
        return schema
    out: dict[str, Any] = {}
    for key, value in schema.items():
        if key.startswith("x-kubernetes-") or key == "nullable":
            continue
        if key in ("properties", "patternProperties", "definitions"):
            out[key] = {name: _json_schema(sub) for name, sub in (value or {}).items()}
        elif key in ("items", "additionalProperties", "additionalItems", "not"):
            out[key] = [_json_schema(s) for s in value] if isinstance(value, list) else _json_schema(value)
        elif key in ("allOf", "anyOf", "oneOf"):
            out[key] = [_json_schema(s) for s in value or []]
        else:
            out[key] = copy.deepcopy(value)
    if schema.get("nullable") and isinstance(out.get("type"), str):
        out["type"] = [out["type"], "null"]
    return out


def _validate_existing_crs(
    client: CRDClient, group: str, version: str, list_kind: str, new_version: Mapping[str, Any]
) -> None:
    version_name = new_version.get("name", "")
    openapi = (new_version.get("schema") or {}).get("openAPIV3Schema")

    try:
        resources = client.list_resources(group, version, list_kind)
    except Exception as exc:
        raise CRDValidationError(f"error listing objects for {group}/{version}, Kind={list_kind}: {exc}") from exc

    for resource in resources:
        if openapi is None:
            continue
        schema = _json_schema(openapi)
        try:
            validator_cls = jsonschema.validators.validator_for(schema, default=jsonschema.Draft4Validator)
            validator_cls.check_schema(schema)
        except SchemaError as exc:
            raise CRDValidationError(
                f'error creating validator for the schema of version "{version_name}": {exc.message}'
            ) from exc
        errors = sorted(validator_cls(schema).iter_errors(resource), key=lambda e: list(map(str, e.path)))
        if errors:
            messages = [f"{'.'.join(map(str, e.path)) or '<root>'}: {e.message}" for e in errors]
            detail = messages[0] if len(messages) == 1 else "[" + ", ".join(messages) + "]"
            metadata = resource.get("metadata") or {}
            raise CRDValidationError(
                f"existing custom object {metadata.get('namespace', '')}/{metadata.get('name', '')} "
                f"failed validation for new schema version {version_name}: {detail}"
            )


def safe_storage_version_upgrade(existing_crd: Mapping[str, Any], new_crd: Mapping[str, Any]) -> None:
    """Raise CRDValidationError unless every stored version is still in the new CRD."""
    new_spec_versions = set(_versions(new_crd))
    for name in sorted(_stored_versions(existing_crd)):
        if name not in new_spec_versions:
            raise CRDValidationError(
                f"new CRD removes version {name} that is listed as a stored version on the existing CRD"
            )