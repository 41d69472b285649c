"""Resource types of the core.rukpak.io/v1alpha1 API group.

Bundles describe content to unpack; BundleDeployments describe which
bundle should be installed and keep that bundle up to date.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

GROUP = "core.rukpak.io"
VERSION = "v1alpha1"
API_VERSION = f"{GROUP}/{VERSION}"

BUNDLE_KIND = "Bundle"
BUNDLE_DEPLOYMENT_KIND = "BundleDeployment"

TYPE_UNPACKED = "Unpacked"
TYPE_HAS_VALID_BUNDLE = "HasValidBundle"
TYPE_INSTALLED = "Installed"

REASON_UNPACK_PENDING = "UnpackPending"
REASON_UNPACKING = "Unpacking"
REASON_UNPACK_SUCCESSFUL = "UnpackSuccessful"
REASON_UNPACK_FAILED = "UnpackFailed"
REASON_PROCESSING_FINALIZER_FAILED = "ProcessingFinalizerFailed"
REASON_BUNDLE_LOAD_FAILED = "BundleLoadFailed"
REASON_READING_CONTENT_FAILED = "ReadingContentFailed"
REASON_ERROR_GETTING_CLIENT = "ErrorGettingClient"
REASON_ERROR_GETTING_RELEASE_STATE = "ErrorGettingReleaseState"
REASON_INSTALL_FAILED = "InstallFailed"
REASON_UPGRADE_FAILED = "UpgradeFailed"
REASON_RECONCILE_FAILED = "ReconcileFailed"
REASON_CREATE_DYNAMIC_WATCH_FAILED = "CreateDynamicWatchFailed"
REASON_INSTALLATION_SUCCEEDED = "InstallationSucceeded"

PHASE_PENDING = "Pending"
PHASE_UNPACKING = "Unpacking"
PHASE_FAILING = "Failing"
PHASE_UNPACKED = "Unpacked"


class SourceType(str, Enum):
    """Where the content of a bundle comes from."""

    IMAGE = "image"
    GIT = "git"
    CONFIG_MAPS = "configMaps"
    UPLOAD = "upload"
    HTTP = "http"


class ConditionStatus(str, Enum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


def _format_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def _reference(name: str) -> dict[str, str]:
    return {"name": name} if name else {}


def _reference_name(data: Mapping[str, Any] | None) -> str:
    return (data or {}).get("name", "") or ""


@dataclass
class Condition:
    """One observed aspect of a resource's state."""

    type: str
    status: ConditionStatus
    reason: str = ""
    message: str = ""
    observed_generation: int = 0
    last_transition_time: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type, "status": ConditionStatus(self.status).value}
        if self.observed_generation:
            out["observedGeneration"] = self.observed_generation
        if self.last_transition_time is not None:
            out["lastTransitionTime"] = _format_time(self.last_transition_time)
        out["reason"] = self.reason
        out["message"] = self.message
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Condition:
        return cls(
            type=data["type"],
            status=ConditionStatus(data["status"]),
            reason=data.get("reason", ""),
            message=data.get("message", ""),
            observed_generation=data.get("observedGeneration", 0),
            last_transition_time=_parse_time(data.get("lastTransitionTime")),
        )


def find_status_condition(conditions: list[Condition], condition_type: str) -> Condition | None:
    """Return the condition of the given type, or None."""
    return next((c for c in conditions if c.type == condition_type), None)


def set_status_condition(conditions: list[Condition], condition: Condition) -> None:
    """Add or update a condition in place.

    The transition time only moves when the status changes.
    """
    existing = find_status_condition(conditions, condition.type)
    if existing is None:
        added = replace(condition)
        if added.last_transition_time is None:
            added.last_transition_time = _now()
        conditions.append(added)
        return
    if existing.status != condition.status:
        existing.status = condition.status
        existing.last_transition_time = condition.last_transition_time or _now()
    existing.reason = condition.reason
    existing.message = condition.message
    existing.observed_generation = condition.observed_generation


@dataclass
class ObjectMeta:
    name: str = ""
    namespace: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    finalizers: list[str] = field(default_factory=list)
    owner_references: list[dict[str, Any]] = field(default_factory=list)
    generation: int = 0
    resource_version: str = ""
    uid: str = ""
    deletion_timestamp: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for key, value in (
            ("name", self.name),
            ("namespace", self.namespace),
            ("uid", self.uid),
            ("resourceVersion", self.resource_version),
            ("generation", self.generation),
            ("labels", dict(self.labels)),
            ("annotations", dict(self.annotations)),
            ("ownerReferences", copy.deepcopy(self.owner_references)),
            ("finalizers", list(self.finalizers)),
        ):
            if value:
                out[key] = value
        if self.deletion_timestamp is not None:
            out["deletionTimestamp"] = _format_time(self.deletion_timestamp)
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> ObjectMeta:
        data = data or {}
        return cls(
            name=data.get("name", ""),
            namespace=data.get("namespace", ""),
            labels=dict(data.get("labels") or {}),
            annotations=dict(data.get("annotations") or {}),
            finalizers=list(data.get("finalizers") or []),
            owner_references=copy.deepcopy(list(data.get("ownerReferences") or [])),
            generation=data.get("generation", 0),
            resource_version=data.get("resourceVersion", ""),
            uid=data.get("uid", ""),
            deletion_timestamp=_parse_time(data.get("deletionTimestamp")),
        )


@dataclass
class ImageSource:
    ref: str
    image_pull_secret_name: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"ref": self.ref}
        if self.image_pull_secret_name:
            out["pullSecret"] = self.image_pull_secret_name
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ImageSource:
        return cls(ref=data.get("ref", ""), image_pull_secret_name=data.get("pullSecret", ""))


@dataclass
class GitRef:
    """Exactly one of branch, tag or commit is expected to be set."""

    branch: str = ""
    tag: str = ""
    commit: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in (("branch", self.branch), ("tag", self.tag), ("commit", self.commit)) if v}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> GitRef:
        data = data or {}
        return cls(branch=data.get("branch", ""), tag=data.get("tag", ""), commit=data.get("commit", ""))


@dataclass
class Authorization:
    secret: str = ""
    insecure_skip_verify: bool = False

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"secret": _reference(self.secret)}
        if self.insecure_skip_verify:
            out["insecureSkipVerify"] = True
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> Authorization:
        data = data or {}
        return cls(
            secret=_reference_name(data.get("secret")),
            insecure_skip_verify=bool(data.get("insecureSkipVerify", False)),
        )


@dataclass
class GitSource:
    repository: str
    ref: GitRef = field(default_factory=GitRef)
    directory: str = ""
    auth: Authorization = field(default_factory=Authorization)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"repository": self.repository}
        if self.directory:
            out["directory"] = self.directory
        out["ref"] = self.ref.to_dict()
        out["auth"] = self.auth.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GitSource:
        return cls(
            repository=data.get("repository", ""),
            ref=GitRef.from_dict(data.get("ref")),
            directory=data.get("directory", ""),
            auth=Authorization.from_dict(data.get("auth")),
        )


@dataclass
class ConfigMapSource:
    config_map: str
    path: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"configMap": _reference(self.config_map)}
        if self.path:
            out["path"] = self.path
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ConfigMapSource:
        return cls(config_map=_reference_name(data.get("configMap")), path=data.get("path", ""))


@dataclass
class HTTPSource:
    url: str
    auth: Authorization = field(default_factory=Authorization)

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "auth": self.auth.to_dict()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> HTTPSource:
        return cls(url=data.get("url", ""), auth=Authorization.from_dict(data.get("auth")))


@dataclass
class UploadSource:
    """Content is pushed to the upload service; there is nothing to configure."""

    def to_dict(self) -> dict[str, Any]:
        return {}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> UploadSource:
        return cls()


@dataclass
class BundleSource:
    type: SourceType
    image: ImageSource | None = None
    git: GitSource | None = None
    config_maps: list[ConfigMapSource] = field(default_factory=list)
    upload: UploadSource | None = None
    http: HTTPSource | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": SourceType(self.type).value}
        if self.image is not None:
            out["image"] = self.image.to_dict()
        if self.git is not None:
            out["git"] = self.git.to_dict()
        if self.config_maps:
            out["configMaps"] = [cm.to_dict() for cm in self.config_maps]
        if self.upload is not None:
            out["upload"] = self.upload.to_dict()
        if self.http is not None:
            out["http"] = self.http.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BundleSource:
        return cls(
            type=SourceType(data["type"]),
            image=ImageSource.from_dict(data["image"]) if data.get("image") is not None else None,
            git=GitSource.from_dict(data["git"]) if data.get("git") is not None else None,
            config_maps=[ConfigMapSource.from_dict(cm) for cm in data.get("configMaps") or []],
            upload=UploadSource.from_dict(data["upload"]) if data.get("upload") is not None else None,
            http=HTTPSource.from_dict(data["http"]) if data.get("http") is not None else None,
        )


@dataclass
class BundleSpec:
    provisioner_class_name: str
    source: BundleSource

    def to_dict(self) -> dict[str, Any]:
        return {"provisionerClassName": self.provisioner_class_name, "source": self.source.to_dict()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BundleSpec:
        return cls(
            provisioner_class_name=data.get("provisionerClassName", ""),
            source=BundleSource.from_dict(data["source"]),
        )


@dataclass
class BundleStatus:
    phase: str = ""
    resolved_source: BundleSource | None = None
    observed_generation: int = 0
    conditions: list[Condition] = field(default_factory=list)
    content_url: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.phase:
            out["phase"] = self.phase
        if self.resolved_source is not None:
            out["resolvedSource"] = self.resolved_source.to_dict()
        if self.observed_generation:
            out["observedGeneration"] = self.observed_generation
        if self.conditions:
            out["conditions"] = [c.to_dict() for c in self.conditions]
        if self.content_url:
            out["contentURL"] = self.content_url
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> BundleStatus:
        data = data or {}
        resolved = data.get("resolvedSource")
        return cls(
            phase=data.get("phase", ""),
            resolved_source=BundleSource.from_dict(resolved) if resolved is not None else None,
            observed_generation=data.get("observedGeneration", 0),
            conditions=[Condition.from_dict(c) for c in data.get("conditions") or []],
            content_url=data.get("contentURL", ""),
        )


def _check_type_meta(data: Mapping[str, Any], kind: str) -> None:
    if not isinstance(data, Mapping):
        raise TypeError(f"expected a mapping for {kind}, got {type(data).__name__}")
    found_kind = data.get("kind")
    if found_kind and found_kind != kind:
        raise ValueError(f"expected kind {kind!r}, got {found_kind!r}")
    found_version = data.get("apiVersion")
    if found_version and found_version != API_VERSION:
        raise ValueError(f"expected apiVersion {API_VERSION!r}, got {found_version!r}")
    if "spec" not in data:
        raise ValueError(f"{kind} is missing its spec")


@dataclass
class Bundle:
    """A cluster-scoped piece of content for a provisioner to unpack."""

    spec: BundleSpec
    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    status: BundleStatus = field(default_factory=BundleStatus)

    kind = BUNDLE_KIND
    api_version = API_VERSION

    def provisioner_class_name(self) -> str:
        return self.spec.provisioner_class_name

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiVersion": API_VERSION,
            "kind": BUNDLE_KIND,
            "metadata": self.metadata.to_dict(),
            "spec": self.spec.to_dict(),
            "status": self.status.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Bundle:
        _check_type_meta(data, BUNDLE_KIND)
        return cls(
            spec=BundleSpec.from_dict(data["spec"]),
            metadata=ObjectMeta.from_dict(data.get("metadata")),
            status=BundleStatus.from_dict(data.get("status")),
        )


@dataclass
class BundleTemplate:
    """The desired Bundle that a BundleDeployment generates."""

    spec: BundleSpec
    metadata: ObjectMeta = field(default_factory=ObjectMeta)

    def to_dict(self) -> dict[str, Any]:
        return {"metadata": self.metadata.to_dict(), "spec": self.spec.to_dict()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BundleTemplate:
        return cls(spec=BundleSpec.from_dict(data["spec"]), metadata=ObjectMeta.from_dict(data.get("metadata")))


@dataclass
class BundleDeploymentSpec:
    provisioner_class_name: str
    template: BundleTemplate | None = None
    config: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "provisionerClassName": self.provisioner_class_name,
            "template": self.template.to_dict() if self.template is not None else None,
        }
        if self.config is not None:
            out["config"] = copy.deepcopy(self.config)
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BundleDeploymentSpec:
        template = data.get("template")
        config = data.get("config")
        return cls(
            provisioner_class_name=data.get("provisionerClassName", ""),
            template=BundleTemplate.from_dict(template) if template is not None else None,
            config=copy.deepcopy(dict(config)) if config is not None else None,
        )


@dataclass
class BundleDeploymentStatus:
    conditions: list[Condition] = field(default_factory=list)
    active_bundle: str = ""
    observed_generation: int = 0

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.conditions:
            out["conditions"] = [c.to_dict() for c in self.conditions]
        if self.active_bundle:
            out["activeBundle"] = self.active_bundle
        if self.observed_generation:
            out["observedGeneration"] = self.observed_generation
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> BundleDeploymentStatus:
        data = data or {}
        return cls(
            conditions=[Condition.from_dict(c) for c in data.get("conditions") or []],
            active_bundle=data.get("activeBundle", ""),
            observed_generation=data.get("observedGeneration", 0),
        )


@dataclass
class BundleDeployment:
    """Installs the bundle described by its template and keeps it current."""

    spec: BundleDeploymentSpec
    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    status: BundleDeploymentStatus = field(default_factory=BundleDeploymentStatus)

    kind = BUNDLE_DEPLOYMENT_KIND
    api_version = API_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiVersion": API_VERSION,
            "kind": BUNDLE_DEPLOYMENT_KIND,
            "metadata": self.metadata.to_dict(),
            "spec": self.spec.to_dict(),
            "status": self.status.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BundleDeployment:
        _check_type_meta(data, BUNDLE_DEPLOYMENT_KIND)
        return cls(
            spec=BundleDeploymentSpec.from_dict(data["spec"]),
            metadata=ObjectMeta.from_dict(data.get("metadata")),
            status=BundleDeploymentStatus.from_dict(data.get("status")),
        )