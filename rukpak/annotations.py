"""The metadata/annotations.yaml file of a registry+v1 bundle."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

import yaml

PACKAGE_KEY = "operators.operatorframework.io.bundle.package.v1"
CHANNELS_KEY = "operators.operatorframework.io.bundle.channels.v1"
DEFAULT_CHANNEL_KEY = "operators.operatorframework.io.bundle.channel.default.v1"


def _string_field(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"annotation {key!r} must be a string, got {type(value).__name__}")
    return value


@dataclass
class Annotations:
    """Package and channel information for a bundle."""

    package_name: str = ""
    channels: str = ""
    default_channel_name: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> Annotations:
        data = data or {}
        if not isinstance(data, Mapping):
            raise ValueError("annotations must be a mapping")
        return cls(
            package_name=_string_field(data, PACKAGE_KEY),
            channels=_string_field(data, CHANNELS_KEY),
            default_channel_name=_string_field(data, DEFAULT_CHANNEL_KEY),
        )


@dataclass
class AnnotationsFile:
    annotations: Annotations = field(default_factory=Annotations)


def parse_annotations_file(data: bytes | str) -> AnnotationsFile:
    """Parse the YAML content of an annotations file."""
    try:
        document = yaml.safe_load(data)
    except yaml.YAMLError as exc:
        raise ValueError(f"parse annotations file: {exc}") from exc
    if document is None:
        return AnnotationsFile()
    if not isinstance(document, Mapping):
        raise ValueError("annotations file must hold a mapping")
    return AnnotationsFile(annotations=Annotations.from_dict(document.get("annotations")))