"""Admission check that refuses unsafe CustomResourceDefinition upgrades."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Mapping

from .crd import CRDClient, CRDValidationError, validate

VALIDATION_KEY = "core.rukpak.io/safe-crd-upgrade-validation"
DISABLED = "false"

log = logging.getLogger(__name__)


@dataclass
class AdmissionRequest:
    """A create or update of a CRD; the object is raw JSON or its decoded form."""

    name: str
    operation: str
    object: bytes | str | Mapping[str, Any] = field(default=b"")


@dataclass
class AdmissionResponse:
    allowed: bool
    code: int = HTTPStatus.OK
    message: str = ""

    @classmethod
    def allow(cls, message: str = "") -> AdmissionResponse:
        return cls(allowed=True, code=HTTPStatus.OK, message=message)

    @classmethod
    def deny(cls, message: str) -> AdmissionResponse:
        return cls(allowed=False, code=HTTPStatus.FORBIDDEN, message=message)

    @classmethod
    def errored(cls, code: int, message: str) -> AdmissionResponse:
        return cls(allowed=False, code=code, message=message)


def is_disabled(crd: Mapping[str, Any]) -> bool:
    """Tell whether the CRD opts out of upgrade validation."""
    annotations = (crd.get("metadata") or {}).get("annotations") or {}
    return annotations.get(VALIDATION_KEY) == DISABLED


def _decode(raw: bytes | str | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(raw, Mapping):
        crd = dict(raw)
    else:
        try:
            crd = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ValueError(str(exc)) from exc
    if not isinstance(crd, dict):
        raise ValueError("object is not a mapping")
    kind = crd.get("kind")
    if kind and kind != "CustomResourceDefinition":
        raise ValueError(f"unexpected kind {kind!r}")
    return crd


class CrdValidator:
    """Admits a CRD create or update only when it is a safe upgrade."""

    def __init__(self, client: CRDClient, logger: logging.Logger | None = None):
        self.client = client
        self.log = logger or log

    def handle(self, request: AdmissionRequest) -> AdmissionResponse:
        try:
            incoming = _decode(request.object)
        except ValueError as exc:
            message = f'failed to decode CRD "{request.name}"'
            self.log.error("%s: %s", message, exc)
            return AdmissionResponse.errored(HTTPStatus.BAD_REQUEST, f"{message}: {exc}")

        if is_disabled(incoming):
            return AdmissionResponse.allow()

        try:
            validate(self.client, incoming)
        except CRDValidationError as exc:
            message = (
                f'failed to validate safety of {request.operation} for CRD "{request.name}" '
                f'(NOTE: to disable this validation, set the "{VALIDATION_KEY}" annotation to "{DISABLED}"): {exc}'
            )
            self.log.info(message)
            return AdmissionResponse.deny(message)

        self.log.debug('admission allowed for %s of CRD "%s"', request.operation, request.name)
        return AdmissionResponse.allow()