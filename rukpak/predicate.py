"""Event filters for resources that a release creates."""

from __future__ import annotations

import copy
import logging
from typing import Any, Mapping

log = logging.getLogger(__name__)


def _describe(obj: Mapping[str, Any]) -> dict[str, str]:
    metadata = obj.get("metadata")
    metadata = metadata if isinstance(metadata, Mapping) else {}
    return {
        "name": metadata.get("name", ""),
        "namespace": metadata.get("namespace", ""),
        "apiVersion": obj.get("apiVersion", "") if isinstance(obj.get("apiVersion"), str) else "",
        "kind": obj.get("kind", "") if isinstance(obj.get("kind"), str) else "",
    }


def _comparable(obj: Mapping[str, Any]) -> dict[str, Any]:
    result = copy.deepcopy(dict(obj))
    result.pop("status", None)
    metadata = result.get("metadata")
    if isinstance(metadata, dict):
        metadata.pop("resourceVersion", None)
    return result


class DependentPredicate:
    """Decides which events on dependent objects warrant a reconcile.

    Objects are plain dictionaries in their API form.
    """

    def create(self, obj: Mapping[str, Any]) -> bool:
        # Dependents are only ever created during reconciliation.
        log.debug("Skipping reconciliation for dependent resource creation %s", _describe(obj))
        return False

    def delete(self, obj: Mapping[str, Any]) -> bool:
        log.debug("Reconciling due to dependent resource deletion %s", _describe(obj))
        return True

    def generic(self, obj: Mapping[str, Any]) -> bool:
        log.debug("Skipping reconcile due to generic event %s", _describe(obj))
        return False

    def update(self, old: Mapping[str, Any], new: Mapping[str, Any]) -> bool:
        """Reconcile unless only the status or resource version changed."""
        if _comparable(old) == _comparable(new):
            return False
        log.debug("Reconciling due to dependent resource update %s", _describe(new))
        return True


def dependent_predicate_funcs() -> DependentPredicate:
    return DependentPredicate()