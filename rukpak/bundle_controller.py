"""Reconciliation of Bundles: unpack their content, convert it and store it."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Protocol

from .api import (
    PHASE_FAILING,
    PHASE_PENDING,
    PHASE_UNPACKED,
    PHASE_UNPACKING,
    REASON_PROCESSING_FINALIZER_FAILED,
    REASON_UNPACK_FAILED,
    REASON_UNPACK_PENDING,
    REASON_UNPACK_SUCCESSFUL,
    REASON_UNPACKING,
    TYPE_UNPACKED,
    Bundle,
    BundleSource,
    BundleStatus,
    Condition,
    ConditionStatus,
    set_status_condition,
)
from .bundlefs import BundleFS, BundleHandler

log = logging.getLogger(__name__)


class UnpackState(str, Enum):
    """How far the unpacking of a bundle's content has come."""

    PENDING = "Pending"
    UNPACKING = "Unpacking"
    UNPACKED = "Unpacked"


@dataclass
class UnpackResult:
    """What an unpacker reports; bundle holds the content once unpacked."""

    state: UnpackState
    bundle: BundleFS | None = None
    resolved_source: BundleSource | None = None
    message: str = ""


@dataclass
class FinalizerResult:
    """Whether running the finalizers changed the object or its status."""

    updated: bool = False
    status_updated: bool = False


class _Unpacker(Protocol):
    def unpack(self, bundle: Bundle) -> UnpackResult: ...


class _Storage(Protocol):
    def store(self, bundle: Bundle, fsys: BundleFS) -> None: ...

    def url_for(self, bundle: Bundle) -> str: ...


class _Finalizers(Protocol):
    def finalize(self, bundle: Bundle) -> FinalizerResult: ...


class _Client(Protocol):
    def get(self, name: str) -> Bundle | None: ...

    def update_status(self, bundle: Bundle) -> None: ...

    def update(self, bundle: Bundle) -> None: ...


def _aggregate_message(errors: list[BaseException]) -> str:
    if len(errors) == 1:
        return str(errors[0])
    return "[" + ", ".join(str(e) for e in errors) + "]"


class _ReconcileFailures(RuntimeError):
    def __init__(self, errors: list[BaseException]):
        super().__init__(_aggregate_message(errors))
        self.errors = errors


def _combine(reconcile_error: BaseException | None, update_error: BaseException) -> BaseException:
    if reconcile_error is None:
        return update_error
    return _ReconcileFailures([reconcile_error, update_error])


def _set_unpacked_condition(status: BundleStatus, state: ConditionStatus, reason: str, message: str) -> None:
    set_status_condition(
        status.conditions,
        Condition(type=TYPE_UNPACKED, status=state, reason=reason, message=message),
    )


def _status_unpack_pending(status: BundleStatus, result: UnpackResult) -> None:
    status.resolved_source = None
    status.content_url = ""
    status.phase = PHASE_PENDING
    _set_unpacked_condition(status, ConditionStatus.FALSE, REASON_UNPACK_PENDING, result.message)


def _status_unpacking(status: BundleStatus, result: UnpackResult) -> None:
    status.resolved_source = None
    status.content_url = ""
    status.phase = PHASE_UNPACKING
    _set_unpacked_condition(status, ConditionStatus.FALSE, REASON_UNPACKING, result.message)


def _status_unpacked(status: BundleStatus, result: UnpackResult, content_url: str) -> None:
    status.resolved_source = result.resolved_source
    status.content_url = content_url
    status.phase = PHASE_UNPACKED
    _set_unpacked_condition(status, ConditionStatus.TRUE, REASON_UNPACK_SUCCESSFUL, result.message)


def _status_unpack_failing(status: BundleStatus, error: BaseException) -> None:
    status.resolved_source = None
    status.content_url = ""
    status.phase = PHASE_FAILING
    _set_unpacked_condition(status, ConditionStatus.FALSE, REASON_UNPACK_FAILED, str(error))


class BundleController:
    """Reconciles the Bundles that belong to one provisioner.

    Without a handler the unpacked content is stored as it is.
    """

    def __init__(
        self,
        client: _Client,
        provisioner_id: str,
        *,
        unpacker: _Unpacker | None,
        storage: _Storage | None,
        finalizers: _Finalizers | None,
        handler: BundleHandler | None = None,
    ):
        self.client = client
        self.provisioner_id = provisioner_id
        self.unpacker = unpacker
        self.storage = storage
        self.finalizers = finalizers
        self.handler: BundleHandler | None = handler

        problems = []
        if not provisioner_id:
            problems.append(ValueError("provisioner ID is unset"))
        if unpacker is None:
            problems.append(ValueError("unpacker is unset"))
        if storage is None:
            problems.append(ValueError("storage is unset"))
        if finalizers is None:
            problems.append(ValueError("finalizer handler is unset"))
        if problems:
            raise ValueError(f"invalid configuration: {_aggregate_message(problems)}")

    @property
    def name(self) -> str:
        return f"controller.bundle.{self.provisioner_id}"

    def reconcile(self, name: str) -> None:
        """Reconcile the named Bundle and write back what changed; a missing Bundle is ignored."""
        log.debug("starting reconciliation of %s", name)
        try:
            existing = self.client.get(name)
            if existing is None:
                return
            reconciled = copy.deepcopy(existing)
            reconcile_error: BaseException | None = None
            try:
                self.reconcile_bundle(reconciled)
            except Exception as exc:
                reconcile_error = exc

            # The status goes first: the main update may drop the last
            # finalizer and let the deletion complete.
            if existing.status != reconciled.status:
                try:
                    self.client.update_status(reconciled)
                except Exception as update_error:
                    raise _combine(reconcile_error, update_error) from update_error
            empty = BundleStatus()
            if replace(existing, status=empty) != replace(reconciled, status=empty):
                try:
                    self.client.update(reconciled)
                except Exception as update_error:
                    raise _combine(reconcile_error, update_error) from update_error
            if reconcile_error is not None:
                raise reconcile_error
        finally:
            log.debug("ending reconciliation of %s", name)

    def _convert(self, fsys: BundleFS, bundle: Bundle) -> BundleFS:
        if self.handler is None:
            return fsys
        return self.handler(fsys, bundle)

    def reconcile_bundle(self, bundle: Bundle) -> None:
        """Bring the bundle's status up to date, changing it in place."""
        bundle.status.observed_generation = bundle.metadata.generation

        finalized = copy.deepcopy(bundle)
        try:
            result = self.finalizers.finalize(finalized)
        except Exception as exc:
            bundle.status.resolved_source = None
            bundle.status.content_url = ""
            bundle.status.phase = PHASE_FAILING
            _set_unpacked_condition(
                bundle.status, ConditionStatus.UNKNOWN, REASON_PROCESSING_FINALIZER_FAILED, str(exc)
            )
            raise
        if result.updated:
            # Only the finalizer list may change outside the status.
            bundle.metadata.finalizers = finalized.metadata.finalizers
        if result.status_updated:
            bundle.status = finalized.status
        if result.updated or result.status_updated or bundle.metadata.deletion_timestamp is not None:
            return

        try:
            unpacked = self.unpacker.unpack(bundle)
        except Exception as exc:
            error = RuntimeError(f"source bundle content: {exc}")
            _status_unpack_failing(bundle.status, error)
            raise error from exc

        if unpacked.state == UnpackState.PENDING:
            _status_unpack_pending(bundle.status, unpacked)
        elif unpacked.state == UnpackState.UNPACKING:
            _status_unpacking(bundle.status, unpacked)
        elif unpacked.state == UnpackState.UNPACKED:
            try:
                store_fs = self._convert(unpacked.bundle, bundle)
            except Exception as exc:
                _status_unpack_failing(bundle.status, exc)
                raise
            try:
                self.storage.store(bundle, store_fs)
            except Exception as exc:
                error = RuntimeError(f"persist bundle content: {exc}")
                _status_unpack_failing(bundle.status, error)
                raise error from exc
            try:
                content_url = self.storage.url_for(bundle)
            except Exception as exc:
                error = RuntimeError(f"get content URL: {exc}")
                _status_unpack_failing(bundle.status, error)
                raise error from exc
            _status_unpacked(bundle.status, unpacked, content_url)
        else:
            error = RuntimeError(f'unknown unpack state "{unpacked.state}"')
            _status_unpack_failing(bundle.status, error)
            raise error