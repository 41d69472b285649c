import copy
from datetime import datetime, timezone

import pytest

from rukpak.api import (
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
    BundleSpec,
    ConditionStatus,
    ImageSource,
    ObjectMeta,
    SourceType,
    find_status_condition,
)
from rukpak.bundle_controller import BundleController, FinalizerResult, UnpackResult, UnpackState
from rukpak.bundlefs import MemoryFS
from rukpak.plain import PROVISIONER_ID


def make_bundle(name="b1", generation=3):
    return Bundle(
        spec=BundleSpec(
            provisioner_class_name=PROVISIONER_ID,
            source=BundleSource(type=SourceType.IMAGE, image=ImageSource(ref="example.com/img:v1")),
        ),
        metadata=ObjectMeta(name=name, generation=generation),
    )


class FakeUnpacker:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = 0

    def unpack(self, bundle):
        self.calls += 1
        if self.error:
            raise self.error
        return self.result


class FakeStorage:
    def __init__(self, store_error=None):
        self.stored = {}
        self.store_error = store_error

    def store(self, bundle, fsys):
        if self.store_error:
            raise self.store_error
        self.stored[bundle.metadata.name] = fsys

    def url_for(self, bundle):
        return f"http://localhost:8080/bundles/{bundle.metadata.name}.tgz"


class FakeFinalizers:
    def __init__(self, result=None, error=None, add=None):
        self.result = result or FinalizerResult()
        self.error = error
        self.add = add

    def finalize(self, bundle):
        if self.error:
            raise self.error
        if self.add:
            bundle.metadata.finalizers.append(self.add)
        return self.result


class FakeClient:
    def __init__(self, bundles=()):
        self.bundles = {b.metadata.name: copy.deepcopy(b) for b in bundles}
        self.status_updates = []
        self.updates = []

    def get(self, name):
        found = self.bundles.get(name)
        return copy.deepcopy(found) if found is not None else None

    def update_status(self, bundle):
        self.status_updates.append(copy.deepcopy(bundle))

    def update(self, bundle):
        self.updates.append(copy.deepcopy(bundle))


def make_controller(unpacker, storage=None, finalizers=None, handler=None, client=None):
    return BundleController(
        client or FakeClient(),
        PROVISIONER_ID,
        unpacker=unpacker,
        storage=storage or FakeStorage(),
        finalizers=finalizers or FakeFinalizers(),
        handler=handler,
    )


def test_missing_configuration_is_rejected():
    with pytest.raises(ValueError, match="invalid configuration") as info:
        BundleController(FakeClient(), "", unpacker=None, storage=FakeStorage(), finalizers=FakeFinalizers())
    assert "provisioner ID is unset" in str(info.value)
    assert "unpacker is unset" in str(info.value)


def test_controller_name_uses_provisioner_id():
    controller = make_controller(FakeUnpacker())
    assert controller.name == f"controller.bundle.{PROVISIONER_ID}"


@pytest.mark.parametrize(
    "state, phase, reason",
    [
        (UnpackState.PENDING, PHASE_PENDING, REASON_UNPACK_PENDING),
        (UnpackState.UNPACKING, PHASE_UNPACKING, REASON_UNPACKING),
    ],
)
def test_not_yet_unpacked_states(state, phase, reason):
    bundle = make_bundle()
    controller = make_controller(FakeUnpacker(UnpackResult(state=state, message="waiting")))
    controller.reconcile_bundle(bundle)
    assert bundle.status.phase == phase
    assert bundle.status.observed_generation == 3
    assert bundle.status.content_url == ""
    condition = find_status_condition(bundle.status.conditions, TYPE_UNPACKED)
    assert condition.status == ConditionStatus.FALSE
    assert condition.reason == reason
    assert condition.message == "waiting"


def test_unpacked_content_is_handled_and_stored():
    content = MemoryFS({"manifests/a.yaml": "kind: ConfigMap\n"})
    converted = MemoryFS({"manifests/b.yaml": "kind: Secret\n"})
    resolved = BundleSource(type=SourceType.IMAGE, image=ImageSource(ref="example.com/img@sha256:abc"))
    seen = []

    def handler(fsys, bundle):
        seen.append(fsys)
        return converted

    storage = FakeStorage()
    bundle = make_bundle()
    controller = make_controller(
        FakeUnpacker(UnpackResult(state=UnpackState.UNPACKED, bundle=content, resolved_source=resolved, message="ok")),
        storage=storage,
        handler=handler,
    )
    controller.reconcile_bundle(bundle)
    assert seen == [content]
    assert storage.stored["b1"] is converted
    assert bundle.status.phase == PHASE_UNPACKED
    assert bundle.status.resolved_source == resolved
    assert bundle.status.content_url == storage.url_for(bundle)
    condition = find_status_condition(bundle.status.conditions, TYPE_UNPACKED)
    assert condition.status == ConditionStatus.TRUE
    assert condition.reason == REASON_UNPACK_SUCCESSFUL


def test_default_handler_stores_content_unchanged():
    content = MemoryFS({"manifests/a.yaml": "kind: ConfigMap\n"})
    storage = FakeStorage()
    controller = make_controller(
        FakeUnpacker(UnpackResult(state=UnpackState.UNPACKED, bundle=content)), storage=storage
    )
    controller.reconcile_bundle(make_bundle())
    assert storage.stored["b1"] is content


def test_handler_error_marks_bundle_failing():
    def handler(fsys, bundle):
        raise ValueError("bad content")

    bundle = make_bundle()
    controller = make_controller(
        FakeUnpacker(UnpackResult(state=UnpackState.UNPACKED, bundle=MemoryFS())), handler=handler
    )
    with pytest.raises(ValueError, match="bad content"):
        controller.reconcile_bundle(bundle)
    assert bundle.status.phase == PHASE_FAILING
    condition = find_status_condition(bundle.status.conditions, TYPE_UNPACKED)
    assert condition.reason == REASON_UNPACK_FAILED
    assert condition.message == "bad content"


def test_unpacker_error_is_wrapped():
    bundle = make_bundle()
    controller = make_controller(FakeUnpacker(error=OSError("pull failed")))
    with pytest.raises(RuntimeError, match="^source bundle content: pull failed$"):
        controller.reconcile_bundle(bundle)
    assert bundle.status.phase == PHASE_FAILING


def test_store_error_is_wrapped():
    bundle = make_bundle()
    controller = make_controller(
        FakeUnpacker(UnpackResult(state=UnpackState.UNPACKED, bundle=MemoryFS())),
        storage=FakeStorage(store_error=OSError("disk full")),
    )
    with pytest.raises(RuntimeError, match="^persist bundle content: disk full$"):
        controller.reconcile_bundle(bundle)
    assert bundle.status.content_url == ""


def test_finalizer_error_sets_unknown_condition():
    bundle = make_bundle()
    unpacker = FakeUnpacker()
    controller = make_controller(unpacker, finalizers=FakeFinalizers(error=RuntimeError("boom")))
    with pytest.raises(RuntimeError, match="boom"):
        controller.reconcile_bundle(bundle)
    condition = find_status_condition(bundle.status.conditions, TYPE_UNPACKED)
    assert condition.status == ConditionStatus.UNKNOWN
    assert condition.reason == REASON_PROCESSING_FINALIZER_FAILED
    assert unpacker.calls == 0


def test_finalizer_update_stops_before_unpacking():
    bundle = make_bundle()
    unpacker = FakeUnpacker()
    finalizers = FakeFinalizers(result=FinalizerResult(updated=True), add="core.rukpak.io/delete-cached-bundle")
    controller = make_controller(unpacker, finalizers=finalizers)
    controller.reconcile_bundle(bundle)
    assert bundle.metadata.finalizers == ["core.rukpak.io/delete-cached-bundle"]
    assert unpacker.calls == 0


def test_deleted_bundle_is_not_unpacked():
    bundle = make_bundle()
    bundle.metadata.deletion_timestamp = datetime(2023, 1, 1, tzinfo=timezone.utc)
    unpacker = FakeUnpacker()
    make_controller(unpacker).reconcile_bundle(bundle)
    assert unpacker.calls == 0
    assert bundle.status.phase == ""


def test_reconcile_missing_bundle_does_nothing():
    client = FakeClient()
    make_controller(FakeUnpacker(), client=client).reconcile("absent")
    assert client.status_updates == [] and client.updates == []


def test_reconcile_writes_status_only_when_spec_unchanged():
    client = FakeClient([make_bundle()])
    controller = make_controller(
        FakeUnpacker(UnpackResult(state=UnpackState.PENDING, message="queued")), client=client
    )
    controller.reconcile("b1")
    assert len(client.status_updates) == 1
    assert client.status_updates[0].status.phase == PHASE_PENDING
    assert client.updates == []


def test_reconcile_writes_finalizer_changes():
    client = FakeClient([make_bundle()])
    finalizers = FakeFinalizers(result=FinalizerResult(updated=True), add="core.rukpak.io/delete-cached-bundle")
    make_controller(FakeUnpacker(), finalizers=finalizers, client=client).reconcile("b1")
    assert len(client.updates) == 1
    assert client.updates[0].metadata.finalizers == ["core.rukpak.io/delete-cached-bundle"]


def test_reconcile_raises_reconcile_error_after_status_update():
    client = FakeClient([make_bundle()])
    controller = make_controller(FakeUnpacker(error=OSError("pull failed")), client=client)
    with pytest.raises(RuntimeError, match="source bundle content"):
        controller.reconcile("b1")
    assert client.status_updates[0].status.phase == PHASE_FAILING


def test_reconcile_combines_reconcile_and_update_errors():
    class FailingClient(FakeClient):
        def update_status(self, bundle):
            raise RuntimeError("conflict")

    client = FailingClient([make_bundle()])
    controller = make_controller(FakeUnpacker(error=OSError("pull failed")), client=client)
    with pytest.raises(RuntimeError) as info:
        controller.reconcile("b1")
    assert str(info.value) == "[source bundle content: pull failed, conflict]"