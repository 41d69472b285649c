import json

from rukpak.crd import CRDClient
from rukpak.crdvalidator import (
    DISABLED,
    VALIDATION_KEY,
    AdmissionRequest,
    CrdValidator,
    is_disabled,
)

GROUP = "testgroup.example.com"
NAME = f"samples.{GROUP}"


class FakeClient(CRDClient):
    def __init__(self, crd=None, resources=()):
        self.crd = crd
        self.resources = list(resources)
        self.calls = 0

    def get_crd(self, name):
        self.calls += 1
        return self.crd if self.crd and self.crd["metadata"]["name"] == name else None

    def list_resources(self, group, version, list_kind):
        return list(self.resources)


def make_crd(version_names, annotations=None):
    crd = {
        "apiVersion": "apiextensions.k8s.io/v1",
        "kind": "CustomResourceDefinition",
        "metadata": {"name": NAME},
        "spec": {
            "group": GROUP,
            "names": {"plural": "samples", "kind": "Sample", "listKind": "SampleList"},
            "versions": [
                {"name": v, "served": True, "storage": True, "schema": {"openAPIV3Schema": {"type": "object"}}}
                for v in version_names
            ],
        },
        "status": {"storedVersions": list(version_names)},
    }
    if annotations:
        crd["metadata"]["annotations"] = annotations
    return crd


def test_is_disabled_reads_annotation():
    assert is_disabled(make_crd(["v1"], {VALIDATION_KEY: DISABLED}))
    assert not is_disabled(make_crd(["v1"], {VALIDATION_KEY: "true"}))
    assert not is_disabled(make_crd(["v1"]))


def test_undecodable_request_is_a_bad_request():
    validator = CrdValidator(FakeClient())
    response = validator.handle(AdmissionRequest(name=NAME, operation="CREATE", object=b"{not json"))
    assert not response.allowed
    assert response.code == 400
    assert response.message.startswith(f'failed to decode CRD "{NAME}"')


def test_disabled_crd_is_allowed_without_lookup():
    client = FakeClient(make_crd(["v1"]))
    new = make_crd(["v2"], {VALIDATION_KEY: DISABLED})
    response = CrdValidator(client).handle(AdmissionRequest(NAME, "UPDATE", json.dumps(new)))
    assert response.allowed
    assert client.calls == 0


def test_unsafe_upgrade_is_denied_with_hint():
    client = FakeClient(make_crd(["v1"]))
    response = CrdValidator(client).handle(AdmissionRequest(NAME, "UPDATE", make_crd(["v2"])))
    assert not response.allowed
    assert response.code == 403
    assert "cannot remove stored versions" in response.message
    assert f'set the "{VALIDATION_KEY}" annotation to "{DISABLED}"' in response.message
    assert "of UPDATE for CRD" in response.message


def test_safe_upgrade_is_allowed():
    client = FakeClient(make_crd(["v1"]), [{"apiVersion": f"{GROUP}/v1", "kind": "Sample", "metadata": {"name": "a"}}])
    response = CrdValidator(client).handle(AdmissionRequest(NAME, "UPDATE", make_crd(["v1", "v2"])))
    assert response.allowed
    assert client.calls == 1


def test_wrong_kind_is_rejected():
    obj = {"kind": "ConfigMap", "metadata": {"name": "x"}}
    response = CrdValidator(FakeClient()).handle(AdmissionRequest("x", "CREATE", obj))
    assert not response.allowed
    assert "failed to decode CRD" in response.message