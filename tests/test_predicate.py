import pytest

from rukpak.predicate import DependentPredicate, dependent_predicate_funcs


def test_create_returns_false():
    assert dependent_predicate_funcs().create({"key": "Value"}) is False


def test_delete_returns_true():
    assert dependent_predicate_funcs().delete({"key": "Value"}) is True


def test_generic_returns_false():
    assert dependent_predicate_funcs().generic({"key": "Value"}) is False


@pytest.mark.parametrize(
    "old, new, expected",
    [
        ({"key": "Value", "status": "statusValue"}, {"key": "Value", "status": "statusValue"}, False),
        ({"key": "Value", "status": "oldstatusValue"}, {"key": "Value", "status": "newstatusValue"}, False),
        ({"key": "Value", "status": "statusValue"}, {"key": "Value1", "status": "statusValue"}, True),
    ],
)
def test_update(old, new, expected):
    assert dependent_predicate_funcs().update(old, new) is expected


def test_update_ignores_resource_version():
    old = {"kind": "ConfigMap", "metadata": {"name": "a", "resourceVersion": "1"}, "data": {"x": "1"}}
    new = {"kind": "ConfigMap", "metadata": {"name": "a", "resourceVersion": "2"}, "data": {"x": "1"}}
    assert DependentPredicate().update(old, new) is False
    assert old["metadata"]["resourceVersion"] == "1"


def test_update_detects_label_change():
    old = {"metadata": {"name": "a", "labels": {"k": "v"}}}
    new = {"metadata": {"name": "a", "labels": {"k": "w"}}}
    assert DependentPredicate().update(old, new) is True