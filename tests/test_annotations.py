import pytest

from rukpak.annotations import Annotations, AnnotationsFile, parse_annotations_file

EXAMPLE = b"""annotations:
  operators.operatorframework.io.bundle.package.v1: etcd
  operators.operatorframework.io.bundle.channels.v1: stable,alpha
  operators.operatorframework.io.bundle.channel.default.v1: stable
  operators.operatorframework.io.bundle.mediatype.v1: registry+v1
"""


def test_parse_example():
    parsed = parse_annotations_file(EXAMPLE)
    assert parsed.annotations == Annotations(package_name="etcd", channels="stable,alpha", default_channel_name="stable")


def test_parse_text_input():
    parsed = parse_annotations_file(EXAMPLE.decode())
    assert parsed.annotations.package_name == "etcd"


def test_missing_fields_are_empty():
    parsed = parse_annotations_file("annotations:\n  operators.operatorframework.io.bundle.package.v1: pkg\n")
    assert parsed.annotations.package_name == "pkg"
    assert parsed.annotations.channels == ""
    assert parsed.annotations.default_channel_name == ""


def test_empty_document():
    assert parse_annotations_file(b"") == AnnotationsFile()


def test_non_mapping_document_rejected():
    with pytest.raises(ValueError):
        parse_annotations_file(b"- a\n- b\n")


def test_non_mapping_annotations_rejected():
    with pytest.raises(ValueError):
        parse_annotations_file(b"annotations: [1, 2]\n")


def test_non_string_value_rejected():
    with pytest.raises(ValueError):
        parse_annotations_file(b"annotations:\n  operators.operatorframework.io.bundle.package.v1: 12\n")


def test_invalid_yaml_rejected():
    with pytest.raises(ValueError):
        parse_annotations_file(b"annotations: [unclosed\n")