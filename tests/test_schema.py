import pytest

from tokstat_errors import InputError
from tokstat_schema import ITEMS, infer_schema, json_type


def test_json_type_treats_bool_as_boolean():
    assert json_type(True) == "boolean"
    assert json_type(0) == "number"
    assert json_type(1.5) == "number"
    assert json_type(None) == "null"
    assert json_type([]) == "array"
    assert json_type({}) == "object"


def test_paths_and_depths():
    root = infer_schema([{"a": {"b": [{"c": 1}]}}])
    assert [n.path for n in root.walk()] == [
        "root", "root.a", "root.a.b", "root.a.b[]", "root.a.b[].c",
    ]
    assert root.find("root.a.b[].c").depth == 4
    assert root.find("root.a.b[]").name == ITEMS


def test_fill_rate_counts_nulls_and_missing_fields():
    root = infer_schema([
        {"a": "x", "b": None},
        {"a": "x"},
        {"a": "x", "b": "y"},
        {"a": "x", "b": "z"},
    ])
    b = root.find("root.b")
    assert b.instance_count == 4
    assert b.present_count == 2
    assert b.fill_rate == 0.5
    assert root.find("root.a").fill_rate == 1.0


def test_fill_rate_bounds_everywhere():
    docs = [
        {"a": [1, 2, None], "b": {"c": None}},
        {"a": [], "b": None},
        {"d": [{"e": 1}, {"f": 2}]},
    ]
    for node in infer_schema(docs).walk():
        assert 0.0 <= node.fill_rate <= 1.0
        assert node.present_count <= node.instance_count


def test_instance_count_repair_for_nested_fields():
    root = infer_schema([
        {"meta": {"x": 1, "y": 2}},
        {"meta": {"x": 1}},
        {"meta": {"x": 1}},
    ])
    y = root.find("root.meta.y")
    assert y.instance_count == 3
    assert y.present_count == 1


def test_repair_ignores_null_parents():
    root = infer_schema([{"meta": {"x": 1}}, {"meta": None}])
    # x could only appear where meta was an object
    assert root.find("root.meta.x").instance_count == 1


def test_array_items_count_every_element():
    root = infer_schema([{"tags": ["a", "b", "c"]}, {"tags": ["d"]}, {"tags": []}])
    tags = root.find("root.tags")
    assert tags.array_item_counts == [3, 1, 0]
    assert root.find("root.tags[]").instance_count == 4


def test_item_fields_repaired_against_element_count():
    root = infer_schema([{"rows": [{"a": 1, "b": 2}, {"a": 3}]}])
    assert root.find("root.rows[].b").instance_count == 2
    assert root.find("root.rows[].b").fill_rate == 0.5


def test_first_seen_type_policy():
    root = infer_schema([{"v": None}, {"v": "s"}, {"v": 1}, {"v": 2}])
    v = root.find("root.v")
    assert v.type == "string"
    assert v.observed_types == {"null", "string", "number"}


def test_most_frequent_type_policy():
    root = infer_schema([{"v": "s"}, {"v": 1}, {"v": 2}], type_policy="most_frequent")
    assert root.find("root.v").type == "number"


def test_all_null_field_keeps_null_type():
    root = infer_schema([{"v": None}, {"v": None}])
    assert root.find("root.v").type == "null"


def test_unknown_type_policy():
    with pytest.raises(ValueError):
        infer_schema([{"a": 1}], type_policy="latest")


def test_empty_batch_rejected():
    with pytest.raises(InputError):
        infer_schema([])


def test_non_object_document_rejected():
    with pytest.raises(InputError, match="document 1"):
        infer_schema([{"a": 1}, [1, 2]])


def test_repair_leaves_element_counts_under_object_typed_field():
    root = infer_schema([{"v": {"a": 1}}, {"v": [5]}, {"v": {"a": 2}}])
    v = root.find("root.v")
    assert v.type == "object"
    assert v.present_count == 3
    # one array instance with one element
    assert root.find("root.v[]").instance_count == 1
    assert root.find("root.v.a").instance_count == 3
