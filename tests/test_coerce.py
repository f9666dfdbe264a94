from __future__ import annotations

from ds.coerce import apply_coerce, coerce


def test_number_strips_thousands_separators():
    assert coerce("1,234.5", "number") == 1234.5
    assert coerce("1,000", "number") == 1000


def test_malformed_numeric_returns_original():
    assert coerce("abc", "number") == "abc"
    assert coerce("NaN", "float") == "NaN"
    assert coerce("inf", "number") == "inf"


def test_int_truncates_and_is_idempotent():
    once = coerce("12.7", "int")
    assert once == 12
    assert coerce(once, "int") == once


def test_boolean_truth_set():
    assert [coerce(v, "boolean") for v in (True, "true", 1, "1", "on")] == [True] * 5
    assert [coerce(v, "boolean") for v in (False, "false", 0, "off", None, "yes")] == [False] * 6


def test_string_and_null():
    assert coerce(5, "string") == "5"
    assert coerce(True, "string") == "true"
    assert coerce("x", "null") is None
    assert coerce(7, "unknown-kind") == "7"


def test_apply_coerce_paths_on_a_copy():
    original = {"a": {"b": "10"}, "list": ["1", "2"], "flag": "on"}
    out = apply_coerce(original, {"a.b": "int", "list.1": "number", "flag": "boolean", "missing.x": "int"})

    assert out == {"a": {"b": 10}, "list": ["1", 2], "flag": True}
    assert original == {"a": {"b": "10"}, "list": ["1", "2"], "flag": "on"}


def test_apply_coerce_root_path():
    assert apply_coerce("42", {"": "number"}) == 42
    assert apply_coerce({"x": 1}, None) == {"x": 1}
