from __future__ import annotations

from fields.validators import eval_numeric, set_address_validator, validate_field, validate_fields
from manifest.types import FieldSpec


def _field(**doc) -> FieldSpec:
    return FieldSpec.model_validate(doc)


def test_required_only_fails_when_empty():
    field = _field(type="text", name="memo", required=True)
    assert validate_field(field, "") == "This field is required."
    assert validate_field(field, "hi") is None
    assert validate_field(_field(type="text", name="memo"), "") is None


def test_templated_required():
    field = _field(type="text", name="memo", required="{{form.needsMemo}}")
    assert validate_field(field, "", {"form": {"needsMemo": True}}) == "This field is required."
    assert validate_field(field, "", {"form": {"needsMemo": False}}) is None


def test_gt_rule_rejects_zero():
    field = _field(type="amount", name="amount", required=True, rules={"gt": 0})
    assert validate_field(field, 0) == "Must be > 0"
    assert validate_field(field, "0.000001") is None


def test_comparison_messages():
    assert validate_field(_field(type="number", name="n", rules={"gte": 2}), 1) == "Must be >= 2"
    assert validate_field(_field(type="number", name="n", rules={"lt": 2}), 2) == "Must be < 2"
    assert validate_field(_field(type="number", name="n", rules={"lte": 2}), 3) == "Must be <= 2"


def test_min_max_with_templated_limits():
    field = _field(type="amount", name="amount", min=1, max="{{account.balance}}")
    ctx = {"account": {"balance": "2,500.5"}}
    assert validate_field(field, "0.5", ctx) == "Minimum allowed is 1."
    assert validate_field(field, "3000", ctx) == "Maximum allowed is 2500.5."
    assert validate_field(field, "1,000", ctx) is None


def test_non_numeric_input():
    assert validate_field(_field(type="number", name="n"), "abc") == "Must be a valid number."


def test_length_and_pattern():
    field = _field(type="text", name="t", rules={"length": {"min": 2, "max": 4}, "pattern": "^[a-z]+$"})
    assert validate_field(field, "a") == "Minimum length is 2 characters."
    assert validate_field(field, "abcde") == "Maximum length is 4 characters."
    assert validate_field(field, "AB") == "Invalid format."
    assert validate_field(field, "abc") is None


def test_custom_messages_are_templated():
    field = _field(
        type="amount",
        name="amount",
        rules={"gt": 0, "messages": {"gt": "Amount for {{field.label}} must exceed {{gt}}"}},
        label="Stake",
    )
    assert validate_field(field, 0) == "Amount for Stake must exceed 0"


def test_address_validator_is_pluggable():
    field = _field(type="address", name="to")
    assert validate_field(field, "whatever") is None

    set_address_validator(lambda s: len(s) == 40)
    assert validate_field(field, "short") == "Invalid address."
    assert validate_field(field, "a" * 40) is None


def test_table_select_selection_bounds():
    field = _field(type="tableSelect", name="committees", required=True, rules={"minSelected": 1, "maxSelected": 2})
    assert validate_field(field, []) == "This field is required."
    assert validate_field(field, [1, 2, 3]) == "Maximum selected is 2."
    assert validate_field(field, [1]) is None


def test_switch_and_layout_never_fail():
    assert validate_field(_field(type="switch", name="s", required=True), None) is None
    assert validate_field(_field(type="heading", name="h", required=True), None) is None


def test_validate_fields_collects_by_name():
    fields = [
        _field(type="address", name="output", required=True),
        _field(type="section", fields=[{"type": "amount", "name": "amount", "rules": {"gt": 0}}]),
    ]
    assert validate_fields(fields, {"output": "", "amount": "0"}) == {
        "output": "This field is required.",
        "amount": "Must be > 0",
    }


def test_eval_numeric_parses_decorated_strings():
    assert eval_numeric("1,000.5 CNPY", {}) == 1000.5
    assert eval_numeric("{{x}}", {"x": 7}) == 7
    assert eval_numeric("none", {}) is None
    assert eval_numeric(True, {}) is None
