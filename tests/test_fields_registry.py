from __future__ import annotations

import logging

from fields.helpers import default_value, flatten_fields, normalize_tag, options_for_field, span_of, to_options
from fields.registry import FIELD_REGISTRY, get_field_renderer, register_field, render_field
from fields.types import FieldProps, FieldView
from fields.wrapper import MemoryClipboard, feature_buttons, run_feature
from manifest.types import FieldFeature, FieldSpec


def _field(**doc) -> FieldSpec:
    return FieldSpec.model_validate(doc)


def _render(field: FieldSpec, value=None, ctx=None, ds_value=None, error=None) -> FieldView:
    return render_field(
        FieldProps(field=field, value=value, error=error, template_context=ctx or {}, ds_value=ds_value)
    )


def test_every_tag_is_registered():
    expected = {
        "text", "textarea", "amount", "number", "range", "address", "select", "advancedSelect",
        "switch", "option", "optionCard", "tableSelect", "dynamicHtml", "section", "divider",
        "spacer", "heading", "collapsibleGroup",
    }
    assert expected <= set(FIELD_REGISTRY)


def test_kebab_case_tags_dispatch():
    assert normalize_tag("advanced-select") == "advancedSelect"
    assert get_field_renderer("collapsible-group") is FIELD_REGISTRY["collapsibleGroup"]


def test_unknown_tag_degrades_to_placeholder(caplog):
    with caplog.at_level(logging.WARNING, logger="fields.registry"):
        view = _render(_field(type="hologram", name="x"))
    assert view.unsupported is True
    assert view.message == "Unsupported field type: hologram"
    assert "hologram" in caplog.text


def test_register_field_adds_renderer():
    register_field("color-picker", lambda props: FieldView(type="colorPicker", name=props.field.key))
    try:
        assert _render(_field(type="colorPicker", name="c")).name == "c"
    finally:
        FIELD_REGISTRY.pop("colorPicker", None)


def test_wrapper_error_replaces_help_and_templates_label():
    field = _field(type="text", name="memo", label="Memo for {{account.address}}", help="optional", span=6)
    view = _render(field, ctx={"account": {"address": "abc"}}, error="Too long")

    assert view.label == "Memo for abc"
    assert view.help == "Too long"
    assert view.span == 6


def test_amount_renderer_uses_denom_and_ds_default():
    field = _field(type="amount", name="amount", max="{{account.balance}}")
    ctx = {"chain": {"denom": {"symbol": "CNPY"}}, "account": {"balance": 5}}
    view = _render(field, ctx=ctx, ds_value={"amount": 3})

    assert view.value == 3
    assert view.attrs["denom"] == "CNPY"
    assert view.attrs["max"] == "5"


def test_amount_templated_default_wins_over_ds_value():
    field = _field(type="amount", name="amount", value="{{params.preset}}")
    ctx = {"params": {"preset": "7"}}

    assert _render(field, ctx=ctx, ds_value={"amount": 5}).value == "7"
    assert _render(field, value="2", ctx=ctx, ds_value={"amount": 5}).value == "2"
    assert _render(field, ctx={}, ds_value={"amount": 5}).value == 5


def test_range_clamps_value():
    view = _render(_field(type="range", name="pct", min=0, max=50), value=80)
    assert view.value == 50


def test_select_options_priority():
    field = _field(type="select", name="v", options=[{"label": "Static", "value": "s"}])
    assert _render(field).options == [{"label": "Static", "value": "s"}]
    assert _render(field, ds_value=[{"name": "Live", "address": "a1"}]).options == [{"label": "Live", "value": "a1"}]

    mapped = _field(type="select", name="v", map="{{ds.choices}}", options=[{"label": "Static", "value": "s"}])
    ctx = {"ds": {"choices": [{"label": "Mapped", "value": "m"}]}}
    assert options_for_field(mapped, ctx) == [{"label": "Mapped", "value": "m"}]


def test_to_options_with_templates_and_keyed_objects():
    mapping = {"label": "{{row.name}} ({{row.stake}})", "value": "{{row.address}}"}
    assert to_options([{"name": "A", "stake": 1, "address": "x"}], mapping) == [{"label": "A (1)", "value": "x"}]
    assert to_options({"k1": {"label": "One"}}) == [{"label": "One", "value": "k1"}]


def test_switch_and_option_values():
    assert _render(_field(type="switch", name="s", value="true")).value is True
    option = _render(_field(type="option", name="o", options=[{"label": "Yes", "value": "true"}]), value="true")
    assert option.value is True
    assert option.options[0]["value"] is True


def test_container_renders_children_from_form():
    section = _field(type="section", label="Advanced", fields=[{"type": "text", "name": "memo"}])
    view = _render(section, ctx={"form": {"memo": "hi"}})

    assert [c.name for c in view.children] == ["memo"]
    assert view.children[0].value == "hi"


def test_default_value_precedence():
    field = _field(type="text", name="n", value="{{account.nickname}}")
    ctx = {"account": {"nickname": "alice"}}

    assert default_value(field, "typed", ctx, {"value": "ds"}) == "typed"
    assert default_value(field, "", ctx, {"value": "ds"}) == "alice"
    assert default_value(field, None, {}, {"value": "ds"}) == "ds"
    assert default_value(_field(type="text", name="n"), None, {}, None) is None


def test_span_normalization():
    assert span_of(_field(type="text", span=20)) == 12
    assert span_of(_field(type="text", span={"base": 4, "md": 6})) == 4
    assert span_of(_field(type="text"), {"grid": {"defaultSpan": 3}}) == 3


def test_flatten_fields_skips_layout():
    fields = [
        _field(type="heading", label="Hi"),
        _field(type="collapsibleGroup", fields=[{"type": "number", "name": "n"}]),
        _field(type="text", name="t"),
    ]
    assert [f.key for f in flatten_fields(fields)] == ["n", "t"]


def test_features_copy_paste_and_max():
    clipboard = MemoryClipboard("pasted")
    written = {}
    ctx = {"account": {"address": "abc", "balance": 9}}

    copy = FieldFeature.model_validate({"op": "copy", "from": "{{account.address}}"})
    paste = FieldFeature.model_validate({"op": "paste"})
    maximum = FieldFeature.model_validate({"op": "max", "value": "{{account.balance}}", "field": "amount"})

    assert run_feature(copy, field_name="to", ctx=ctx, set_value=written.__setitem__, clipboard=clipboard) == "abc"
    assert clipboard.text == "abc"

    clipboard.write_text("pasted")
    run_feature(paste, field_name="to", ctx=ctx, set_value=written.__setitem__, clipboard=clipboard)
    run_feature(maximum, field_name="to", ctx=ctx, set_value=written.__setitem__)
    assert written == {"to": "pasted", "amount": "9"}

    assert [b.label for b in feature_buttons([copy, paste, maximum])] == ["Copy", "Paste", "Max"]
