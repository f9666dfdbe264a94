from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any, List

from fields.helpers import default_value, is_empty, options_for_field
from fields.types import FieldProps, FieldView
from fields.wrapper import wrap
from templating import evaluate_native, lookup_path


def _finite(value: Any, fallback: float) -> float:
    try:
        n = float(value)
    except (TypeError, ValueError):
        return fallback
    return n if math.isfinite(n) else fallback


def _bool_value(value: Any) -> Any:
    if value is True or value == "true":
        return True
    if value is False or value == "false":
        return False
    return value


# ---------------------------
# Inputs
# ---------------------------

def render_text(props: FieldProps) -> FieldView:
    value = default_value(props.field, props.value, props.template_context, props.ds_value)
    return wrap(props, value="" if value is None else value, multiline=props.field.type == "textarea")


def render_amount(props: FieldProps) -> FieldView:
    f = props.field
    value = default_value(f, props.value, props.template_context, props.ds_value)
    denom = lookup_path(props.template_context, "chain.denom.symbol") or f.extra("denom") or ""
    return wrap(
        props,
        value="" if value is None else value,
        denom=denom,
        min=props.resolve(f.min),
        max=props.resolve(f.max),
    )


def render_number(props: FieldProps) -> FieldView:
    f = props.field
    value = default_value(f, props.value, props.template_context, props.ds_value)
    return wrap(
        props,
        value="" if value is None else value,
        min=props.resolve(f.min),
        max=props.resolve(f.max),
        step=props.resolve(f.step),
    )


def render_range(props: FieldProps) -> FieldView:
    f = props.field
    lo = _finite(props.resolve(f.min), 0)
    hi = _finite(props.resolve(f.max), 100)
    step = _finite(props.resolve(f.step), 1)

    fallback = _finite(props.resolve(f.value), lo)
    ds_raw = props.ds_value.get("value") if isinstance(props.ds_value, Mapping) else props.ds_value
    current = _finite(props.value if props.value is not None else ds_raw, fallback)

    return wrap(
        props,
        value=min(hi, max(lo, current)),
        min=lo,
        max=hi,
        step=step,
        suffix=props.resolve(f.extra("suffix") or ""),
    )


def render_address(props: FieldProps) -> FieldView:
    value = default_value(props.field, props.value, props.template_context, props.ds_value)
    return wrap(props, value="" if value is None else value)


def render_select(props: FieldProps) -> FieldView:
    f = props.field
    value = default_value(f, props.value, props.template_context)
    return wrap(
        props,
        value="" if value is None else value,
        options=options_for_field(f, props.template_context, props.ds_value),
        multiple=bool(f.extra("multiple", False)),
    )


def render_switch(props: FieldProps) -> FieldView:
    value = props.value
    if value is None or value == "":
        value = evaluate_native(props.field.value, props.template_context)
    return wrap(props, value=_bool_value(value) is True)


def render_option(props: FieldProps) -> FieldView:
    f = props.field
    value = default_value(f, props.value, props.template_context)
    opts: List[dict] = []
    for i, o in enumerate(f.options if isinstance(f.options, list) else []):
        if not isinstance(o, Mapping):
            o = {"label": o, "value": o}
        raw = props.resolve(o.get("value")) if o.get("value") is not None else i
        opts.append(
            {
                "label": props.resolve(o.get("label")) or "",
                "help": props.resolve(o.get("help")) or "",
                "value": _bool_value(raw),
            }
        )
    return wrap(props, value=_bool_value(value), options=opts)


def render_table_select(props: FieldProps) -> FieldView:
    f = props.field
    value = props.value
    if is_empty(value) or value == []:
        resolved = evaluate_native(f.value, props.template_context) if f.value is not None else None
        value = resolved if resolved not in (None, "", []) else []
    if not isinstance(value, list):
        value = [value]

    rows = props.ds_value if isinstance(props.ds_value, list) else (f.options if isinstance(f.options, list) else [])
    return wrap(
        props,
        value=value,
        rows=rows,
        columns=f.extra("columns", []),
        multiple=bool(f.extra("multiple", True)),
    )


# ---------------------------
# Layout
# ---------------------------

def render_dynamic_html(props: FieldProps) -> FieldView:
    return wrap(props, html=props.resolve(props.field.extra("html") or ""))


def render_heading(props: FieldProps) -> FieldView:
    f = props.field
    return wrap(
        props,
        text=props.resolve(f.extra("text") or f.label or ""),
        level=f.extra("level", 2),
    )


def render_divider(props: FieldProps) -> FieldView:
    return wrap(props, label=None)


def render_spacer(props: FieldProps) -> FieldView:
    return wrap(props, label=None, size=props.field.extra("size", "md"))
