from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Dict, Iterable, List, Optional

from manifest.types import FieldSpec
from templating import evaluate, evaluate_native, lookup_path

logger = logging.getLogger(__name__)

LAYOUT_TYPES = {"section", "divider", "spacer", "heading", "collapsibleGroup", "dynamicHtml"}
CONTAINER_TYPES = {"section", "collapsibleGroup"}

GRID_COLUMNS = 12


def normalize_tag(tag: Optional[str]) -> str:
    """
    "advanced-select" -> "advancedSelect"; camelCase tags are returned unchanged.
    """
    head, *rest = (tag or "").strip().split("-")
    return head + "".join(p[:1].upper() + p[1:] for p in rest)


def is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def get_by_path(obj: Any, selector: Optional[str]) -> Any:
    if not selector or obj is None:
        return obj
    return lookup_path(obj, selector)


# ---------------------------
# Options
# ---------------------------

def _item_label(item: Any) -> Any:
    if isinstance(item, Mapping):
        for k in ("label", "name", "id", "value", "address"):
            if item.get(k) is not None:
                return item[k]
        return json.dumps(item, separators=(",", ":"), default=str)
    return item


def _item_value(item: Any, fallback_key: Optional[str] = None) -> Any:
    if isinstance(item, Mapping):
        for k in ("value", "id", "address", "key"):
            if item.get(k) is not None:
                return item[k]
        if fallback_key is not None:
            return fallback_key
        return json.dumps(item, separators=(",", ":"), default=str)
    return item


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def to_options(raw: Any, mapping: Any = None, ctx: Optional[Mapping[str, Any]] = None) -> List[Dict[str, str]]:
    """
    Normalize a list (or a keyed object) into [{label, value}].

    `mapping` may carry `label` / `value` templates evaluated with `row`/`item`
    bound to each entry; otherwise conventional keys are used.
    """
    if not raw:
        return []
    mapping = mapping if isinstance(mapping, Mapping) else {}
    base_ctx = dict(ctx or {})

    def make(item: Any, fallback_key: Optional[str] = None) -> Dict[str, str]:
        local = {**base_ctx, "row": item, "item": item}
        label = evaluate(mapping["label"], local) if mapping.get("label") else _item_label(item)
        value = evaluate(mapping["value"], local) if mapping.get("value") else _item_value(item, fallback_key)
        if label is None and fallback_key is not None:
            label = fallback_key
        if value is None and fallback_key is not None:
            value = fallback_key
        return {"label": _text(label), "value": _text(value)}

    if isinstance(raw, list):
        return [make(item) for item in raw]
    if isinstance(raw, Mapping):
        return [make(v, k) for k, v in raw.items()]
    return []


def _expr_options(expr: str, ctx: Mapping[str, Any]) -> Optional[List[Any]]:
    out = evaluate_native(expr, ctx)
    return out if isinstance(out, list) else None


def options_for_field(field: FieldSpec, ctx: Mapping[str, Any], ds_value: Any = None) -> List[Dict[str, str]]:
    """
    Option sources in priority order: `map` expression -> live DS value -> static options.
    """
    if isinstance(field.map, str):
        mapped = _expr_options(field.map, ctx)
        if mapped is not None:
            return [
                {"label": _text(o.get("label")), "value": _text(o.get("value"))}
                if isinstance(o, Mapping)
                else {"label": _text(o), "value": _text(o)}
                for o in mapped
            ]
        logger.debug("field %s: map expression did not yield a list", field.key)

    mapping = field.map if isinstance(field.map, Mapping) else None
    if ds_value:
        return to_options(ds_value, mapping, ctx)

    static = field.options if isinstance(field.options, list) else []
    return to_options(static, mapping, ctx)


# ---------------------------
# Defaults
# ---------------------------

def ds_default(ds_value: Any) -> Any:
    if isinstance(ds_value, Mapping):
        if ds_value.get("amount") is not None:
            return ds_value["amount"]
        return ds_value.get("value")
    return None


def default_value(field: FieldSpec, value: Any, ctx: Mapping[str, Any], ds_value: Any = None) -> Any:
    """
    Current value -> the field's own templated `value` -> DS `amount`/`value`.
    """
    if not is_empty(value):
        return value
    if field.value is not None:
        own = evaluate_native(field.value, ctx)
        if not is_empty(own):
            return own
    fallback = ds_default(ds_value)
    if fallback is not None:
        return fallback
    return value


# ---------------------------
# Layout
# ---------------------------

def _clamp_span(n: Any) -> int:
    try:
        n = int(n)
    except (TypeError, ValueError):
        return GRID_COLUMNS
    return max(1, min(GRID_COLUMNS, n))


def span_of(field: FieldSpec, layout: Optional[Mapping[str, Any]] = None) -> int:
    """
    Grid span 1..12: field span -> ui.grid.colSpan -> layout default -> 12.
    A responsive object contributes its `base` entry.
    """
    conf = field.span
    if conf is None:
        ui = field.extra("ui") or {}
        conf = get_by_path(ui, "grid.colSpan")
    if conf is None and layout:
        conf = get_by_path(layout, "grid.defaultSpan")
    if isinstance(conf, Mapping):
        conf = conf.get("base", GRID_COLUMNS)
    return _clamp_span(conf if conf is not None else GRID_COLUMNS)


def flatten_fields(fields: Iterable[FieldSpec]) -> List[FieldSpec]:
    """
    Value-bearing fields with layout containers expanded, in document order.
    """
    out: List[FieldSpec] = []
    for f in fields:
        tag = normalize_tag(f.type)
        if tag in CONTAINER_TYPES:
            out.extend(flatten_fields(f.fields))
        elif tag not in LAYOUT_TYPES and f.key:
            out.append(f)
    return out
