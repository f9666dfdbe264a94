# fields/validators.py
from __future__ import annotations

import logging
import math
import re
from collections.abc import Mapping
from typing import Any, Callable, Dict, Iterable, Optional

from ds.coerce import coerce
from fields.helpers import LAYOUT_TYPES, flatten_fields, is_empty, normalize_tag
from manifest.types import FieldSpec
from templating import evaluate, evaluate_bool

logger = logging.getLogger(__name__)

NUMERIC_TYPES = {"amount", "number", "range"}

DEFAULT_MESSAGES: Dict[str, str] = {
    "required": "This field is required.",
    "number": "Must be a valid number.",
    "min": "Minimum allowed is {{min}}.",
    "max": "Maximum allowed is {{max}}.",
    "gt": "Must be > {{gt}}",
    "gte": "Must be >= {{gte}}",
    "lt": "Must be < {{lt}}",
    "lte": "Must be <= {{lte}}",
    "minSelected": "Minimum selected is {{min}}.",
    "maxSelected": "Maximum selected is {{max}}.",
    "length.min": "Minimum length is {{length.min}} characters.",
    "length.max": "Maximum length is {{length.max}} characters.",
    "pattern": "Invalid format.",
    "address": "Invalid address.",
}

_NUMBER_RE = re.compile(r"[-+]?(?:\d{1,3}(?:[ ,]\d{3})+|\d+)(?:[.,]\d+)?")

AddressValidator = Callable[[str], bool]
_address_validator: Optional[AddressValidator] = None


def set_address_validator(fn: Optional[AddressValidator]) -> None:
    """
    Install the chain-specific address check (None disables it).
    """
    global _address_validator
    _address_validator = fn


def eval_numeric(value: Any, ctx: Mapping[str, Any]) -> Optional[float]:
    """
    Numeric limit from a number or a (templated) string such as "1,000.5 CNPY".
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if not isinstance(value, str):
        return None

    raw = evaluate(value, ctx) if "{{" in value else value
    m = _NUMBER_RE.search(raw.replace("\u00a0", " "))
    if not m:
        return None

    num = m.group(0).strip()
    if "," in num and "." in num:
        if num.rfind(",") > num.rfind("."):
            num = num.replace(".", "").replace(",", ".")
        else:
            num = num.replace(",", "")
    elif "," in num:
        num = num.replace(",", ".")
    num = re.sub(r"\s+", "", num)

    try:
        n = float(num)
    except ValueError:
        return None
    return n if math.isfinite(n) else None


def _rules(field: FieldSpec) -> Dict[str, Any]:
    # `validation` (long form) and `rules` (short form) are merged; rules win
    return {**field.validation, **field.rules}


def _message(field: FieldSpec, code: str, params: Mapping[str, Any]) -> str:
    overrides = _rules(field).get("messages") or {}
    raw = overrides.get(code) or DEFAULT_MESSAGES[code]
    return evaluate(raw, params)


def _params(field: FieldSpec, value: Any, ctx: Mapping[str, Any], **extra: Any) -> Dict[str, Any]:
    return {**dict(ctx), "field": field.model_dump(by_alias=True), "value": value, **extra}


def _as_number(value: Any) -> Optional[float]:
    n = coerce(value, "number")
    if isinstance(n, bool) or not isinstance(n, (int, float)):
        return None
    return float(n) if math.isfinite(n) else None


def _validate_selection(field: FieldSpec, value: Any, ctx: Mapping[str, Any], required: bool) -> Optional[str]:
    items = value if isinstance(value, list) else ([value] if not is_empty(value) else [])
    if required and not items:
        return _message(field, "required", _params(field, value, ctx))

    rules = _rules(field)
    lo = eval_numeric(rules.get("minSelected", rules.get("min")), ctx)
    hi = eval_numeric(rules.get("maxSelected", rules.get("max")), ctx)
    if lo is not None and len(items) < lo:
        return _message(field, "minSelected", _params(field, value, ctx, min=lo))
    if hi is not None and len(items) > hi:
        return _message(field, "maxSelected", _params(field, value, ctx, max=hi))
    return None


def _validate_numeric(field: FieldSpec, value: Any, ctx: Mapping[str, Any]) -> Optional[str]:
    n = _as_number(value)
    if n is None:
        return _message(field, "number", _params(field, value, ctx))

    rules = _rules(field)
    lo = eval_numeric(field.min if field.min is not None else rules.get("min"), ctx)
    hi = eval_numeric(field.max if field.max is not None else rules.get("max"), ctx)
    if lo is not None and n < lo:
        return _message(field, "min", _params(field, n, ctx, min=lo))
    if hi is not None and n > hi:
        return _message(field, "max", _params(field, n, ctx, max=hi))

    checks = (
        ("gt", lambda limit: n > limit),
        ("gte", lambda limit: n >= limit),
        ("lt", lambda limit: n < limit),
        ("lte", lambda limit: n <= limit),
    )
    for code, ok in checks:
        limit = eval_numeric(rules.get(code), ctx)
        if limit is not None and not ok(limit):
            return _message(field, code, _params(field, n, ctx, **{code: limit}))
    return None


def _validate_text(field: FieldSpec, value: Any, ctx: Mapping[str, Any]) -> Optional[str]:
    rules = _rules(field)
    text = "" if value is None else str(value)

    length = rules.get("length")
    if isinstance(length, Mapping):
        lmin = eval_numeric(length.get("min"), ctx)
        lmax = eval_numeric(length.get("max"), ctx)
        bounds = {"length": {"min": lmin, "max": lmax}}
        if lmin is not None and len(text) < lmin:
            return _message(field, "length.min", _params(field, value, ctx, **bounds))
        if lmax is not None and len(text) > lmax:
            return _message(field, "length.max", _params(field, value, ctx, **bounds))

    pattern = rules.get("pattern")
    if isinstance(pattern, str) and pattern:
        try:
            rx = re.compile(evaluate(pattern, ctx))
        except re.error as e:
            logger.warning("field %s: invalid pattern %r: %s", field.key, pattern, e)
        else:
            if not rx.search(text):
                return _message(field, "pattern", _params(field, value, ctx))

    if normalize_tag(field.type) == "address" and _address_validator is not None:
        if not _address_validator(text):
            return _message(field, "address", _params(field, value, ctx))
    return None


def validate_field(field: FieldSpec, value: Any, ctx: Optional[Mapping[str, Any]] = None) -> Optional[str]:
    """
    First failing rule's message, or None when the value is acceptable.
    """
    ctx = ctx or {}
    tag = normalize_tag(field.type)
    if tag == "switch" or tag in LAYOUT_TYPES:
        return None

    required = evaluate_bool(field.required, ctx)

    if tag == "tableSelect":
        return _validate_selection(field, value, ctx, required)

    if isinstance(value, str) and "{{" in value:
        rendered = evaluate(value, ctx)
        value = value if is_empty(rendered) else rendered

    if is_empty(value):
        if required:
            return _message(field, "required", _params(field, value, ctx))
        return None

    if tag in ("option", "optionCard"):
        return None

    if tag in NUMERIC_TYPES:
        err = _validate_numeric(field, value, ctx)
        if err:
            return err

    return _validate_text(field, value, ctx)


def validate_fields(
    fields: Iterable[FieldSpec],
    form: Mapping[str, Any],
    ctx: Optional[Mapping[str, Any]] = None,
) -> Dict[str, str]:
    """
    Field name -> message for every failing field.
    """
    errors: Dict[str, str] = {}
    for f in flatten_fields(fields):
        err = validate_field(f, form.get(f.key), ctx)
        if err:
            errors[f.key] = err
    return errors
