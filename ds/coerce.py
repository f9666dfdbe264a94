from __future__ import annotations

import copy
import math
import re
from typing import Any, Dict, Mapping

CoerceSpec = Dict[str, str]

_TRUE_STRINGS = ("true", "1", "on")
_INT_PREFIX_RE = re.compile(r"^\s*([+-]?\d+)")


def _strip_separators(value: Any) -> str:
    return str(value).replace(",", "")


def _as_number(value: Any) -> Any:
    text = _strip_separators(value).strip()
    try:
        n = int(text)
    except ValueError:
        try:
            f = float(text)
        except ValueError:
            return value
        if not math.isfinite(f):
            return value
        return f
    return n


def _as_float(value: Any) -> Any:
    try:
        f = float(_strip_separators(value).strip())
    except ValueError:
        return value
    if not math.isfinite(f):
        return value
    return f


def _as_int(value: Any) -> Any:
    # parse the leading integer like parseInt: "12.7" -> 12, "abc" stays "abc"
    m = _INT_PREFIX_RE.match(_strip_separators(value))
    if not m:
        return value
    return int(m.group(1))


def coerce(value: Any, kind: str) -> Any:
    """
    Cast a raw value to `kind` (number|int|float|string|boolean|null).

    Malformed numeric input is returned unchanged; nothing here raises.
    """
    if kind in ("number", "float", "int"):
        if value is None or value == "" or isinstance(value, bool):
            return value
        if kind == "int":
            return _as_int(value)
        if kind == "float":
            return _as_float(value)
        return _as_number(value)

    if kind == "boolean":
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return value == 1
        return value in _TRUE_STRINGS

    if kind == "null":
        return None

    # string and unknown kinds
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _parent_of(target: Any, parts: list[str]) -> Any:
    current = target
    for key in parts:
        if isinstance(current, dict):
            current = current.get(key)
        elif isinstance(current, list) and key.lstrip("-").isdigit():
            idx = int(key)
            current = current[idx] if -len(current) <= idx < len(current) else None
        else:
            return None
    return current


def apply_coerce(obj: Any, spec: Mapping[str, str] | None) -> Any:
    """
    Walk a dotted-path -> kind mapping over a deep copy of `obj`.

    "" addresses the root. A path whose parent does not exist is skipped.
    """
    if not spec:
        return obj

    out = copy.deepcopy(obj) if isinstance(obj, (dict, list)) else obj

    for path, kind in spec.items():
        if path == "" or path is None:
            out = coerce(out, kind)
            continue
        if not isinstance(out, (dict, list)):
            continue

        parts = path.split(".")
        last = parts.pop()
        parent = _parent_of(out, parts)

        if isinstance(parent, dict) and last in parent:
            parent[last] = coerce(parent[last], kind)
        elif isinstance(parent, list) and last.lstrip("-").isdigit():
            idx = int(last)
            if -len(parent) <= idx < len(parent):
                parent[idx] = coerce(parent[idx], kind)

    return out
