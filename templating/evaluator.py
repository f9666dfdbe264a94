from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from typing import Any, Iterator, List, Tuple

from templating.functions import TEMPLATE_FUNCTIONS

logger = logging.getLogger(__name__)

OPEN = "{{"
CLOSE = "}}"

# name<inner>
_FN_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)<(.*)>$", re.DOTALL)

_FALSY = {"", "false", "0", "null", "undefined", "none", "nan"}


# ---------------------------
# Value helpers
# ---------------------------

def stringify(value: Any) -> str:
    """
    Textual form of a looked-up value: mappings/lists as compact JSON,
    booleans lower-case, None as empty string.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)
    return str(value)


def lookup_path(context: Any, path: str) -> Any:
    """
    Dot-separated traversal. Missing intermediates yield None, never raise.
    """
    current = context
    for raw in path.split("."):
        seg = raw.strip()
        if current is None or not seg:
            return None
        if isinstance(current, Mapping):
            current = current.get(seg)
        elif isinstance(current, (list, tuple)):
            try:
                idx = int(seg)
            except ValueError:
                return None
            current = current[idx] if -len(current) <= idx < len(current) else None
        else:
            current = getattr(current, seg, None)
    return current


def _match_close(text: str, pos: int) -> int:
    """
    Index of the `}}` closing the span whose body starts at `pos`, or -1.
    """
    depth = 1
    n = len(text)
    while pos < n:
        if text.startswith(OPEN, pos):
            depth += 1
            pos += 2
        elif text.startswith(CLOSE, pos):
            depth -= 1
            if depth == 0:
                return pos
            pos += 2
        else:
            pos += 1
    return -1


def _iter_parts(text: str) -> Iterator[Tuple[bool, str]]:
    """
    Yields (is_expression, chunk). An unclosed `{{` yields the remainder as literal.
    """
    i = 0
    n = len(text)
    while i < n:
        start = text.find(OPEN, i)
        if start < 0:
            yield False, text[i:]
            return
        if start > i:
            yield False, text[i:start]
        end = _match_close(text, start + 2)
        if end < 0:
            yield False, text[start:]
            return
        yield True, text[start + 2:end]
        i = end + 2


def _eval_expression(expr: str, context: Any) -> Any:
    expr = expr.strip()
    if not expr:
        return None

    m = _FN_RE.match(expr)
    if m:
        name, inner = m.group(1), m.group(2)
        if OPEN in inner:
            arg = evaluate(inner, context)
        else:
            arg = stringify(_eval_expression(inner, context))
        fn = TEMPLATE_FUNCTIONS.get(name)
        if fn is None:
            logger.warning("Unknown template function %r; rendering empty string", name)
            return ""
        return fn(arg)

    return lookup_path(context, expr)


# ---------------------------
# Public API
# ---------------------------

def evaluate(template: Any, context: Any) -> str:
    """
    Render every `{{ ... }}` span of `template` against `context`.

    Literal text is copied verbatim. A span is either a function application
    `name<inner>` (inner evaluated first) or a dotted path lookup. Missing
    paths render as "". An unclosed `{{` passes the rest through untouched.
    """
    if not isinstance(template, str):
        return stringify(template)

    out: List[str] = []
    for is_expr, chunk in _iter_parts(template):
        if is_expr:
            out.append(stringify(_eval_expression(chunk, context)))
        else:
            out.append(chunk)
    return "".join(out)


def evaluate_native(template: Any, context: Any) -> Any:
    """
    Like evaluate() but hands back structured data when the rendered text is a
    JSON list/object (e.g. option lists). Non-string input is returned as-is.
    """
    if not isinstance(template, str):
        return template
    rendered = evaluate(template, context)
    stripped = rendered.strip()
    if stripped[:1] in ("[", "{"):
        try:
            return json.loads(stripped)
        except ValueError:
            return rendered
    return rendered


def evaluate_bool(template: Any, context: Any) -> bool:
    if isinstance(template, bool):
        return template
    if template is None:
        return False
    return evaluate(template, context).strip().lower() not in _FALSY


def resolve_deep(value: Any, context: Any) -> Any:
    """
    Apply evaluate() to every string nested in dicts/lists.
    """
    if isinstance(value, str):
        return evaluate(value, context)
    if isinstance(value, list):
        return [resolve_deep(v, context) for v in value]
    if isinstance(value, dict):
        return {k: resolve_deep(v, context) for k, v in value.items()}
    return value


def _expression_paths(expr: str, found: List[str]) -> None:
    expr = expr.strip()
    if not expr:
        return
    m = _FN_RE.match(expr)
    if m:
        inner = m.group(2)
        if OPEN in inner:
            for is_expr, chunk in _iter_parts(inner):
                if is_expr:
                    _expression_paths(chunk, found)
        else:
            _expression_paths(inner, found)
        return
    found.append(expr)


def collect_dependencies(value: Any) -> List[str]:
    """
    Dotted paths referenced anywhere in a template structure, de-duplicated
    in first-seen order.
    """
    found: List[str] = []

    def walk(v: Any) -> None:
        if isinstance(v, str):
            for is_expr, chunk in _iter_parts(v):
                if is_expr:
                    _expression_paths(chunk, found)
        elif isinstance(v, list):
            for item in v:
                walk(item)
        elif isinstance(v, dict):
            for item in v.values():
                walk(item)

    walk(value)
    return list(dict.fromkeys(found))
