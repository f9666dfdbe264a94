from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Dict, List, Optional, Sequence

from ds.coerce import coerce
from fields.helpers import flatten_fields
from manifest.types import Action, FieldSpec
from templating import TEMPLATE_FUNCTIONS, evaluate, evaluate_bool, resolve_deep, stringify

logger = logging.getLogger(__name__)

# field names always treated as numeric / boolean
NUMERIC_HINTS = {"amount", "receiveAmount", "fee", "gas", "gasPrice"}
BOOL_HINTS = {"delegate", "earlyWithdrawal", "submit"}

COERCE_KINDS = {"number", "int", "float", "string", "boolean", "null"}

QUICK_TAG = "quick"
DEFAULT_QUICK_MAX = 8


# ---------------------------
# Field selection
# ---------------------------

def fields_for_action(action: Action) -> List[FieldSpec]:
    """
    Every declared field: the form's, or all wizard steps' in order.
    """
    if action.is_wizard:
        out: List[FieldSpec] = []
        for step in action.steps:
            out.extend(step.step_fields)
        return out
    return list(action.form.fields) if action.form is not None else []


def fields_for_step(action: Action, step_index: int) -> List[FieldSpec]:
    if not action.is_wizard:
        return fields_for_action(action)
    if not 0 <= step_index < len(action.steps):
        return []
    return list(action.steps[step_index].step_fields)


def visible_fields(fields: Sequence[FieldSpec], ctx: Mapping[str, Any]) -> List[FieldSpec]:
    """
    Drop fields whose `showIf` evaluates false.
    """
    return [f for f in fields if not f.show_if or evaluate_bool(f.show_if, ctx)]


# ---------------------------
# Normalization / payload
# ---------------------------

def _transform(value: Any, transform: str) -> Any:
    if transform in COERCE_KINDS:
        return coerce(value, transform)
    fn = TEMPLATE_FUNCTIONS.get(transform)
    if fn is None:
        logger.warning("Unknown field transform %r", transform)
        return value
    return fn(stringify(value))


def normalize_form_for_action(action: Action, form: Mapping[str, Any]) -> Dict[str, Any]:
    """
    amount fields / numeric-hinted names -> numbers ("1,234.5" -> 1234.5),
    boolean-hinted names -> booleans, then each field's `transform`.
    """
    out = dict(form)
    for f in flatten_fields(fields_for_action(action)):
        name = f.key
        if name is None or name not in out:
            continue
        if f.type == "amount" or name in NUMERIC_HINTS:
            out[name] = coerce(out[name], "number")
        if name in BOOL_HINTS:
            out[name] = coerce(out[name], "boolean")
        if f.transform:
            out[name] = _transform(out[name], f.transform)
    return out


def build_payload_from_action(action: Action, ctx: Mapping[str, Any]) -> Dict[str, Any]:
    """
    `payload` entries: a template string, or {"value": template, "coerce": kind}.
    Without a payload map the submit body template is rendered instead.
    """
    if not action.payload:
        body = action.submit.body if action.submit is not None else None
        rendered = resolve_deep(body, ctx) if body is not None else {}
        return rendered if isinstance(rendered, dict) else {"body": rendered}

    result: Dict[str, Any] = {}
    for key, val in action.payload.items():
        if isinstance(val, str):
            result[key] = evaluate(val, ctx)
        elif isinstance(val, Mapping) and "value" in val:
            resolved = evaluate(val["value"], ctx)
            kind = val.get("coerce")
            result[key] = coerce(resolved, kind) if kind else resolved
        else:
            result[key] = resolve_deep(val, ctx)
    return result


def build_confirm_summary(action: Action, ctx: Mapping[str, Any]) -> List[Dict[str, Any]]:
    confirmation = action.confirmation
    if confirmation is None:
        return []
    return [
        {
            "label": evaluate(item.label, ctx),
            "value": evaluate(item.value, ctx) if isinstance(item.value, str) else item.value,
            "icon": item.icon,
        }
        for item in confirmation.summary
    ]


def has_confirmation(action: Action) -> bool:
    confirmation = action.confirmation
    return confirmation is not None and len(confirmation.summary) > 0


# ---------------------------
# Catalog
# ---------------------------

def _rank(action: Action) -> int:
    if action.priority is not None:
        return action.priority
    if action.order is not None:
        return action.order
    return 0


def select_quick_actions(actions: Sequence[Action], max_count: Optional[int] = None) -> List[Action]:
    """
    Visible actions tagged `quick` without a feature requirement, highest rank first.
    """
    limit = DEFAULT_QUICK_MAX if max_count is None else max_count
    eligible = [
        a for a in actions
        if not a.hidden and QUICK_TAG in a.tags and not a.requires_feature
    ]
    return sorted(eligible, key=_rank, reverse=True)[:limit]
