from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Callable, Dict, Optional

from manifest.types import Action
from templating import evaluate

NOTIFICATION_KEYS = ("onInit", "onBeforeSubmit", "onSuccess", "onError", "onFinally")

Notifier = Callable[[str, Dict[str, Any]], None]


def _tpl(value: Any, data: Mapping[str, Any]) -> Any:
    return evaluate(value, data) if isinstance(value, str) else value


def resolve_notification(
    action: Action,
    key: str,
    ctx: Mapping[str, Any],
    result: Any = None,
) -> Optional[Dict[str, Any]]:
    """
    Render the action's notification node for `key`, or None if it declares none.
    `result` is exposed to templates as `result`.
    """
    node = action.notifications.get(key)
    if not isinstance(node, Mapping):
        return None

    data = {**dict(ctx), "result": result}
    actions = []
    for a in node.get("actions") or []:
        if not isinstance(a, Mapping):
            continue
        rendered = {**a, "label": _tpl(a.get("label"), data)}
        if a.get("type") == "link":
            rendered["href"] = _tpl(a.get("href"), data)
        actions.append(rendered)

    return {
        "key": key,
        "variant": node.get("variant"),
        "title": _tpl(node.get("title"), data),
        "description": _tpl(node.get("description"), data),
        "icon": node.get("icon"),
        "sticky": node.get("sticky"),
        "durationMs": node.get("durationMs"),
        "actions": actions,
    }
