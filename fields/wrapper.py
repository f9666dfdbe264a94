from __future__ import annotations

import logging
from typing import Any, Callable, List, Mapping, Optional, Protocol

from fields.helpers import normalize_tag, span_of
from fields.types import FeatureButton, FieldProps, FieldView
from manifest.types import FieldFeature
from templating import evaluate, evaluate_bool, evaluate_native

logger = logging.getLogger(__name__)


class Clipboard(Protocol):
    def read_text(self) -> str: ...

    def write_text(self, text: str) -> None: ...


class MemoryClipboard:
    def __init__(self, text: str = ""):
        self.text = text

    def read_text(self) -> str:
        return self.text

    def write_text(self, text: str) -> None:
        self.text = text


def feature_label(feature: FieldFeature) -> str:
    if feature.op == "copy":
        return "Copy"
    if feature.op == "paste":
        return "Paste"
    if feature.op in ("set", "max"):
        return feature.label or "Max"
    return feature.op


def feature_buttons(features: List[FieldFeature]) -> List[FeatureButton]:
    return [
        FeatureButton(id=f.id or f"{f.op}-{i}", op=f.op, label=feature_label(f))
        for i, f in enumerate(features)
    ]


def run_feature(
    feature: FieldFeature,
    *,
    field_name: str,
    ctx: Mapping[str, Any],
    set_value: Callable[[str, Any], None],
    clipboard: Optional[Clipboard] = None,
) -> Any:
    """
    Execute one inline feature and return what it produced.

    copy  -> writes the evaluated `from` template to the clipboard
    paste -> reads the clipboard into this field
    set / max -> writes the evaluated `value` into `field` (default: this field)
    """
    if feature.op == "copy":
        text = evaluate(feature.from_ or "", ctx)
        if clipboard is not None:
            clipboard.write_text(text)
        return text

    if feature.op == "paste":
        if clipboard is None:
            logger.info("paste on %s ignored: no clipboard", field_name)
            return None
        text = clipboard.read_text()
        set_value(field_name, text)
        return text

    if feature.op in ("set", "max"):
        value = evaluate_native(feature.value, ctx)
        set_value(feature.field or field_name, value)
        return value

    logger.warning("Unknown field feature op %r on %s", feature.op, field_name)
    return None


def wrap(props: FieldProps, *, value: Any = None, **extra: Any) -> FieldView:
    """
    Shared chrome for every control: label, help/error (error wins), span,
    flags and feature buttons.
    """
    f = props.field
    layout = props.template_context.get("layout") if isinstance(props.template_context, Mapping) else None
    help_text = props.error or (props.resolve(f.help) if f.help else None)

    view = FieldView(
        type=normalize_tag(f.type),
        name=f.key,
        label=props.resolve(f.label) if f.label else None,
        help=help_text or None,
        error=props.error,
        placeholder=props.resolve(f.placeholder) if f.placeholder else None,
        value=value,
        span=span_of(f, layout),
        read_only=f.read_only or evaluate_bool(f.disabled, props.template_context),
        required=evaluate_bool(f.required, props.template_context),
        features=feature_buttons(f.features),
    )
    for k, v in extra.items():
        if hasattr(view, k):
            setattr(view, k, v)
        else:
            view.attrs[k] = v
    return view
