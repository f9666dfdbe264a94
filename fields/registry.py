from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Dict, Optional

from fields import renderers
from fields.helpers import normalize_tag
from fields.types import FieldProps, FieldView, Renderer
from fields.wrapper import wrap

logger = logging.getLogger(__name__)


def _child_props(props: FieldProps, child) -> FieldProps:
    form = props.template_context.get("form") if isinstance(props.template_context, Mapping) else None
    value = form.get(child.key) if isinstance(form, Mapping) and child.key else None
    return FieldProps(
        field=child,
        value=value,
        template_context=props.template_context,
        ds_value=None,
        on_change=props.on_change,
        resolve_template=props.resolve_template,
        set_field_value=props.set_field_value,
    )


def render_container(props: FieldProps) -> FieldView:
    """
    section / collapsibleGroup: renders nested fields in order.
    """
    children = [render_field(_child_props(props, child)) for child in props.field.fields]
    return wrap(
        props,
        children=children,
        collapsed=bool(props.field.extra("collapsed", False)),
    )


FIELD_REGISTRY: Dict[str, Renderer] = {
    "text": renderers.render_text,
    "textarea": renderers.render_text,
    "amount": renderers.render_amount,
    "number": renderers.render_number,
    "range": renderers.render_range,
    "address": renderers.render_address,
    "select": renderers.render_select,
    "advancedSelect": renderers.render_select,
    "switch": renderers.render_switch,
    "option": renderers.render_option,
    "optionCard": renderers.render_option,
    "tableSelect": renderers.render_table_select,
    "dynamicHtml": renderers.render_dynamic_html,
    "section": render_container,
    "collapsibleGroup": render_container,
    "divider": renderers.render_divider,
    "spacer": renderers.render_spacer,
    "heading": renderers.render_heading,
}


def register_field(tag: str, renderer: Renderer) -> None:
    FIELD_REGISTRY[normalize_tag(tag)] = renderer


def get_field_renderer(tag: str) -> Optional[Renderer]:
    return FIELD_REGISTRY.get(normalize_tag(tag))


def render_field(props: FieldProps) -> FieldView:
    """
    Dispatch on the field's type tag; unknown tags yield a visible placeholder.
    """
    renderer = get_field_renderer(props.field.type)
    if renderer is None:
        logger.warning("Unsupported field type: %s", props.field.type)
        return FieldView(
            type=props.field.type,
            name=props.field.key,
            unsupported=True,
            message=f"Unsupported field type: {props.field.type}",
        )
    return renderer(props)
