from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from manifest.types import FieldSpec
from templating import evaluate


def _noop(_value: Any) -> None:
    return None


@dataclass
class FieldProps:
    """
    Contract every field renderer receives.
    """

    field: FieldSpec
    value: Any = None
    error: Optional[str] = None
    template_context: Mapping[str, Any] = field(default_factory=dict)
    ds_value: Any = None
    on_change: Callable[[Any], None] = _noop
    resolve_template: Optional[Callable[[Any], Any]] = None
    set_field_value: Optional[Callable[[str, Any], None]] = None

    def resolve(self, value: Any) -> Any:
        if self.resolve_template is not None:
            return self.resolve_template(value)
        if isinstance(value, str):
            return evaluate(value, self.template_context)
        return value


@dataclass
class FeatureButton:
    id: str
    op: str
    label: str


@dataclass
class FieldView:
    """
    Host-agnostic description of one rendered control.
    """

    type: str
    name: Optional[str] = None
    label: Optional[str] = None
    help: Optional[str] = None
    error: Optional[str] = None
    placeholder: Optional[str] = None
    value: Any = None
    span: int = 12
    read_only: bool = False
    required: bool = False
    options: Optional[List[Dict[str, str]]] = None
    features: List[FeatureButton] = field(default_factory=list)
    children: List["FieldView"] = field(default_factory=list)
    attrs: Dict[str, Any] = field(default_factory=dict)
    unsupported: bool = False
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


Renderer = Callable[[FieldProps], FieldView]
