# manifest/types.py
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ManifestModel(BaseModel):
    """
    Base for every declarative document model.

    Documents are authored in camelCase; unknown attributes are preserved so
    renderers and templates can read them.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def extra(self, key: str, default: Any = None) -> Any:
        return (self.model_extra or {}).get(key, default)


# ---------------------------
# Data sources
# ---------------------------

HostName = Literal["rpc", "admin"]


class Source(ManifestModel):
    base: HostName = "rpc"
    path: str = ""
    method: Optional[Literal["GET", "POST"]] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    # 'text' => raw body string, 'json' => serialized body
    encoding: Literal["json", "text"] = "json"


class DsCoerce(ManifestModel):
    ctx: Optional[Dict[str, str]] = None
    body: Optional[Dict[str, str]] = None
    # "" = root
    response: Optional[Dict[str, str]] = None


class DsCache(ManifestModel):
    stale_time_ms: Optional[int] = None
    refetch_interval_ms: Optional[int] = None


class DsPageParam(ManifestModel):
    page: Optional[str] = None
    per_page: Optional[str] = None
    cursor: Optional[str] = None
    limit: Optional[str] = None


class DsPageResponse(ManifestModel):
    items: Optional[Union[str, List[str]]] = None
    total_pages: Optional[str] = None
    next_page: Optional[str] = None
    next_cursor: Optional[str] = None


class DsPageDefaults(ManifestModel):
    per_page: Optional[int] = None
    start_page: Optional[int] = None
    limit: Optional[int] = None


class DsPaging(ManifestModel):
    strategy: Literal["page", "cursor"] = "page"
    param: DsPageParam = Field(default_factory=DsPageParam)
    response: DsPageResponse = Field(default_factory=DsPageResponse)
    defaults: DsPageDefaults = Field(default_factory=DsPageDefaults)


class DsLeaf(ManifestModel):
    source: Source
    body: Any = None
    selector: Optional[str] = None
    selector_each: Optional[str] = None
    cache: Optional[DsCache] = None
    coerce: Optional[DsCoerce] = None
    page: Optional[DsPaging] = None


# ---------------------------
# Fees
# ---------------------------

class FeeBucket(ManifestModel):
    multiplier: float = 1.0
    default: bool = False


class GasPrice(ManifestModel):
    type: Literal["static", "query"] = "static"
    value: Optional[Union[str, float, int]] = None
    base: HostName = "rpc"
    path: str = ""
    method: Optional[Literal["GET", "POST"]] = None
    selector: Optional[str] = None
    # used when the remote gas price cannot be read
    default: Optional[Union[str, float, int]] = None


class FeeProvider(ManifestModel):
    type: str
    # static
    amount: Optional[Union[str, int, float]] = None
    data: Any = None
    # query / simulate / external
    base: HostName = "rpc"
    path: str = ""
    url: Optional[str] = None
    method: Optional[Literal["GET", "POST"]] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    encoding: Literal["json", "text"] = "json"
    body: Any = None
    selector: Optional[str] = None
    # simulate
    gas_selector: Optional[str] = None
    gas_adjustment: float = 1.0
    gas_price: Optional[GasPrice] = None


class FeeConfig(ManifestModel):
    denom: str = ""
    refresh_ms: int = 30_000
    providers: List[FeeProvider] = Field(default_factory=list)
    buckets: Dict[str, FeeBucket] = Field(default_factory=dict)


# ---------------------------
# Chain configuration
# ---------------------------

class RpcHosts(ManifestModel):
    base: str = ""
    admin: Optional[str] = None


class Denom(ManifestModel):
    base: str = ""
    symbol: str = ""
    decimals: int = 6


class SessionConfig(ManifestModel):
    unlock_timeout_sec: Optional[int] = None


class RefreshConfig(ManifestModel):
    stale_time_ms: Optional[int] = None
    refetch_interval_ms: Optional[int] = None


class ParamsConfig(ManifestModel):
    refresh: Optional[RefreshConfig] = None


class ChainConfig(ManifestModel):
    chain_id: Optional[Union[str, int]] = None
    display_name: Optional[str] = None
    rpc: RpcHosts = Field(default_factory=RpcHosts)
    denom: Denom = Field(default_factory=Denom)
    ds: Dict[str, Any] = Field(default_factory=dict)
    metrics: Dict[str, Any] = Field(default_factory=dict)
    fees: Optional[FeeConfig] = None
    session: SessionConfig = Field(default_factory=SessionConfig)
    params: ParamsConfig = Field(default_factory=ParamsConfig)

    def as_context(self) -> Dict[str, Any]:
        """
        Plain-dict view used as `chain` inside template contexts.
        """
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------------------------
# Fields
# ---------------------------

class FieldFeature(ManifestModel):
    id: str = ""
    # copy | paste | set | max
    op: str
    from_: Optional[str] = Field(default=None, alias="from")
    field: Optional[str] = None
    value: Any = None
    label: Optional[str] = None


class FieldSpec(ManifestModel):
    type: str
    id: Optional[str] = None
    name: Optional[str] = None
    label: Optional[str] = None
    help: Optional[str] = None
    placeholder: Optional[str] = None
    required: Union[bool, str] = False
    disabled: Union[bool, str] = False
    read_only: bool = False
    span: Any = None
    rules: Dict[str, Any] = Field(default_factory=dict)
    validation: Dict[str, Any] = Field(default_factory=dict)
    # default-value template
    value: Any = None
    features: List[FieldFeature] = Field(default_factory=list)
    options: Any = None
    map: Any = None
    ds: Optional[Dict[str, Any]] = None
    show_if: Optional[str] = None
    transform: Optional[str] = None
    auto_populate: Union[bool, str] = "always"
    min: Optional[Union[float, int, str]] = None
    max: Optional[Union[float, int, str]] = None
    step: Optional[Union[float, int, str]] = None
    # children of layout containers (section, collapsibleGroup)
    fields: List["FieldSpec"] = Field(default_factory=list)

    @property
    def key(self) -> Optional[str]:
        """
        Form-state key: `name`, falling back to `id`.
        """
        return self.name or self.id


# ---------------------------
# Actions
# ---------------------------

class SummaryItem(ManifestModel):
    label: str = ""
    value: Any = ""
    icon: Optional[str] = None


class Confirmation(ManifestModel):
    title: Optional[str] = None
    summary: List[SummaryItem] = Field(default_factory=list)
    cta_label: Optional[str] = None
    danger: bool = False


class FormSpec(ManifestModel):
    fields: List[FieldSpec] = Field(default_factory=list)
    layout: Dict[str, Any] = Field(default_factory=dict)
    info: Optional[Dict[str, Any]] = None
    confirmation: Optional[Confirmation] = None


class WizardStep(ManifestModel):
    id: Optional[str] = None
    title: Optional[str] = None
    form: Optional[FormSpec] = None
    fields: List[FieldSpec] = Field(default_factory=list)

    @property
    def step_fields(self) -> List[FieldSpec]:
        if self.form is not None and self.form.fields:
            return self.form.fields
        return self.fields


class Submit(ManifestModel):
    base: HostName = "rpc"
    path: str = ""
    method: Literal["GET", "POST"] = "POST"
    headers: Optional[Dict[str, str]] = None
    encoding: Literal["json", "text"] = "json"
    body: Any = None


class AuthSpec(ManifestModel):
    type: Literal["sessionPassword", "none"] = "none"


class Action(ManifestModel):
    id: str
    label: Optional[str] = None
    title: Optional[str] = None
    icon: Optional[str] = None
    kind: str = "tx"
    flow: Literal["single", "wizard"] = "single"
    tags: List[str] = Field(default_factory=list)
    priority: Optional[int] = None
    order: Optional[int] = None
    requires_feature: Optional[str] = None
    hidden: bool = False

    auth: Optional[AuthSpec] = None
    submit: Optional[Submit] = None
    # key -> template string, or {"value": template, "coerce": kind}
    payload: Dict[str, Any] = Field(default_factory=dict)
    # "default" (chain policy) or an inline FeeConfig
    fees: Union[Literal["default"], FeeConfig] = "default"
    fee_key: Optional[str] = None

    form: Optional[FormSpec] = None
    steps: List[WizardStep] = Field(default_factory=list)
    confirm: Optional[Confirmation] = None
    success: Any = None
    notifications: Dict[str, Any] = Field(default_factory=dict)
    ds: Dict[str, Any] = Field(default_factory=dict)

    @property
    def display_label(self) -> str:
        return self.label or self.title or self.id

    @property
    def is_wizard(self) -> bool:
        return self.flow == "wizard"

    @property
    def confirmation(self) -> Optional[Confirmation]:
        if self.confirm is not None:
            return self.confirm
        if self.form is not None:
            return self.form.confirmation
        return None


class Manifest(ManifestModel):
    version: str = "1"
    ui: Dict[str, Any] = Field(default_factory=dict)
    actions: List[Action] = Field(default_factory=list)


FieldSpec.model_rebuild()
