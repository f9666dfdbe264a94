from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import httpx

from app.config import Settings, get_settings
from chain.chains import host_or_empty
from chain.rpc import RemoteCall, RpcClient
from ds.coerce import apply_coerce
from manifest.types import ChainConfig, DsLeaf, DsPageResponse
from templating import lookup_path, resolve_deep

logger = logging.getLogger(__name__)


class DsResolutionError(LookupError):
    pass


class DsResponseError(ValueError):
    pass


PageParam = Dict[str, Any]
CacheKey = Tuple[str, str, str, str]

_JSONISH_RE = re.compile(r"^\s*[{\[]")


# ---------------------------
# Lookup
# ---------------------------

def get_at(obj: Any, path: Optional[str]) -> Any:
    """
    Dotted-path read; an empty path returns `obj` itself.
    """
    if not path:
        return obj
    return lookup_path(obj, path)


def _read_node(chain: Optional[ChainConfig], key: str) -> Any:
    if chain is None:
        return None
    node = get_at(chain.ds, key)
    if node is None:
        node = get_at(chain.metrics, key)
    return node


def has_ds_key(chain: Optional[ChainConfig], key: str) -> bool:
    return _read_node(chain, key) is not None


def find_leaf(chain: Optional[ChainConfig], key: str) -> Optional[DsLeaf]:
    """
    Leaf at `key` under `ds`, then `metrics`. Grouping nodes (no `source`) are not leaves.
    """
    node = _read_node(chain, key)
    if isinstance(node, Mapping) and node.get("source"):
        return DsLeaf.model_validate(node)
    return None


def resolve_leaf(chain: Optional[ChainConfig], key: str) -> DsLeaf:
    leaf = find_leaf(chain, key)
    if leaf is None:
        raise DsResolutionError(f"DS key not found: {key}")
    return leaf


# ---------------------------
# Request building
# ---------------------------

def _chain_ctx(chain: Optional[ChainConfig]) -> Dict[str, Any]:
    return chain.as_context() if chain is not None else {}


def make_url(chain: Optional[ChainConfig], leaf: DsLeaf) -> str:
    base = host_or_empty(chain, leaf.source.base)
    if not base or not leaf.source.path:
        return ""
    return f"{base}{leaf.source.path}"


def _has_body(leaf: DsLeaf) -> bool:
    return leaf.body is not None and leaf.body != ""


def build_request(
    chain: Optional[ChainConfig],
    leaf: DsLeaf,
    ctx: Optional[Mapping[str, Any]] = None,
    *,
    key: str = "",
) -> RemoteCall:
    """
    Turn a leaf + caller context into a RemoteCall.

    Body pipeline (non-GET only): coerce ctx -> render templates -> coerce body
    -> serialize per `source.encoding`.
    """
    method = leaf.source.method or ("POST" if _has_body(leaf) else "GET")
    headers: Dict[str, str] = {"accept": "application/json", **leaf.source.headers}

    tpl_ctx: Dict[str, Any] = {**dict(ctx or {}), "chain": _chain_ctx(chain)}
    if leaf.coerce is not None and leaf.coerce.ctx:
        tpl_ctx = apply_coerce(tpl_ctx, leaf.coerce.ctx)

    body: Optional[str] = None
    if method != "GET" and leaf.body is not None:
        rendered = resolve_deep(leaf.body, tpl_ctx)
        coerced = apply_coerce(rendered, leaf.coerce.body if leaf.coerce else None)

        headers.setdefault("content-type", "application/json")
        if leaf.source.encoding == "text" and isinstance(coerced, str):
            body = coerced
        else:
            body = json.dumps(coerced)

    url = make_url(chain, leaf)
    if not url:
        raise DsResolutionError(f"Invalid DS url for key {key or leaf.source.path}")

    return RemoteCall(
        url=url,
        method=method,
        headers=headers,
        body=body,
        tool_name=f"ds.{key}" if key else "ds.call",
    )


# ---------------------------
# Response handling
# ---------------------------

def _looks_like_json(value: Any) -> bool:
    return isinstance(value, str) and bool(_JSONISH_RE.match(value))


def _parse_once(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return text


def normalize_jsonish(value: Any) -> Any:
    """
    One level only: a JSON-looking string is parsed, JSON-looking strings
    inside a list are parsed, everything else is returned unchanged.
    """
    if isinstance(value, str):
        return _parse_once(value) if _looks_like_json(value) else value
    if isinstance(value, list):
        return [_parse_once(v) if _looks_like_json(v) else v for v in value]
    return value


def _decode_body(res: httpx.Response) -> Any:
    content_type = res.headers.get("content-type", "")
    if "application/json" not in content_type:
        return res.text
    try:
        return res.json()
    except ValueError as e:
        raise DsResponseError(f"Malformed JSON response (status {res.status_code}): {e}") from e


def select_value(raw: Any, leaf: DsLeaf) -> Any:
    """
    normalize -> coerce.response -> selector (per-element fallback) ->
    normalize -> selectorEach
    """
    normalized = normalize_jsonish(raw)

    if leaf.coerce is not None and leaf.coerce.response:
        normalized = apply_coerce(normalized, leaf.coerce.response)

    selected = get_at(normalized, leaf.selector)
    if selected is None and leaf.selector and isinstance(normalized, list):
        selected = [get_at(item, leaf.selector) for item in normalized]

    selected = normalize_jsonish(selected)

    if leaf.selector_each and isinstance(selected, list):
        selected = [get_at(item, leaf.selector_each) for item in selected]

    return selected


def parse_response(res: httpx.Response, leaf: DsLeaf) -> Any:
    return select_value(_decode_body(res), leaf)


async def fetch_ds_once(
    rpc: RpcClient,
    chain: Optional[ChainConfig],
    key: str,
    ctx: Optional[Mapping[str, Any]] = None,
) -> Any:
    """
    Resolve, call and parse a single leaf. No caching, no retry.
    """
    leaf = resolve_leaf(chain, key)
    call = build_request(chain, leaf, ctx, key=key)
    res = await rpc.send(call)
    return parse_response(res, leaf)


# ---------------------------
# Paging
# ---------------------------

def build_paging_ctx(
    base_ctx: Optional[Mapping[str, Any]],
    chain: Optional[ChainConfig],
    page: Mapping[str, Any],
) -> Dict[str, Any]:
    return {**dict(base_ctx or {}), **dict(page), "chain": _chain_ctx(chain)}


def _as_list(value: Any) -> List[Any]:
    if isinstance(value, list):
        return value
    return [value] if value is not None else []


def select_items_from_response(
    raw: Any,
    items_path: Union[str, Sequence[str], None] = None,
    fallback_selector: Optional[str] = None,
) -> List[Any]:
    """
    Items of one page. Several item paths are concatenated in order;
    scalars become one-element lists; absent values contribute nothing.
    """
    if isinstance(items_path, str) or items_path is None:
        paths = [items_path or fallback_selector]
    else:
        paths = list(items_path)
    paths = [p for p in paths if p]

    if not paths:
        return _as_list(raw)

    items: List[Any] = []
    for path in paths:
        items.extend(_as_list(get_at(raw, path)))
    return items


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def compute_next_param(
    strategy: Optional[str],
    response_cfg: Union[DsPageResponse, Mapping[str, Any], None],
    raw: Any,
    now_page: int,
    per_page: int,
    items_len: int,
) -> Optional[PageParam]:
    """
    Next page parameter, or None when there are no more pages.

    cursor: declared `nextCursor` path, else raw `next` / `nextCursor`.
    page:   explicit next page -> total pages vs current page -> full-page
            heuristic (only when the response declares neither).
    """
    if response_cfg is None:
        cfg = DsPageResponse()
    elif isinstance(response_cfg, DsPageResponse):
        cfg = response_cfg
    else:
        cfg = DsPageResponse.model_validate(dict(response_cfg))

    if strategy == "cursor":
        if cfg.next_cursor:
            cursor = get_at(raw, cfg.next_cursor)
        elif isinstance(raw, Mapping):
            cursor = raw.get("next") or raw.get("nextCursor")
        else:
            cursor = None
        return {"cursor": cursor} if cursor else None

    explicit_next = get_at(raw, cfg.next_page) if cfg.next_page else None
    if _is_number(explicit_next):
        return {"page": int(explicit_next)}

    if cfg.total_pages:
        total_pages = get_at(raw, cfg.total_pages)
    elif isinstance(raw, Mapping):
        total_pages = raw.get("totalPages")
    else:
        total_pages = None

    if _is_number(total_pages):
        return {"page": now_page + 1} if now_page < total_pages else None

    if cfg.next_page or cfg.total_pages:
        return None
    if per_page > 0 and items_len >= per_page:
        return {"page": now_page + 1}
    return None


# ---------------------------
# Cache material
# ---------------------------

@dataclass(frozen=True)
class CachePolicy:
    stale_time_ms: int
    refetch_interval_ms: Optional[int] = None


def canonical_ctx(ctx: Optional[Mapping[str, Any]]) -> str:
    return json.dumps(dict(ctx or {}), sort_keys=True, separators=(",", ":"), default=str)


def cache_key(chain: Optional[ChainConfig], key: str, ctx: Optional[Mapping[str, Any]] = None) -> CacheKey:
    chain_id = "chain"
    if chain is not None and chain.chain_id is not None:
        chain_id = str(chain.chain_id)
    return ("ds", chain_id, key, canonical_ctx(ctx))


def cache_policy(
    chain: Optional[ChainConfig],
    leaf: Optional[DsLeaf],
    settings: Optional[Settings] = None,
) -> CachePolicy:
    """
    leaf.cache -> chain params.refresh -> settings default.
    """
    settings = settings or get_settings()
    refresh = chain.params.refresh if chain is not None else None
    leaf_cache = leaf.cache if leaf is not None else None

    stale = None
    interval = None
    if leaf_cache is not None:
        stale = leaf_cache.stale_time_ms
        interval = leaf_cache.refetch_interval_ms
    if refresh is not None:
        stale = stale if stale is not None else refresh.stale_time_ms
        interval = interval if interval is not None else refresh.refetch_interval_ms
    if stale is None:
        stale = settings.ds_stale_time_ms

    return CachePolicy(stale_time_ms=stale, refetch_interval_ms=interval)
