from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from app.config import Settings, get_settings
from chain.rpc import RPCError, RpcClient
from ds.core import (
    CacheKey,
    PageParam,
    build_paging_ctx,
    build_request,
    cache_key,
    cache_policy,
    compute_next_param,
    parse_response,
    resolve_leaf,
    select_items_from_response,
)
from manifest.types import ChainConfig, DsLeaf, DsPaging
from templating import evaluate_bool, resolve_deep

logger = logging.getLogger(__name__)

DEFAULT_PER_PAGE = 20
DEFAULT_START_PAGE = 1


@dataclass
class _Entry:
    value: Any
    fetched_at: float


@dataclass
class DsPage:
    raw: Any
    items: List[Any]
    next_param: Optional[PageParam]


class DsQueryCache:
    """
    Query layer over fetch_ds_once semantics.

    - Results are reused while younger than the leaf's stale window
    - Identical overlapping requests share one in-flight task
    - Transport errors (RPCError) are retried `ds_retry` times; resolution
      errors are raised immediately
    """

    def __init__(
        self,
        rpc: RpcClient,
        chain: Optional[ChainConfig],
        *,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.rpc = rpc
        self.chain = chain
        self.settings = settings or get_settings()
        self._clock = clock
        self._entries: Dict[CacheKey, _Entry] = {}
        self._inflight: Dict[CacheKey, asyncio.Task] = {}

    def size(self) -> int:
        return len(self._entries)

    # ---------------------------
    # internals
    # ---------------------------

    def _age_ms(self, entry: _Entry) -> float:
        return (self._clock() - entry.fetched_at) * 1000

    async def _with_retry(self, key: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        attempts = 1 + max(0, self.settings.ds_retry)
        attempt = 1
        while True:
            try:
                return await fn()
            except RPCError as e:
                if attempt >= attempts:
                    raise
                logger.info("ds %s attempt %s/%s failed: %s; retrying", key, attempt, attempts, e)
                attempt += 1

    async def _load(self, ck: CacheKey, key: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        try:
            value = await self._with_retry(key, fn)
            self._entries[ck] = _Entry(value=value, fetched_at=self._clock())
            return value
        finally:
            self._inflight.pop(ck, None)

    async def _cached(
        self,
        ck: CacheKey,
        key: str,
        stale_time_ms: int,
        fn: Callable[[], Awaitable[Any]],
        *,
        force: bool = False,
    ) -> Any:
        entry = self._entries.get(ck)
        if entry is not None:
            if not force and self._age_ms(entry) < stale_time_ms:
                logger.debug("ds %s served from cache", key)
                return entry.value
            # evicted; only a successful reload repopulates it
            del self._entries[ck]

        task = self._inflight.get(ck)
        if task is None:
            task = asyncio.ensure_future(self._load(ck, key, fn))
            self._inflight[ck] = task
        return await asyncio.shield(task)

    async def _call_leaf(self, key: str, leaf: DsLeaf, ctx: Mapping[str, Any]) -> Any:
        call = build_request(self.chain, leaf, ctx, key=key)
        res = await self.rpc.send(call)
        return parse_response(res, leaf)

    # ---------------------------
    # public API
    # ---------------------------

    async def fetch(
        self,
        key: str,
        ctx: Optional[Mapping[str, Any]] = None,
        *,
        stale_time_ms: Optional[int] = None,
        force: bool = False,
    ) -> Any:
        leaf = resolve_leaf(self.chain, key)
        ctx = dict(ctx or {})
        ck = cache_key(self.chain, key, ctx)
        stale = stale_time_ms if stale_time_ms is not None else cache_policy(self.chain, leaf, self.settings).stale_time_ms
        return await self._cached(ck, key, stale, lambda: self._call_leaf(key, leaf, ctx), force=force)

    def _paging(self, leaf: DsLeaf) -> DsPaging:
        return leaf.page or DsPaging()

    async def fetch_page(
        self,
        key: str,
        ctx: Optional[Mapping[str, Any]] = None,
        page_param: Optional[PageParam] = None,
    ) -> DsPage:
        """
        One page of a paged leaf; page_param None means the first page.
        """
        leaf = resolve_leaf(self.chain, key)
        paging = self._paging(leaf)
        per_page = paging.defaults.per_page or DEFAULT_PER_PAGE
        start_page = paging.defaults.start_page or DEFAULT_START_PAGE
        limit = paging.defaults.limit or per_page

        if page_param is None:
            page_param = {"cursor": None} if paging.strategy == "cursor" else {"page": start_page}

        page_ctx = build_paging_ctx(
            ctx,
            self.chain,
            {
                "page": page_param.get("page"),
                "perPage": per_page,
                "cursor": page_param.get("cursor"),
                "limit": limit,
            },
        )
        # chain is re-added by build_request; keep it out of the key
        key_ctx = {k: v for k, v in page_ctx.items() if k != "chain"}
        ck = cache_key(self.chain, key, key_ctx)
        stale = cache_policy(self.chain, leaf, self.settings).stale_time_ms

        raw = await self._cached(ck, key, stale, lambda: self._call_leaf(key, leaf, page_ctx))
        items = select_items_from_response(raw, paging.response.items)
        now_page = page_param.get("page") or start_page
        next_param = compute_next_param(
            paging.strategy,
            paging.response,
            raw,
            now_page,
            per_page,
            len(items),
        )
        return DsPage(raw=raw, items=items, next_param=next_param)

    async def fetch_all_pages(
        self,
        key: str,
        ctx: Optional[Mapping[str, Any]] = None,
        *,
        max_pages: int = 50,
    ) -> List[DsPage]:
        pages: List[DsPage] = []
        param: Optional[PageParam] = None
        while len(pages) < max_pages:
            page = await self.fetch_page(key, ctx, param)
            pages.append(page)
            if page.next_param is None:
                break
            param = page.next_param
        return pages

    def refetch_due(self, key: str, ctx: Optional[Mapping[str, Any]] = None) -> bool:
        """
        True when the leaf declares a refetch interval and it has elapsed
        (or nothing was fetched yet).
        """
        leaf = resolve_leaf(self.chain, key)
        interval = cache_policy(self.chain, leaf, self.settings).refetch_interval_ms
        if interval is None:
            return False
        entry = self._entries.get(cache_key(self.chain, key, dict(ctx or {})))
        return entry is None or self._age_ms(entry) >= interval

    def invalidate(self, key: Optional[str] = None) -> None:
        if key is None:
            self._entries.clear()
            return
        for ck in [ck for ck in self._entries if ck[2] == key]:
            del self._entries[ck]


# ---------------------------
# Action-level data sources
# ---------------------------

OPTIONS_KEY = "__options"


def _strip_options(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _strip_options(v) for k, v in value.items() if k != OPTIONS_KEY}
    if isinstance(value, list):
        return [_strip_options(v) for v in value]
    return value


def _has_required_values(params: Any) -> bool:
    """
    `{}` means no params needed. Otherwise at least one leaf value must be non-empty.
    """
    if isinstance(params, Mapping) and not params:
        return True

    def check(v: Any) -> bool:
        if v is None:
            return False
        if isinstance(v, str):
            return v.strip() != ""
        if isinstance(v, list):
            return len(v) > 0
        if isinstance(v, Mapping):
            return any(check(x) for x in v.values())
        return True

    return check(params)


def _enabled(options: Mapping[str, Any], global_options: Mapping[str, Any], ctx: Mapping[str, Any]) -> bool:
    value = options.get("enabled", global_options.get("enabled", True))
    if isinstance(value, str):
        return evaluate_bool(value, ctx)
    return bool(value)


async def load_ds_map(
    cache: DsQueryCache,
    ds_config: Optional[Mapping[str, Any]],
    ctx: Mapping[str, Any],
) -> Dict[str, Any]:
    """
    Fetch every data source an action declares, concurrently.

    Params are rendered against ctx; a source whose params are all empty, or
    whose `enabled` option is false, is skipped. Keys listed in
    `__options.critical` must load; other failures are logged and map to None.
    """
    if not ds_config:
        return {}

    global_options = ds_config.get(OPTIONS_KEY) or {}
    critical = set(global_options.get("critical") or [])

    keys: List[str] = []
    jobs = []
    for key, params in ds_config.items():
        if key == OPTIONS_KEY:
            continue
        local_options = params.get(OPTIONS_KEY, {}) if isinstance(params, Mapping) else {}
        rendered = resolve_deep(_strip_options(params if params is not None else {}), ctx)

        if not _enabled(local_options, global_options, ctx) or not _has_required_values(rendered):
            logger.debug("ds %s skipped (disabled or missing params)", key)
            continue

        stale = local_options.get("staleTimeMs", global_options.get("staleTimeMs"))
        keys.append(key)
        jobs.append(cache.fetch(key, rendered if isinstance(rendered, Mapping) else {}, stale_time_ms=stale))

    results = await asyncio.gather(*jobs, return_exceptions=True)

    out: Dict[str, Any] = {}
    for key, result in zip(keys, results):
        if isinstance(result, BaseException):
            if key in critical:
                raise result
            logger.warning("ds %s failed: %s", key, result)
            out[key] = None
            continue
        out[key] = result
    return out

