from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from app.config import Settings
from chain.rpc import RPCError
from ds.core import DsResolutionError
from ds.fetcher import DsQueryCache, load_ds_map
from manifest.types import ChainConfig


def _cache(rpc, chain, clock, **settings) -> DsQueryCache:
    return DsQueryCache(rpc, chain, settings=Settings(**settings), clock=clock)


def test_fetch_reuses_fresh_results(chain, rpc, recorder, clock):
    recorder.routes["/v1/query/validators"] = {"results": [1, 2, 3]}
    cache = _cache(rpc, chain, clock, ds_stale_time_ms=1_000)

    async def scenario():
        first = await cache.fetch("validators", {})
        second = await cache.fetch("validators", {})
        clock.advance(2)
        third = await cache.fetch("validators", {})
        return first, second, third

    assert asyncio.run(scenario()) == ([1, 2, 3], [1, 2, 3], [1, 2, 3])
    assert len(recorder.calls("/v1/query/validators")) == 2


def test_fetch_keys_on_ctx(chain, rpc, recorder, clock):
    recorder.routes["/v1/query/account"] = lambda req: httpx.Response(200, json={"echo": req.content.decode()})
    cache = _cache(rpc, chain, clock)

    async def scenario():
        a = await cache.fetch("account", {"account": {"address": "a"}})
        b = await cache.fetch("account", {"account": {"address": "b"}})
        return a, b

    a, b = asyncio.run(scenario())
    assert a != b
    assert len(recorder.requests) == 2


def test_overlapping_requests_share_one_call(chain, rpc, recorder, clock):
    recorder.routes["/v1/query/height"] = {"height": 42}
    cache = _cache(rpc, chain, clock)

    async def scenario():
        return await asyncio.gather(*(cache.fetch("height", {}) for _ in range(3)))

    assert asyncio.run(scenario()) == [42, 42, 42]
    assert len(recorder.requests) == 1


def test_transport_errors_are_retried(chain, rpc, recorder, clock):
    outcomes = [httpx.ConnectError("down"), {"height": 7}]

    def flaky(request):
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(200, json=outcome)

    recorder.routes["/v1/query/height"] = flaky
    cache = _cache(rpc, chain, clock, ds_retry=1)

    assert asyncio.run(cache.fetch("height", {})) == 7
    assert len(recorder.requests) == 2


def test_retries_are_bounded(chain, rpc, recorder, clock):
    recorder.routes["/v1/query/height"] = httpx.Response(500, json={"error": "boom"})
    cache = _cache(rpc, chain, clock, ds_retry=2)

    with pytest.raises(RPCError):
        asyncio.run(cache.fetch("height", {}))
    assert len(recorder.requests) == 3


def test_resolution_errors_are_not_retried(chain, rpc, recorder, clock):
    cache = _cache(rpc, chain, clock, ds_retry=3)
    with pytest.raises(DsResolutionError):
        asyncio.run(cache.fetch("missing", {}))
    assert recorder.requests == []


def test_invalidate_forces_refetch(chain, rpc, recorder, clock):
    recorder.routes["/v1/query/height"] = {"height": 1}
    cache = _cache(rpc, chain, clock)

    async def scenario():
        await cache.fetch("height", {})
        cache.invalidate("height")
        await cache.fetch("height", {})

    asyncio.run(scenario())
    assert len(recorder.requests) == 2


def test_refetch_due_follows_interval(chain_doc, rpc, recorder, clock):
    chain_doc["ds"]["height"]["cache"] = {"refetchIntervalMs": 5_000}
    chain = ChainConfig.model_validate(chain_doc)
    recorder.routes["/v1/query/height"] = {"height": 1}
    cache = _cache(rpc, chain, clock)

    assert cache.refetch_due("height") is True
    asyncio.run(cache.fetch("height"))
    assert cache.refetch_due("height") is False
    clock.advance(6)
    assert cache.refetch_due("height") is True
    assert cache.refetch_due("validators") is False


def test_fetch_all_pages_follows_total_pages(chain_doc, rpc, recorder, clock):
    chain_doc["ds"]["txs"] = {
        "source": {"path": "/v1/query/txs"},
        "body": {"pageNumber": "{{page}}", "perPage": "{{perPage}}"},
        "coerce": {"body": {"pageNumber": "int", "perPage": "int"}},
        "page": {"strategy": "page", "response": {"items": "results"}, "defaults": {"perPage": 2}},
    }
    chain = ChainConfig.model_validate(chain_doc)

    def pages(request):
        n = json.loads(request.content)["pageNumber"]
        return httpx.Response(200, json={"results": [n * 10], "totalPages": 3})

    recorder.routes["/v1/query/txs"] = pages
    cache = _cache(rpc, chain, clock)

    result = asyncio.run(cache.fetch_all_pages("txs", {}))
    assert [p.items for p in result] == [[10], [20], [30]]
    assert result[-1].next_param is None


def test_load_ds_map_skips_and_tolerates_failures(chain, rpc, recorder, clock):
    recorder.routes["/v1/query/validators"] = {"results": ["v1"]}
    recorder.routes["/v1/query/height"] = httpx.Response(500)
    cache = _cache(rpc, chain, clock, ds_retry=0)

    ds_config = {
        "validators": {},
        "height": {},
        "account": {"account": {"address": "{{account.address}}"}},
    }
    out = asyncio.run(load_ds_map(cache, ds_config, {"account": None}))

    assert out == {"validators": ["v1"], "height": None}


def test_load_ds_map_critical_failure_raises(chain, rpc, recorder, clock):
    recorder.routes["/v1/query/height"] = httpx.Response(500)
    cache = _cache(rpc, chain, clock, ds_retry=0)

    with pytest.raises(RPCError):
        asyncio.run(load_ds_map(cache, {"height": {}, "__options": {"critical": ["height"]}}, {}))


def test_load_ds_map_honours_enabled_template(chain, rpc, recorder, clock):
    recorder.routes["/v1/query/height"] = {"height": 5}
    cache = _cache(rpc, chain, clock)
    config = {"height": {"__options": {"enabled": "{{form.ready}}"}}}

    assert asyncio.run(load_ds_map(cache, config, {"form": {"ready": False}})) == {}
    assert asyncio.run(load_ds_map(cache, config, {"form": {"ready": True}})) == {"height": 5}


def test_stale_entries_are_evicted(chain, rpc, recorder, clock):
    recorder.routes["/v1/query/validators"] = {"results": [1]}
    cache = _cache(rpc, chain, clock, ds_stale_time_ms=1_000, ds_retry=0)

    asyncio.run(cache.fetch("validators", {}))
    assert cache.size() == 1

    clock.advance(2)
    recorder.routes["/v1/query/validators"] = httpx.Response(500)
    with pytest.raises(RPCError):
        asyncio.run(cache.fetch("validators", {}))
    assert cache.size() == 0
