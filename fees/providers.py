# fees/providers.py
from __future__ import annotations

import json
import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from chain.chains import get_host_url
from chain.rpc import RemoteCall, RpcClient
from ds.coerce import coerce
from ds.core import get_at
from fees.types import FeeQuote, ProviderOutcome
from manifest.types import ChainConfig, FeeProvider, GasPrice
from templating import evaluate, resolve_deep

logger = logging.getLogger(__name__)

DEFAULT_FEE_KEY = "sendFee"
DEFAULT_GAS_SELECTORS = ("gasUsed", "gas_used", "gas")


class FeeProviderError(RuntimeError):
    pass


@dataclass
class ProviderEnv:
    """
    Everything a provider runner may consult.
    """

    ctx: Dict[str, Any] = field(default_factory=dict)
    rpc: Optional[RpcClient] = None
    chain: Optional[ChainConfig] = None
    multiplier: float = 1.0
    fee_key: str = DEFAULT_FEE_KEY


ProviderResult = Tuple[str, Any]
Runner = Callable[[FeeProvider, ProviderEnv], Awaitable[ProviderResult]]


# ---------------------------
# helpers
# ---------------------------

def _to_number(value: Any) -> float:
    n = coerce(value, "number")
    if isinstance(n, bool) or not isinstance(n, (int, float)) or not math.isfinite(n):
        raise FeeProviderError(f"non-numeric fee value: {value!r}")
    return float(n)


def _amount_text(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _ceil_text(value: float) -> str:
    return str(int(math.ceil(round(value, 9))))


def _pick_fee(value: Any, fee_key: str) -> Any:
    # a fee table ({sendFee, stakeFee, ...}) resolves to the action's entry
    if isinstance(value, Mapping):
        if fee_key in value:
            return value[fee_key]
        if DEFAULT_FEE_KEY in value:
            return value[DEFAULT_FEE_KEY]
        raise FeeProviderError(f"fee table has no entry for {fee_key}")
    return value


def _remote_call(
    *,
    url: str,
    method: str,
    headers: Mapping[str, str],
    body: Any,
    encoding: str,
    ctx: Mapping[str, Any],
    tool_name: str,
) -> RemoteCall:
    hdrs = {"content-type": "application/json", **dict(headers)}
    payload: Optional[str] = None
    if method != "GET" and body is not None:
        rendered = resolve_deep(body, ctx)
        if encoding == "text" and isinstance(rendered, str):
            payload = rendered
        else:
            payload = json.dumps(rendered)
    return RemoteCall(url=evaluate(url, ctx), method=method, headers=hdrs, body=payload, tool_name=tool_name)


async def _fetch_json(env: ProviderEnv, call: RemoteCall) -> Any:
    if env.rpc is None:
        raise FeeProviderError("no transport configured for remote fee provider")
    res = await env.rpc.send(call)
    try:
        return json.loads(res.text)
    except ValueError as e:
        raise FeeProviderError(f"fee endpoint returned non-JSON body: {e}") from e


def _host_call(p: FeeProvider, env: ProviderEnv, default_method: str, tool_name: str) -> RemoteCall:
    host = get_host_url(env.chain, p.base)
    return _remote_call(
        url=f"{host}{p.path}",
        method=p.method or default_method,
        headers=p.headers,
        body=p.body,
        encoding=p.encoding,
        ctx=env.ctx,
        tool_name=tool_name,
    )


# ---------------------------
# runners
# ---------------------------

async def run_static(p: FeeProvider, env: ProviderEnv) -> ProviderResult:
    if p.amount is not None:
        return _amount_text(p.amount), p.amount
    if p.data is not None:
        return _amount_text(_pick_fee(p.data, env.fee_key)), p.data
    raise FeeProviderError("static provider declares neither amount nor data")


async def _scaled_remote(p: FeeProvider, env: ProviderEnv, call: RemoteCall) -> ProviderResult:
    data = await _fetch_json(env, call)
    selected = get_at(data, p.selector)
    if selected is None:
        raise FeeProviderError(f"selector {p.selector!r} matched nothing")
    base = _to_number(_pick_fee(selected, env.fee_key))
    return _ceil_text(base * env.multiplier), selected


async def run_query(p: FeeProvider, env: ProviderEnv) -> ProviderResult:
    return await _scaled_remote(p, env, _host_call(p, env, "POST", "fees.query"))


async def run_external(p: FeeProvider, env: ProviderEnv) -> ProviderResult:
    if not p.url:
        raise FeeProviderError("external provider requires url")
    call = _remote_call(
        url=p.url,
        method=p.method or "GET",
        headers=p.headers,
        body=p.body,
        encoding=p.encoding,
        ctx=env.ctx,
        tool_name="fees.external",
    )
    return await _scaled_remote(p, env, call)


def _gas_used(p: FeeProvider, data: Any) -> float:
    selectors = (p.gas_selector,) if p.gas_selector else DEFAULT_GAS_SELECTORS
    for sel in selectors:
        value = get_at(data, sel)
        if value is not None:
            return _to_number(value)
    raise FeeProviderError("simulation response reports no gas usage")


async def _gas_price(gp: Optional[GasPrice], env: ProviderEnv) -> float:
    if gp is None:
        return 1.0
    if gp.type == "static":
        return _to_number(gp.value)

    try:
        host = get_host_url(env.chain, gp.base)
        call = _remote_call(
            url=f"{host}{gp.path}",
            method=gp.method or "GET",
            headers={},
            body=None,
            encoding="json",
            ctx=env.ctx,
            tool_name="fees.gas_price",
        )
        data = await _fetch_json(env, call)
        return _to_number(get_at(data, gp.selector))
    except Exception as e:
        if gp.default is None:
            raise FeeProviderError(f"gas price query failed: {e}") from e
        logger.info("gas price query failed (%s); using default %s", e, gp.default)
        return _to_number(gp.default)


async def run_simulate(p: FeeProvider, env: ProviderEnv) -> ProviderResult:
    data = await _fetch_json(env, _host_call(p, env, "POST", "fees.simulate"))
    gas = _gas_used(p, data)
    price = await _gas_price(p.gas_price, env)
    fee = gas * p.gas_adjustment * price * env.multiplier
    return _ceil_text(fee), data


RUNNERS: Dict[str, Runner] = {
    "static": run_static,
    "query": run_query,
    "simulate": run_simulate,
    "external": run_external,
}


async def run_provider(
    index: int,
    p: FeeProvider,
    env: ProviderEnv,
    *,
    denom: str = "",
    bucket: Optional[str] = None,
) -> ProviderOutcome:
    """
    Run one provider and fold any failure into the outcome.
    """
    runner = RUNNERS.get(p.type)
    if runner is None:
        return ProviderOutcome.failure(index, p.type, f"unknown fee provider type: {p.type}")

    try:
        amount, raw = await runner(p, env)
    except Exception as e:
        logger.warning("fee provider #%s (%s) failed: %s", index, p.type, e)
        return ProviderOutcome.failure(index, p.type, str(e) or e.__class__.__name__)

    quote = FeeQuote(amount=amount, denom=denom, source=p.type, bucket=bucket, raw=raw)
    return ProviderOutcome.success(index, p.type, quote)
