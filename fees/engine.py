# fees/engine.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from chain.rpc import RpcClient
from fees.providers import DEFAULT_FEE_KEY, ProviderEnv, run_provider
from fees.types import FeeQuote, ProviderOutcome
from manifest.types import Action, ChainConfig, FeeBucket, FeeConfig, FeeProvider
from templating import evaluate

logger = logging.getLogger(__name__)

# action id -> entry of a fee table
ACTION_FEE_KEYS: Dict[str, str] = {
    "send": "sendFee",
    "stake": "stakeFee",
    "unstake": "unstakeFee",
}


class FeeUnavailableError(RuntimeError):
    def __init__(self, attempts: List[ProviderOutcome]):
        detail = "; ".join(f"{a.provider}: {a.error}" for a in attempts) or "no providers configured"
        super().__init__(f"fee unavailable ({detail})")
        self.attempts = attempts


def fee_key_for_action(action_id: Optional[str], override: Optional[str] = None) -> str:
    if override:
        return override
    return ACTION_FEE_KEYS.get(action_id or "", DEFAULT_FEE_KEY)


def _bucket_of(value: Any) -> FeeBucket:
    if isinstance(value, FeeBucket):
        return value
    return FeeBucket.model_validate(value or {})


def default_bucket(buckets: Optional[Mapping[str, Any]]) -> Optional[str]:
    for name, b in (buckets or {}).items():
        if _bucket_of(b).default:
            return name
    return None


def bucket_multiplier(buckets: Optional[Mapping[str, Any]], key: Optional[str]) -> float:
    """
    Multiplier for a bucket key. Unknown key -> 1.0; None -> the bucket
    flagged `default`, else 1.0.
    """
    buckets = buckets or {}
    if key is None:
        key = default_bucket(buckets)
        if key is None:
            return 1.0
    if key not in buckets:
        return 1.0
    return _bucket_of(buckets[key]).multiplier


async def resolve_fee(
    providers: Sequence[FeeProvider],
    ctx: Optional[Mapping[str, Any]] = None,
    *,
    rpc: Optional[RpcClient] = None,
    chain: Optional[ChainConfig] = None,
    buckets: Optional[Mapping[str, Any]] = None,
    bucket: Optional[str] = None,
    denom: str = "",
    action_id: Optional[str] = None,
    fee_key: Optional[str] = None,
) -> FeeQuote:
    """
    Ordered waterfall: the first provider that yields a fee wins.

    Every attempt is recorded; when all fail, FeeUnavailableError carries them.
    """
    ctx = dict(ctx or {})
    if chain is not None and "chain" not in ctx:
        ctx["chain"] = chain.as_context()

    chosen_bucket = bucket if bucket is not None else default_bucket(buckets)
    env = ProviderEnv(
        ctx=ctx,
        rpc=rpc,
        chain=chain,
        multiplier=bucket_multiplier(buckets, chosen_bucket),
        fee_key=fee_key_for_action(action_id, fee_key),
    )
    denom_text = evaluate(denom, ctx) if denom else ""

    attempts: List[ProviderOutcome] = []
    for i, p in enumerate(providers):
        outcome = await run_provider(i, p, env, denom=denom_text, bucket=chosen_bucket)
        attempts.append(outcome)
        if outcome.ok and outcome.quote is not None:
            logger.info("fee resolved by %s provider: %s %s", p.type, outcome.quote.amount, denom_text)
            return outcome.quote

    raise FeeUnavailableError(attempts)


def effective_fee_config(chain: Optional[ChainConfig], action: Action) -> Optional[FeeConfig]:
    """
    Inline action fees replace the chain policy; "default" uses it.
    """
    if isinstance(action.fees, FeeConfig):
        return action.fees
    return chain.fees if chain is not None else None


async def resolve_action_fee(
    action: Action,
    ctx: Mapping[str, Any],
    *,
    rpc: Optional[RpcClient],
    chain: Optional[ChainConfig],
    bucket: Optional[str] = None,
) -> Optional[FeeQuote]:
    """
    Fee for an action, or None when neither the action nor the chain declares a policy.
    """
    cfg = effective_fee_config(chain, action)
    if cfg is None or not cfg.providers:
        return None
    return await resolve_fee(
        cfg.providers,
        ctx,
        rpc=rpc,
        chain=chain,
        buckets=cfg.buckets,
        bucket=bucket,
        denom=cfg.denom,
        action_id=action.id,
        fee_key=action.fee_key,
    )
