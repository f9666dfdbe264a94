from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from fees.types import FeeQuote
from manifest.types import ChainConfig


def build_template_context(
    *,
    form: Mapping[str, Any],
    chain: Optional[ChainConfig] = None,
    account: Optional[Mapping[str, Any]] = None,
    fee: Optional[FeeQuote] = None,
    session_password: Optional[str] = None,
    ds: Optional[Mapping[str, Any]] = None,
    params: Optional[Mapping[str, Any]] = None,
    layout: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Per-render evaluation context. Rebuilt on every change, never persisted.
    """
    fees: Dict[str, Any] = {}
    if fee is not None:
        fees = fee.model_dump()
        fees["effective"] = fee.amount

    return {
        "form": dict(form),
        "chain": chain.as_context() if chain is not None else {},
        "account": dict(account) if account else None,
        "fees": fees,
        "session": {"password": session_password},
        "ds": dict(ds or {}),
        "params": dict(params or {}),
        "layout": dict(layout or {}),
    }
