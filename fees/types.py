# fees/types.py
from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class FeeSource(str, Enum):
    STATIC = "static"
    QUERY = "query"
    SIMULATE = "simulate"
    EXTERNAL = "external"


class FeeQuote(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    # integer base units, as text
    amount: str
    denom: str = ""
    source: FeeSource
    bucket: Optional[str] = None
    # fee table / remote payload the amount was derived from
    raw: Any = None


class ProviderOutcome(BaseModel):
    index: int
    provider: str
    ok: bool
    quote: Optional[FeeQuote] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, index: int, provider: str, quote: FeeQuote) -> "ProviderOutcome":
        return cls(index=index, provider=provider, ok=True, quote=quote)

    @classmethod
    def failure(cls, index: int, provider: str, error: str) -> "ProviderOutcome":
        return cls(index=index, provider=provider, ok=False, error=error)
