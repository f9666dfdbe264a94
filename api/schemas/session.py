from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class UnlockRequest(BaseModel):
    address: str = Field(..., min_length=1, max_length=128)
    password: str = Field(..., min_length=1)
    ttlSeconds: Optional[int] = Field(default=None, ge=1)


class ActivityRequest(BaseModel):
    kind: str = "click"


class SessionResponse(BaseModel):
    address: Optional[str] = None
    unlocked: bool
    remainingSeconds: int


class UnlockResponse(SessionResponse):
    resumedRuns: list[str] = Field(default_factory=list)
