from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


class ActionSummary(BaseModel):
    id: str
    label: str
    flow: str
    icon: Optional[str] = None
    tags: list[str] = Field(default_factory=list)


class RunCreateRequest(BaseModel):
    actionId: str = Field(..., min_length=1, max_length=128)
    prefilled: dict[str, Any] = Field(default_factory=dict)
    account: Optional[dict[str, Any]] = None


class FormPatchRequest(BaseModel):
    values: dict[str, Any] = Field(default_factory=dict)


class RunView(BaseModel):
    runId: str
    actionId: str
    stage: str
    stepIndex: int
    form: dict[str, Any]
    errors: dict[str, str]
    fields: list[dict[str, Any]]
    summary: list[dict[str, Any]]
    fee: Optional[dict[str, Any]] = None
    feeError: Optional[str] = None
    result: Optional[dict[str, Any]] = None
    unlockRequested: bool = False
    executions: int = 0
    notifications: list[dict[str, Any]] = Field(default_factory=list)
