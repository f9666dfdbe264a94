from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from fees.types import FeeQuote
from workflow.stages import Stage, assert_valid_transition


class ExecutionResult(BaseModel):
    ok: bool
    status: Optional[int] = None
    response: Any = None
    # set when the submit call never reached the endpoint
    placeholder: bool = False
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    message: Any = None


class WorkflowRunState(BaseModel):
    """
    Everything one open action accumulates between open() and done().

    Rules:
    - JSON-safe
    - No clients, stores or callbacks
    """

    model_config = ConfigDict(extra="allow")

    run_id: str
    action_id: str
    stage: Stage = Stage.FORM
    step_index: int = Field(default=0, ge=0)

    form: Dict[str, Any] = Field(default_factory=dict)
    errors: Dict[str, str] = Field(default_factory=dict)
    ds: Dict[str, Any] = Field(default_factory=dict)

    fee: Optional[FeeQuote] = None
    fee_error: Optional[str] = None

    result: Optional[ExecutionResult] = None
    executions: int = 0

    # execution requested while locked; fires once after unlock
    pending_resume: bool = False
    unlock_requested: bool = False

    notifications: List[Dict[str, Any]] = Field(default_factory=list)

    def move_to(self, stage: Stage) -> None:
        assert_valid_transition(self.stage, stage)
        self.stage = stage


def set_pending_resume(state: WorkflowRunState) -> None:
    state.pending_resume = True
    state.unlock_requested = True


def clear_pending_resume(state: WorkflowRunState) -> None:
    state.pending_resume = False
    state.unlock_requested = False
