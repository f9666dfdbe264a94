from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

# workflow run / manifest action the current task is driving; stamped on log records
run_id_ctx: ContextVar[Optional[str]] = ContextVar("run_id", default=None)
action_id_ctx: ContextVar[Optional[str]] = ContextVar("action_id", default=None)


def get_run_id() -> Optional[str]:
    return run_id_ctx.get()


def get_action_id() -> Optional[str]:
    return action_id_ctx.get()


@contextmanager
def bound_run_id(run_id: Optional[str], action_id: Optional[str] = None) -> Iterator[None]:
    """
    Bind run (and optionally action) ids for the duration of the block.

    An action_id of None keeps whatever action is already bound.
    """
    run_token = run_id_ctx.set(run_id)
    action_token = action_id_ctx.set(action_id) if action_id is not None else None
    try:
        yield
    finally:
        if action_token is not None:
            action_id_ctx.reset(action_token)
        run_id_ctx.reset(run_token)
