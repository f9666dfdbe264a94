from __future__ import annotations

from enum import Enum


class Stage(str, Enum):
    FORM = "form"
    CONFIRM = "confirm"
    EXECUTING = "executing"
    RESULT = "result"


class InvalidStageTransition(ValueError):
    pass


ALLOWED = {
    Stage.FORM: {Stage.CONFIRM, Stage.EXECUTING},
    Stage.CONFIRM: {Stage.FORM, Stage.EXECUTING},
    Stage.EXECUTING: {Stage.RESULT},
    Stage.RESULT: {Stage.FORM},
}


def assert_valid_transition(frm: Stage, to: Stage) -> None:
    if to not in ALLOWED.get(frm, set()):
        raise InvalidStageTransition(f"Invalid stage transition: {frm.value} -> {to.value}")
