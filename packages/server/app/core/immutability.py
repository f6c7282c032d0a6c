"""
Flush-time guard for the protected fields of persisted tasks.

Title, description, due date, priority and project of an existing task may
only change inside ``edit_gate(session)``, which the edit request workflow
opens when it applies an approved request or a direct edit.
"""

from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from app.core.errors import ImmutableFieldError
from app.models.task import IMMUTABLE_TASK_FIELDS, Task

_GATE_KEY = "taskgate.edit_gate_depth"


@contextmanager
def edit_gate(session):
    """Allow protected task fields to change for the duration of the block.

    Works with both ``Session`` and ``AsyncSession``; flush inside the block.
    """
    info = session.info
    info[_GATE_KEY] = info.get(_GATE_KEY, 0) + 1
    try:
        yield session
    finally:
        info[_GATE_KEY] -= 1


def changed_protected_fields(task: Task) -> list[str]:
    state = inspect(task)
    return [name for name in IMMUTABLE_TASK_FIELDS if state.attrs[name].history.has_changes()]


@event.listens_for(Session, "before_flush")
def _guard_protected_task_fields(session, flush_context, instances):
    if session.info.get(_GATE_KEY, 0) > 0:
        return
    for obj in session.dirty:
        if not isinstance(obj, Task):
            continue
        changed = changed_protected_fields(obj)
        if changed:
            raise ImmutableFieldError(
                "Task fields can only change through an edit request",
                task_id=obj.id,
                fields=changed,
            )
