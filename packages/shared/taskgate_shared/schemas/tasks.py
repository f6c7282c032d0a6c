"""Task-related Pydantic schemas shared between the server and API clients."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, UUID4, field_validator, model_validator

from .common import (
    ClosedReason,
    EditRequestStatus,
    NotificationType,
    TaskPriority,
    TaskStatus,
)


# ---------------------------------------------------------------------------
# Task CRUD
# ---------------------------------------------------------------------------

class TaskBase(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    project_id: Optional[UUID4] = None  # standalone tasks have no project


class TaskCreate(TaskBase):
    assignee_ids: List[UUID4] = Field(default_factory=list)


class TaskRead(BaseModel):
    id: UUID4
    title: str
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    priority: str
    status: TaskStatus
    project_id: Optional[UUID4] = None
    assignee_ids: List[UUID4] = Field(default_factory=list)
    assigned_to: Optional[UUID4] = None  # legacy single-assignee projection
    created_by: Optional[UUID4] = None
    review_requested_by: Optional[UUID4] = None
    review_requested_at: Optional[datetime] = None
    reviewed_by: Optional[UUID4] = None
    reviewed_at: Optional[datetime] = None
    review_comments: Optional[str] = None
    archived_at: Optional[datetime] = None
    archived_by: Optional[UUID4] = None
    closed_reason: Optional[ClosedReason] = None
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[UUID4] = None
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

class TaskTransition(BaseModel):
    """Request body for POST /tasks/{taskId}/transition."""
    to_status: TaskStatus
    comments: Optional[str] = None
    # Optimistic check: the status the caller last saw
    expected_status: Optional[TaskStatus] = None


class ReviewDecision(BaseModel):
    """Request body for the approve / reject / reopen shortcuts."""
    comments: Optional[str] = None


class StatusLogRead(BaseModel):
    id: UUID4
    task_id: UUID4
    user_id: Optional[UUID4] = None
    from_status: Optional[TaskStatus] = None
    to_status: TaskStatus
    note: Optional[str] = None
    created_at: datetime


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------

class AssigneeAdd(BaseModel):
    user_id: UUID4


class AssigneeChange(BaseModel):
    task_id: UUID4
    user_id: UUID4
    changed: bool


# ---------------------------------------------------------------------------
# Activity hook (comments, notes, files)
# ---------------------------------------------------------------------------

class ActivityKind(str, Enum):
    COMMENT = "comment"
    NOTE = "note"
    DOCUMENT = "document"


ACTIVITY_NOTIFICATION_TYPES = {
    ActivityKind.COMMENT: NotificationType.COMMENT_ADDED,
    ActivityKind.NOTE: NotificationType.NOTE_ADDED,
    ActivityKind.DOCUMENT: NotificationType.DOCUMENT_UPLOADED,
}


class ActivityRecord(BaseModel):
    """Posted by the comment/note/file subsystems after they store an item."""
    kind: ActivityKind
    activity_id: UUID4  # id of the stored comment/note/file, used for dedup


class ActivityResult(BaseModel):
    task_id: UUID4
    started_work: bool
    notified: int


# ---------------------------------------------------------------------------
# Edit requests
# ---------------------------------------------------------------------------

class ProposedChanges(BaseModel):
    """Sparse set of field changes for an immutable task."""

    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    priority: Optional[TaskPriority] = None
    assignee_ids: Optional[List[UUID4]] = None

    @field_validator("assignee_ids")
    @classmethod
    def _dedupe_assignees(cls, value: Optional[List[UUID4]]) -> Optional[List[UUID4]]:
        if value is None:
            return value
        return list(dict.fromkeys(value))

    @model_validator(mode="after")
    def _require_a_change(self) -> "ProposedChanges":
        if not self.model_dump(exclude_none=True):
            raise ValueError("At least one field change must be proposed")
        return self

    def field_changes(self) -> dict:
        """Scalar task field changes, excluding the assignee set."""
        return self.model_dump(exclude_none=True, exclude={"assignee_ids"})


class EditRequestCreate(BaseModel):
    proposed_changes: dict


class EditRequestResolve(BaseModel):
    approve: bool
    comments: Optional[str] = None


class DirectEditRequest(BaseModel):
    changes: dict
    comments: Optional[str] = None


class EditRequestRead(BaseModel):
    id: UUID4
    task_id: UUID4
    requested_by: UUID4
    proposed_changes: dict
    status: EditRequestStatus
    reviewed_by: Optional[UUID4] = None
    reviewed_at: Optional[datetime] = None
    comments: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}
