from enum import Enum
from typing import Optional
from pydantic import BaseModel

class TaskStatus(str, Enum):
    TODO = "ToDo"
    WORK_IN_PROGRESS = "Work-In-Progress"
    DONE = "Done"
    CLOSED = "Closed"

class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

class ClosedReason(str, Enum):
    MANUAL = "manual"
    PROJECT_CLOSED = "project_closed"

class ProjectStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"

class Role(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    USER = "user"

# Roles that receive review and to-do notifications
ADMIN_ROLES: tuple["Role", ...] = (Role.SUPER_ADMIN, Role.ADMIN)

class Capability(str, Enum):
    VIEW_ALL_TASKS = "view_all_tasks"
    CREATE_TASKS = "create_tasks"
    ASSIGN_TASKS = "assign_tasks"
    UNASSIGN_TASKS = "unassign_tasks"
    REQUEST_TASK_EDIT = "request_task_edit"
    APPROVE_TASK_EDITS = "approve_task_edits"
    DIRECT_EDIT_TASKS = "direct_edit_tasks"
    REVIEW_TASKS = "review_tasks"
    REOPEN_TASKS = "reopen_tasks"
    DELETE_TASKS = "delete_tasks"
    RESTORE_TASKS = "restore_tasks"
    DELETE_USERS = "delete_users"
    RESTORE_USERS = "restore_users"
    VIEW_DELETED = "view_deleted"
    VIEW_ARCHIVED = "view_archived"
    MANAGE_USERS = "manage_users"
    MANAGE_PROJECTS = "manage_projects"

class EditRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

class NotificationType(str, Enum):
    TASK_ASSIGNED = "task_assigned"
    REVIEW_REQUESTED = "review_requested"
    REVIEW_COMPLETED = "review_completed"
    COMMENT_ADDED = "comment_added"
    DOCUMENT_UPLOADED = "document_uploaded"
    NOTE_ADDED = "note_added"
    TODO_COMPLETED = "todo_completed"
    BULLETIN_POSTED = "bulletin_posted"
    PROJECT_UPDATED = "project_updated"
    PROJECT_CLOSED = "project_closed"
    PROJECT_REOPENED = "project_reopened"

class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    RECORD_DELETED = "record_deleted"
    INVALID_TRANSITION = "invalid_transition"
    FORBIDDEN = "forbidden"
    PENDING_REQUEST_EXISTS = "pending_request_exists"
    NOT_PENDING = "not_pending"
    HAS_PENDING_EDIT_REQUESTS = "has_pending_edit_requests"
    VALIDATION_FAILED = "validation_failed"
    NOT_DELETED = "not_deleted"
    INTERNAL_ERROR = "internal_error"

class ErrorBody(BaseModel):
    code: ErrorKind
    message: str
    status: int
    details: Optional[dict] = None

class ErrorResponse(BaseModel):
    error: ErrorBody
