# SQLModel definitions, imported here so the metadata is populated for Alembic.
from .base import UUIDMixin, TimestampMixin, TombstoneMixin  # noqa: F401
from .user import User  # noqa: F401
from .project import Project, ProjectMember  # noqa: F401
from .task import Task, IMMUTABLE_TASK_FIELDS  # noqa: F401
from .assignments import TaskAssignee  # noqa: F401
from .edit_request import TaskEditRequest  # noqa: F401
from .status_log import TaskStatusLog  # noqa: F401
from .notification import Notification  # noqa: F401
