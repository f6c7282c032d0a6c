from typing import Optional, List
from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime
from .common import ProjectStatus


class ProjectBase(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None


class ProjectCreate(ProjectBase):
    member_ids: List[UUID] = Field(default_factory=list)


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None


class ProjectRead(ProjectBase):
    id: UUID
    status: ProjectStatus
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ProjectMemberAdd(BaseModel):
    user_ids: List[UUID]


class ProjectMemberRead(BaseModel):
    user_id: UUID
    full_name: str
    added_at: datetime


class ProjectCascadeResult(BaseModel):
    """Result of closing or reopening a project."""
    project: ProjectRead
    tasks_affected: int
