"""
Project endpoints: CRUD, membership, close and reopen.

Closing a project closes its open tasks; reopening restores exactly those.
"""

from __future__ import annotations

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import get_caller
from app.core.database import get_session
from app.core.permissions import CallerContext
from app.services import projects as project_service
from taskgate_shared.schemas.common import ProjectStatus
from taskgate_shared.schemas.projects import (
    ProjectCascadeResult,
    ProjectCreate,
    ProjectMemberAdd,
    ProjectMemberRead,
    ProjectRead,
    ProjectUpdate,
)

router = APIRouter()


@router.get("/", response_model=List[ProjectRead])
async def list_projects(
    status: Optional[ProjectStatus] = None,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    return await project_service.list_projects(session, status)


@router.post("/", response_model=ProjectRead, status_code=status.HTTP_201_CREATED)
async def create_project(
    project_in: ProjectCreate,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    return await project_service.create_project(session, project_in, caller)


@router.get("/{project_id}", response_model=ProjectRead)
async def get_project(
    project_id: uuid.UUID,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    return await project_service.get_project(session, project_id)


@router.patch("/{project_id}", response_model=ProjectRead)
async def update_project(
    project_id: uuid.UUID,
    project_in: ProjectUpdate,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    return await project_service.update_project(session, project_id, project_in, caller)


@router.post("/{project_id}/close", response_model=ProjectCascadeResult)
async def close_project(
    project_id: uuid.UUID,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    project, affected = await project_service.close_project(session, project_id, caller)
    return ProjectCascadeResult(project=ProjectRead.model_validate(project), tasks_affected=affected)


@router.post("/{project_id}/reopen", response_model=ProjectCascadeResult)
async def reopen_project(
    project_id: uuid.UUID,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    project, affected = await project_service.reopen_project(session, project_id, caller)
    return ProjectCascadeResult(project=ProjectRead.model_validate(project), tasks_affected=affected)


# ---------------------------------------------------------------------------
# Membership
# ---------------------------------------------------------------------------


@router.get("/{project_id}/members", response_model=List[ProjectMemberRead])
async def list_members(
    project_id: uuid.UUID,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    rows = await project_service.list_members(session, project_id)
    return [
        ProjectMemberRead(user_id=user.id, full_name=user.full_name, added_at=member.added_at)
        for member, user in rows
    ]


@router.post("/{project_id}/members", status_code=status.HTTP_201_CREATED)
async def add_members(
    project_id: uuid.UUID,
    body: ProjectMemberAdd,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    added = await project_service.add_members(session, project_id, body.user_ids, caller)
    return {"added": added}


@router.delete("/{project_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    project_id: uuid.UUID,
    user_id: uuid.UUID,
    caller: CallerContext = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    await project_service.remove_member(session, project_id, user_id, caller)
