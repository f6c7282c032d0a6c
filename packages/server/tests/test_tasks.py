"""
Tests for task creation, listing and assignment management.

Tests cover:
- Change-set validation for edit requests
- Task creation: capability, project state, assignee validation, notifications
- Listing: visibility per role, archived and deleted filters
- Assigning and unassigning through the service layer
"""

from __future__ import annotations

import uuid

import pytest
from pydantic import ValidationError
from sqlmodel import select

from app.core.database import utcnow
from app.core.errors import Forbidden, RecordDeleted, ValidationFailed
from app.models.notification import Notification
from app.services import lifecycle
from app.services.projects import close_project, create_project
from app.services.tasks import assign_user, create_task, list_tasks, unassign_user
from taskgate_shared.schemas.common import NotificationType, TaskPriority, TaskStatus
from taskgate_shared.schemas.projects import ProjectCreate
from taskgate_shared.schemas.tasks import ProposedChanges, TaskCreate

from conftest import make_task


# ---------------------------------------------------------------------------
# Unit tests: proposed change sets
# ---------------------------------------------------------------------------


class TestProposedChanges:
    """Validation of the sparse change set carried by an edit request."""

    def test_single_field(self):
        changes = ProposedChanges(title="New title")
        assert changes.field_changes() == {"title": "New title"}

    def test_empty_change_set_rejected(self):
        with pytest.raises(ValidationError):
            ProposedChanges()

    def test_unknown_field_rejected(self):
        """Status is not editable through an edit request."""
        with pytest.raises(ValidationError):
            ProposedChanges(status="Closed")

    def test_assignees_are_deduplicated_in_order(self):
        a, b = uuid.uuid4(), uuid.uuid4()
        changes = ProposedChanges(assignee_ids=[a, b, a])
        assert changes.assignee_ids == [a, b]
        assert changes.field_changes() == {}

    def test_empty_assignee_list_is_a_change(self):
        """Clearing every assignee is a valid proposal."""
        changes = ProposedChanges(assignee_ids=[])
        assert changes.assignee_ids == []

    def test_priority_must_be_known(self):
        with pytest.raises(ValidationError):
            ProposedChanges(priority="someday")
        assert ProposedChanges(priority="urgent").priority == TaskPriority.URGENT


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


class TestCreateTask:
    @pytest.mark.asyncio
    async def test_create_with_assignees_notifies_them(self, session, seed):
        task = await create_task(
            session,
            TaskCreate(title="Plan offsite", assignee_ids=[seed.alice.id, seed.bob.id]),
            seed.ctx(seed.admin),
        )
        assert task.status == TaskStatus.TODO.value
        assert task.created_by == seed.admin.id

        result = await session.execute(
            select(Notification.recipient_id).where(
                Notification.type == NotificationType.TASK_ASSIGNED.value
            )
        )
        assert {row[0] for row in result.all()} == {seed.alice.id, seed.bob.id}

    @pytest.mark.asyncio
    async def test_plain_user_cannot_create(self, session, seed):
        with pytest.raises(Forbidden):
            await create_task(session, TaskCreate(title="Mine"), seed.ctx(seed.alice))

    @pytest.mark.asyncio
    async def test_assignees_must_be_active(self, session, seed):
        with pytest.raises(ValidationFailed):
            await create_task(
                session,
                TaskCreate(title="Plan offsite", assignee_ids=[seed.ghost.id]),
                seed.ctx(seed.admin),
            )

    @pytest.mark.asyncio
    async def test_closed_project_rejects_new_tasks(self, session, seed):
        sam = seed.ctx(seed.super_admin)
        project = await create_project(session, ProjectCreate(name="Old"), sam)
        await close_project(session, project.id, sam)
        with pytest.raises(ValidationFailed):
            await create_task(session, TaskCreate(title="Late", project_id=project.id), sam)


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


class TestListTasks:
    @pytest.mark.asyncio
    async def test_users_see_only_their_tasks(self, session, seed):
        mine = await make_task(session, seed, assignees=[seed.alice], title="Mine")
        await make_task(session, seed, assignees=[seed.bob], title="Bob's")

        tasks, total = await list_tasks(session, seed.ctx(seed.alice))
        assert [t.id for t in tasks] == [mine.id]
        assert total == 1

        _, admin_total = await list_tasks(session, seed.ctx(seed.admin))
        assert admin_total == 2

    @pytest.mark.asyncio
    async def test_closed_tasks_need_include_archived(self, session, seed):
        task = await make_task(session, seed, assignees=[seed.super_admin])
        sam = seed.ctx(seed.super_admin)
        await lifecycle.start_work(session, task.id, sam)
        await lifecycle.submit_for_review(session, task.id, sam)
        await lifecycle.approve_review(session, task.id, sam)
        await session.commit()

        assert (await list_tasks(session, sam))[1] == 0
        assert (await list_tasks(session, sam, include_archived=True))[1] == 1
        assert (await list_tasks(session, sam, status=TaskStatus.CLOSED))[1] == 1

    @pytest.mark.asyncio
    async def test_deleted_tasks_listed_only_for_view_deleted(self, session, seed):
        task = await make_task(session, seed, assignees=[seed.alice])
        task.deleted_at = utcnow()
        session.add(task)
        await session.commit()

        assert (await list_tasks(session, seed.ctx(seed.alice), include_deleted=True))[1] == 0
        tasks, _ = await list_tasks(session, seed.ctx(seed.super_admin), include_deleted=True)
        assert [t.id for t in tasks] == [task.id]
        assert (await list_tasks(session, seed.ctx(seed.super_admin)))[1] == 0

    @pytest.mark.asyncio
    async def test_filter_by_assignee_and_pagination(self, session, seed):
        for i in range(3):
            await make_task(session, seed, assignees=[seed.carol], title=f"Carol {i}")
        await make_task(session, seed, assignees=[seed.bob], title="Bob's")

        tasks, total = await list_tasks(
            session, seed.ctx(seed.admin), assignee_id=seed.carol.id, page=1, per_page=2
        )
        assert total == 3
        assert len(tasks) == 2


# ---------------------------------------------------------------------------
# Assignment management
# ---------------------------------------------------------------------------


class TestAssignUser:
    @pytest.mark.asyncio
    async def test_assign_notifies_once(self, session, seed):
        task = await make_task(session, seed)
        admin = seed.ctx(seed.admin)
        assert await assign_user(session, task.id, seed.alice.id, admin) is True
        assert await assign_user(session, task.id, seed.alice.id, admin) is False

        result = await session.execute(select(Notification).where(Notification.recipient_id == seed.alice.id))
        assert len(result.all()) == 1

    @pytest.mark.asyncio
    async def test_admin_cannot_unassign(self, session, seed):
        task = await make_task(session, seed, assignees=[seed.alice])
        with pytest.raises(Forbidden):
            await unassign_user(session, task.id, seed.alice.id, seed.ctx(seed.admin))
        assert await unassign_user(session, task.id, seed.alice.id, seed.ctx(seed.super_admin)) is True

    @pytest.mark.asyncio
    async def test_cannot_assign_on_deleted_task(self, session, seed):
        task = await make_task(session, seed)
        task.deleted_at = utcnow()
        session.add(task)
        await session.commit()
        with pytest.raises(RecordDeleted):
            await assign_user(session, task.id, seed.alice.id, seed.ctx(seed.admin))
