"""
Notification fanout tests.

Tests cover:
- Recipient rules per event type
- The actor, inactive users and tombstoned users never receive a row
- Replaying an event is idempotent
- Rows roll back with the transaction that produced them
- Read state
"""

import uuid

import pytest
from sqlmodel import select

from app.core.errors import NotFound
from app.models.notification import Notification
from app.services import lifecycle
from app.services.notifications import (
    event_id_for,
    list_notifications,
    mark_all_read,
    mark_read,
    notify,
    unread_count,
)
from app.services.projects import add_members, create_project
from taskgate_shared.schemas.common import NotificationType
from taskgate_shared.schemas.projects import ProjectCreate
from taskgate_shared.schemas.tasks import ActivityKind

from conftest import make_task, rollback


async def all_notifications(session) -> list[Notification]:
    result = await session.execute(select(Notification))
    return list(result.scalars().all())


async def recipients(session, event_type: NotificationType) -> set[uuid.UUID]:
    result = await session.execute(
        select(Notification.recipient_id).where(Notification.type == event_type.value)
    )
    return {row[0] for row in result.all()}


class TestRecipients:
    @pytest.mark.asyncio
    async def test_task_assigned_goes_to_named_assignees(self, session, seed):
        task = await make_task(session, seed)
        rows = await notify(
            session,
            NotificationType.TASK_ASSIGNED,
            task.id,
            seed.super_admin.id,
            {"assignee_ids": [str(seed.alice.id), str(seed.bob.id)]},
            occurrence="first",
        )
        assert {r.recipient_id for r in rows} == {seed.alice.id, seed.bob.id}
        assert all(r.related_entity_type == "task" for r in rows)
        assert all(r.related_entity_id == task.id for r in rows)
        assert rows[0].message == "You have been assigned to task: Write quarterly report"

    @pytest.mark.asyncio
    async def test_activity_reaches_assignees_and_project_members(self, session, seed):
        project = await create_project(
            session,
            ProjectCreate(name="Launch", member_ids=[seed.carol.id]),
            seed.ctx(seed.super_admin),
        )
        task = await make_task(session, seed, assignees=[seed.alice, seed.bob], project_id=project.id)

        await lifecycle.record_activity(
            session, task.id, seed.ctx(seed.alice), ActivityKind.COMMENT, uuid.uuid4()
        )
        assert await recipients(session, NotificationType.COMMENT_ADDED) == {seed.bob.id, seed.carol.id}

    @pytest.mark.asyncio
    async def test_activity_starts_work_for_assignee(self, session, seed):
        task = await make_task(session, seed, assignees=[seed.alice, seed.bob])
        result = await lifecycle.record_activity(
            session, task.id, seed.ctx(seed.alice), ActivityKind.DOCUMENT, uuid.uuid4()
        )
        assert result.started_work is True
        assert result.notified == 1
        assert await recipients(session, NotificationType.DOCUMENT_UPLOADED) == {seed.bob.id}

    @pytest.mark.asyncio
    async def test_activity_from_outsider_writes_nothing(self, session, seed):
        task = await make_task(session, seed, assignees=[seed.alice])
        with pytest.raises(NotFound):
            await lifecycle.record_activity(
                session, task.id, seed.ctx(seed.carol), ActivityKind.NOTE, uuid.uuid4()
            )
        assert await all_notifications(session) == []
        assert await lifecycle.status_history(session, task.id) == []

    @pytest.mark.asyncio
    async def test_review_requested_skips_tombstoned_and_inactive_admins(self, session, seed):
        seed.admin.is_active = False
        session.add(seed.admin)
        await session.commit()

        task = await make_task(session, seed, assignees=[seed.alice])
        rows = await notify(session, NotificationType.REVIEW_REQUESTED, task.id, seed.alice.id, occurrence="r1")
        assert [r.recipient_id for r in rows] == [seed.super_admin.id]

    @pytest.mark.asyncio
    async def test_bulletin_reaches_everyone_but_poster(self, session, seed):
        bulletin_id = uuid.uuid4()
        rows = await notify(
            session,
            NotificationType.BULLETIN_POSTED,
            bulletin_id,
            seed.admin.id,
            {"title": "Office closed Friday", "actor_name": "Ada"},
        )
        assert {r.recipient_id for r in rows} == {
            seed.super_admin.id,
            seed.alice.id,
            seed.bob.id,
            seed.carol.id,
        }
        assert rows[0].related_entity_type == "bulletin"
        assert rows[0].message == "Ada posted a new notice: Office closed Friday"

    @pytest.mark.asyncio
    async def test_todo_completed_reaches_assignees_and_admins(self, session, seed):
        rows = await notify(
            session,
            NotificationType.TODO_COMPLETED,
            uuid.uuid4(),
            seed.alice.id,
            {"assignee_ids": [str(seed.alice.id), str(seed.bob.id)], "text": "Book venue"},
        )
        assert {r.recipient_id for r in rows} == {seed.bob.id, seed.admin.id, seed.super_admin.id}

    @pytest.mark.asyncio
    async def test_project_events_reach_members(self, session, seed):
        project = await create_project(session, ProjectCreate(name="Launch"), seed.ctx(seed.super_admin))
        await add_members(session, project.id, [seed.alice.id, seed.super_admin.id], seed.ctx(seed.super_admin))
        rows = await notify(
            session, NotificationType.PROJECT_UPDATED, project.id, seed.super_admin.id, occurrence="v2"
        )
        assert [r.recipient_id for r in rows] == [seed.alice.id]
        assert rows[0].title == "Project Updated"

    @pytest.mark.asyncio
    async def test_no_recipients(self, session, seed):
        task = await make_task(session, seed, assignees=[seed.alice])
        rows = await notify(session, NotificationType.REVIEW_COMPLETED, task.id, seed.alice.id)
        assert rows == []

    @pytest.mark.asyncio
    async def test_unknown_task_subject(self, session, seed):
        with pytest.raises(NotFound):
            await notify(session, NotificationType.NOTE_ADDED, uuid.uuid4(), seed.alice.id)


class TestIdempotency:
    @pytest.mark.asyncio
    async def test_replay_creates_no_duplicates(self, session, seed):
        task = await make_task(session, seed, assignees=[seed.alice, seed.bob])
        first = await notify(session, NotificationType.NOTE_ADDED, task.id, seed.alice.id, occurrence="n1")
        again = await notify(session, NotificationType.NOTE_ADDED, task.id, seed.alice.id, occurrence="n1")
        await session.commit()

        assert [r.id for r in first] == [r.id for r in again]
        assert len(await all_notifications(session)) == 1

    @pytest.mark.asyncio
    async def test_distinct_occurrences_are_distinct_events(self, session, seed):
        task = await make_task(session, seed, assignees=[seed.alice, seed.bob])
        await notify(session, NotificationType.NOTE_ADDED, task.id, seed.alice.id, occurrence="n1")
        await notify(session, NotificationType.NOTE_ADDED, task.id, seed.alice.id, occurrence="n2")
        assert len(await all_notifications(session)) == 2

    def test_event_id_is_deterministic(self):
        subject = uuid.uuid4()
        assert event_id_for(NotificationType.NOTE_ADDED, subject, "x") == event_id_for(
            NotificationType.NOTE_ADDED, subject, "x"
        )
        assert event_id_for(NotificationType.NOTE_ADDED, subject, "x") != event_id_for(
            NotificationType.COMMENT_ADDED, subject, "x"
        )

    @pytest.mark.asyncio
    async def test_rows_roll_back_with_the_transition(self, session, seed):
        task = await make_task(session, seed, assignees=[seed.alice])
        await lifecycle.start_work(session, task.id, seed.ctx(seed.alice))
        await session.commit()

        await lifecycle.submit_for_review(session, task.id, seed.ctx(seed.alice))
        assert len(await all_notifications(session)) == 2
        await rollback(session)

        assert await all_notifications(session) == []
        assert await lifecycle.status_history(session, task.id) != []


class TestReadState:
    @pytest.mark.asyncio
    async def test_mark_read_and_counts(self, session, seed):
        task = await make_task(session, seed, assignees=[seed.alice])
        for occurrence in ("a", "b", "c"):
            await notify(session, NotificationType.COMMENT_ADDED, task.id, seed.bob.id, occurrence=occurrence)
        await session.commit()

        assert await unread_count(session, seed.alice.id) == 3
        inbox = await list_notifications(session, seed.alice.id)
        read = await mark_read(session, inbox[0].id, seed.alice.id)
        assert read.is_read is True
        assert read.read_at is not None
        assert await unread_count(session, seed.alice.id) == 2

        assert await mark_all_read(session, seed.alice.id) == 2
        assert await unread_count(session, seed.alice.id) == 0
        assert await list_notifications(session, seed.alice.id, unread_only=True) == []

    @pytest.mark.asyncio
    async def test_cannot_read_someone_elses_notification(self, session, seed):
        task = await make_task(session, seed, assignees=[seed.alice])
        rows = await notify(session, NotificationType.NOTE_ADDED, task.id, seed.bob.id, occurrence="x")
        with pytest.raises(NotFound):
            await mark_read(session, rows[0].id, seed.bob.id)
