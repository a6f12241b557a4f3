"""
Task Services

Manual creation, lookup, listing, status changes and deletion of group
tasks. Most tasks are derived from finalized protocols instead.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date

from sqlalchemy.ext.asyncio import AsyncSession

from meeting_protocols.auth.dependencies import CurrentUser
from meeting_protocols.core.database import utcnow
from meeting_protocols.core.errors import AccessDenied, NotFoundError, ValidationError
from meeting_protocols.protocols.repositories import ActivityLogRepository, ProtocolRepository
from meeting_protocols.realtime.broadcast import Broadcaster
from meeting_protocols.realtime.events import ServerEvent, group_room
from meeting_protocols.tasks.models import Task, TaskPriority, TaskStatus
from meeting_protocols.tasks.repositories import TaskRepository
from meeting_protocols.tasks.schemas import TaskCreate, TaskResponse, TaskStatusUpdate

logger = logging.getLogger(__name__)

ENTITY_TYPE = "task"


class TaskService:
    """Operations on the tasks of the caller's group."""

    def __init__(self, db: AsyncSession, broadcaster: Broadcaster | None = None):
        self.db = db
        self.broadcaster = broadcaster
        self.tasks = TaskRepository(db)
        self.protocols = ProtocolRepository(db)
        self.activity = ActivityLogRepository(db)

    async def list_tasks(
        self,
        actor: CurrentUser,
        assigned_to: str | None = None,
        status: TaskStatus | None = None,
        priority: TaskPriority | None = None,
        protocol_id: uuid.UUID | None = None,
        overdue: bool = False,
    ) -> list[Task]:
        return await self.tasks.list_for_group(
            actor.group_id,
            assigned_to,
            status,
            priority,
            protocol_id,
            overdue_on=date.today() if overdue else None,
        )

    async def my_tasks(
        self,
        actor: CurrentUser,
        status: TaskStatus | None = None,
        priority: TaskPriority | None = None,
        overdue: bool = False,
    ) -> list[Task]:
        """Tasks of the caller's group assigned to the caller."""
        return await self.list_tasks(actor, actor.id, status, priority, overdue=overdue)

    async def get_task(self, task_id: uuid.UUID | str, actor: CurrentUser) -> Task:
        return await self._load_for_actor(task_id, actor)

    async def create(self, actor: CurrentUser, payload: TaskCreate) -> Task:
        """
        Create a task in the caller's group and announce it to the group room.

        A referenced protocol must exist and belong to the same group.
        """
        if not payload.title or not payload.title.strip():
            raise ValidationError("Task title is required")
        if payload.protocol_id is not None:
            protocol = await self.protocols.get(payload.protocol_id)
            if protocol is None:
                raise NotFoundError("Protocol not found")
            if protocol.group_id != actor.group_id:
                raise AccessDenied("Access denied")

        task = Task(
            group_id=actor.group_id,
            protocol_id=payload.protocol_id,
            title=payload.title,
            description=payload.description,
            assigned_to=payload.assigned_to,
            deadline=payload.deadline,
            priority=payload.priority.value,
            status=TaskStatus.TODO,
            category=payload.category,
            created_by=actor.id,
        )
        await self.tasks.add(task)
        await self.activity.log(
            actor.group_id,
            actor.id,
            ENTITY_TYPE,
            task.id,
            "created",
            {"title": task.title, "assignedTo": task.assigned_to},
        )
        await self.db.commit()

        logger.info("Task %s created by %s", task.id, actor.id)
        await self._emit(
            actor,
            ServerEvent.TASK_CREATED,
            {
                "task": TaskResponse.model_validate(task).model_dump(mode="json"),
                "createdBy": actor.brief(),
            },
        )
        return task

    async def update_status(
        self, task_id: uuid.UUID | str, actor: CurrentUser, payload: TaskStatusUpdate
    ) -> Task:
        """
        Move a task to another status.

        ``done`` stamps the completion time and stores the completion notes.
        """
        try:
            new_status = TaskStatus(payload.status or "")
        except ValueError:
            raise ValidationError(
                "Valid status is required", details={"allowed": [s.value for s in TaskStatus]}
            ) from None

        task = await self._load_for_actor(task_id, actor)
        old_status = task.status

        task.status = new_status
        if new_status == TaskStatus.DONE:
            task.completed_at = utcnow()
            task.completion_notes = payload.completion_notes
        await self.tasks.save(task)
        await self.activity.log(
            actor.group_id,
            actor.id,
            ENTITY_TYPE,
            task.id,
            "status_changed",
            {"from": old_status.value, "to": new_status.value},
        )
        await self.db.commit()

        logger.info("Task %s: %s -> %s by %s", task.id, old_status.value, new_status.value, actor.id)
        await self._emit(
            actor,
            ServerEvent.TASK_STATUS_UPDATED,
            {"taskId": str(task.id), "status": new_status.value, "updatedBy": actor.brief()},
        )
        return task

    async def delete(self, task_id: uuid.UUID | str, actor: CurrentUser) -> None:
        """Delete a task; only its creator or assignee may do so."""
        task = await self._load_for_actor(task_id, actor)
        if actor.id not in (task.created_by, task.assigned_to):
            raise AccessDenied("Only the creator or assigned user can delete this task")

        task_key, title = task.id, task.title
        await self.tasks.delete(task)
        await self.activity.log(
            actor.group_id, actor.id, ENTITY_TYPE, task_key, "deleted", {"title": title}
        )
        await self.db.commit()

        logger.info("Task %s deleted by %s", task_key, actor.id)
        await self._emit(
            actor,
            ServerEvent.TASK_DELETED,
            {"taskId": str(task_key), "deletedBy": actor.brief()},
        )

    async def _load_for_actor(self, task_id: uuid.UUID | str, actor: CurrentUser) -> Task:
        task = await self.tasks.get(task_id)
        if task is None:
            raise NotFoundError("Task not found")
        if task.group_id != actor.group_id:
            raise AccessDenied("Access denied")
        return task

    async def _emit(self, actor: CurrentUser, event: ServerEvent, data: dict) -> None:
        if self.broadcaster is None:
            return
        await self.broadcaster.emit(group_room(actor.group_id), event, data)
