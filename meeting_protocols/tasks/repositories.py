"""Task repository."""

from __future__ import annotations

import uuid
from datetime import date
from typing import Any

from meeting_protocols.core.repository import BaseRepository
from meeting_protocols.tasks.models import Task, TaskPriority, TaskStatus

# Statuses that can no longer fall behind their deadline
CLOSED_STATUSES = (TaskStatus.DONE, TaskStatus.CANCELLED)


class TaskRepository(BaseRepository[Task]):
    model_class = Task

    async def list_for_group(
        self,
        group_id: str,
        assigned_to: str | None = None,
        status: TaskStatus | None = None,
        priority: TaskPriority | None = None,
        protocol_id: uuid.UUID | None = None,
        overdue_on: date | None = None,
    ) -> list[Task]:
        """
        Tasks of a group, earliest deadline first and undated tasks last.

        ``overdue_on`` keeps only open tasks whose deadline lies before that day.
        """
        criteria: list[Any] = [Task.group_id == group_id]
        if assigned_to:
            criteria.append(Task.assigned_to == assigned_to)
        if status:
            criteria.append(Task.status == status)
        if priority:
            criteria.append(Task.priority == priority.value)
        if protocol_id:
            criteria.append(Task.protocol_id == protocol_id)
        if overdue_on:
            criteria.append(Task.deadline < overdue_on)
            criteria.append(Task.status.not_in(CLOSED_STATUSES))
        return await self.find(
            *criteria,
            order_by=(Task.deadline.is_(None), Task.deadline.asc(), Task.created_at.asc()),
        )

    async def list_for_protocol(self, protocol_id: uuid.UUID) -> list[Task]:
        return await self.find(Task.protocol_id == protocol_id, order_by=(Task.created_at.asc(),))
