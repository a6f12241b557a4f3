"""
Task Derivation

Turns the ``todos`` section of a finalized protocol into assignable tasks.

The section maps a user id to a list of todo entries::

    {"todos": {"u1": [{"title": "A"}, {"title": "B", "priority": "high"}]}}

Every entry with a non-blank title becomes one task assigned to that user.
Tasks are committed one by one; a failure stops the run but keeps the tasks
already created and never fails the finalization that triggered it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from datetime import date
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from meeting_protocols.core.errors import DerivationFailure
from meeting_protocols.protocols.models import Protocol
from meeting_protocols.realtime.broadcast import Broadcaster
from meeting_protocols.realtime.events import ServerEvent, group_room
from meeting_protocols.tasks.models import PROTOCOL_TASK_CATEGORY, Task, TaskPriority, TaskStatus
from meeting_protocols.tasks.repositories import TaskRepository
from meeting_protocols.tasks.schemas import TaskResponse

logger = logging.getLogger(__name__)


def iter_todo_entries(data: dict[str, Any] | None) -> Iterator[tuple[str, dict[str, Any]]]:
    """Yield ``(user_id, entry)`` for every todo entry with a usable title."""
    todos = (data or {}).get("todos")
    if not isinstance(todos, dict):
        return
    for user_id, entries in todos.items():
        if not isinstance(entries, list):
            continue
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            title = entry.get("title")
            if isinstance(title, str) and title.strip():
                yield str(user_id), entry


def parse_deadline(value: Any) -> date | None:
    """Accept ``YYYY-MM-DD`` or a full ISO timestamp; empty means no deadline."""
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(f"invalid deadline: {value!r}")
    return date.fromisoformat(value[:10])


class TaskDerivationService:
    """Creates tasks from the todos of a finalized protocol."""

    def __init__(self, db: AsyncSession, broadcaster: Broadcaster | None = None):
        self.db = db
        self.tasks = TaskRepository(db)
        self.broadcaster = broadcaster

    async def derive(self, protocol: Protocol, actor_id: str) -> list[Task]:
        """
        Create one task per todo entry.

        Returns:
            The tasks created before the run finished or stopped
        """
        created: list[Task] = []
        try:
            for user_id, entry in iter_todo_entries(protocol.data):
                created.append(await self._create_task(protocol, user_id, entry, actor_id))
        except DerivationFailure as exc:
            await self.db.rollback()
            logger.error(
                "Task derivation for protocol %s stopped after %d task(s): %s",
                protocol.id,
                len(created),
                exc.message,
                exc_info=exc,
            )
            return created

        logger.info("Derived %d task(s) from protocol %s", len(created), protocol.id)
        return created

    async def _create_task(
        self,
        protocol: Protocol,
        user_id: str,
        entry: dict[str, Any],
        actor_id: str,
    ) -> Task:
        title = entry["title"]
        try:
            description = entry.get("description")
            task = Task(
                group_id=protocol.group_id,
                protocol_id=protocol.id,
                title=title,
                description=str(description) if description else None,
                assigned_to=user_id,
                deadline=parse_deadline(entry.get("deadline")),
                priority=str(entry.get("priority") or TaskPriority.MEDIUM.value),
                status=TaskStatus.TODO,
                category=PROTOCOL_TASK_CATEGORY,
                created_by=actor_id,
            )
            await self.tasks.add(task)
            await self.db.commit()
        except (ValueError, TypeError, SQLAlchemyError) as exc:
            raise DerivationFailure(
                f"Could not create task {title!r} for {user_id}",
                details=str(exc),
            ) from exc

        if self.broadcaster is not None:
            await self.broadcaster.emit(
                group_room(protocol.group_id),
                ServerEvent.TASK_CREATED,
                {"task": TaskResponse.model_validate(task).model_dump(mode="json")},
            )
        return task
