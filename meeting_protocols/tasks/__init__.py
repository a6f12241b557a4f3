"""Follow-up tasks."""

from meeting_protocols.tasks.models import Task, TaskPriority, TaskStatus

__all__ = ["Task", "TaskPriority", "TaskStatus"]
