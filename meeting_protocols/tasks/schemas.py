"""
Task Pydantic Schemas
"""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from meeting_protocols.tasks.models import TaskPriority, TaskStatus


class TaskCreate(BaseModel):
    """Schema for creating a task by hand."""

    model_config = ConfigDict(populate_by_name=True)

    title: str | None = None
    description: str | None = None
    assigned_to: str | None = Field(default=None, alias="assignedTo")
    deadline: date | None = None
    priority: TaskPriority = TaskPriority.MEDIUM
    category: str | None = None
    protocol_id: UUID | None = Field(default=None, alias="protocolId")


class TaskStatusUpdate(BaseModel):
    """Schema for changing the status of a task."""

    model_config = ConfigDict(populate_by_name=True)

    status: str | None = None
    completion_notes: str | None = Field(default=None, alias="completionNotes")


class TaskResponse(BaseModel):
    """Schema for task response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    group_id: str
    protocol_id: UUID | None = None
    title: str
    description: str | None = None
    assigned_to: str | None = None
    deadline: date | None = None
    priority: str
    status: TaskStatus
    category: str | None = None
    created_by: str
    completed_at: datetime | None = None
    completion_notes: str | None = None
    created_at: datetime
    updated_at: datetime


class TaskList(BaseModel):
    tasks: list[TaskResponse]


class TaskItem(BaseModel):
    task: TaskResponse


class TaskEnvelope(BaseModel):
    message: str
    task: TaskResponse


class MessageResponse(BaseModel):
    message: str
