"""
Task Router
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from meeting_protocols.auth.dependencies import CurrentUser, require_group
from meeting_protocols.core.database import get_db
from meeting_protocols.realtime.router import get_broadcaster
from meeting_protocols.tasks.models import TaskPriority, TaskStatus
from meeting_protocols.tasks.schemas import (
    MessageResponse,
    TaskCreate,
    TaskEnvelope,
    TaskItem,
    TaskList,
    TaskResponse,
    TaskStatusUpdate,
)
from meeting_protocols.tasks.services import TaskService

router = APIRouter(prefix="/tasks", tags=["tasks"])


def get_task_service(request: Request, db: AsyncSession = Depends(get_db)) -> TaskService:
    return TaskService(db, get_broadcaster(request))


@router.get("", response_model=TaskList)
async def list_tasks(
    assigned_to: str | None = Query(default=None, alias="assignedTo"),
    status_filter: TaskStatus | None = Query(default=None, alias="status"),
    priority: TaskPriority | None = Query(default=None),
    protocol_id: UUID | None = Query(default=None, alias="protocolId"),
    overdue: bool = Query(default=False),
    current_user: CurrentUser = Depends(require_group),
    service: TaskService = Depends(get_task_service),
) -> TaskList:
    """List group tasks, earliest deadline first."""
    tasks = await service.list_tasks(
        current_user, assigned_to, status_filter, priority, protocol_id, overdue=overdue
    )
    return TaskList(tasks=[TaskResponse.model_validate(t) for t in tasks])


@router.get("/my-tasks", response_model=TaskList)
async def list_my_tasks(
    status_filter: TaskStatus | None = Query(default=None, alias="status"),
    priority: TaskPriority | None = Query(default=None),
    overdue: bool = Query(default=False),
    current_user: CurrentUser = Depends(require_group),
    service: TaskService = Depends(get_task_service),
) -> TaskList:
    """List the caller's own tasks."""
    tasks = await service.my_tasks(current_user, status_filter, priority, overdue=overdue)
    return TaskList(tasks=[TaskResponse.model_validate(t) for t in tasks])


@router.post("", response_model=TaskEnvelope, status_code=status.HTTP_201_CREATED)
async def create_task(
    data: TaskCreate,
    current_user: CurrentUser = Depends(require_group),
    service: TaskService = Depends(get_task_service),
) -> TaskEnvelope:
    task = await service.create(current_user, data)
    return TaskEnvelope(
        message="Task created successfully",
        task=TaskResponse.model_validate(task),
    )


@router.get("/{task_id}", response_model=TaskItem)
async def get_task(
    task_id: str,
    current_user: CurrentUser = Depends(require_group),
    service: TaskService = Depends(get_task_service),
) -> TaskItem:
    task = await service.get_task(task_id, current_user)
    return TaskItem(task=TaskResponse.model_validate(task))


@router.patch("/{task_id}/status", response_model=TaskEnvelope)
@router.put("/{task_id}/status", response_model=TaskEnvelope)
async def update_task_status(
    task_id: str,
    data: TaskStatusUpdate,
    current_user: CurrentUser = Depends(require_group),
    service: TaskService = Depends(get_task_service),
) -> TaskEnvelope:
    task = await service.update_status(task_id, current_user, data)
    return TaskEnvelope(
        message="Task status updated successfully",
        task=TaskResponse.model_validate(task),
    )


@router.delete("/{task_id}", response_model=MessageResponse)
async def delete_task(
    task_id: str,
    current_user: CurrentUser = Depends(require_group),
    service: TaskService = Depends(get_task_service),
) -> MessageResponse:
    await service.delete(task_id, current_user)
    return MessageResponse(message="Task deleted successfully")
