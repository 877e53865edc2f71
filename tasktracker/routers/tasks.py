from fastapi import APIRouter, status

from tasktracker.core.errors import AccessDeniedError, NotFoundError
from tasktracker.deps import CurrentUserDep, TaskServiceDep
from tasktracker.models import TaskCreate, TaskRead, TaskUpdate, UserRead
from tasktracker.services.task_service import TaskService

router = APIRouter(prefix="/tasks", tags=["tasks"])


async def _get_owned_task(service: TaskService, task_id: int, user: UserRead) -> TaskRead:
    task = await service.get_task(task_id)
    if task is None:
        raise NotFoundError(f"Task with id {task_id} not found")
    if task.user_id != user.id:
        raise AccessDeniedError()
    return task


@router.get("/", response_model=list[TaskRead])
async def list_tasks(user: CurrentUserDep, service: TaskServiceDep):
    """List the current user's tasks, newest first"""
    return await service.list_tasks_for_user(user.id)


@router.post("/", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
async def create_task(task_data: TaskCreate, user: CurrentUserDep, service: TaskServiceDep):
    """Create a new task"""
    return await service.create_task(user.id, task_data)


@router.get("/{task_id}", response_model=TaskRead)
async def get_task(task_id: int, user: CurrentUserDep, service: TaskServiceDep):
    """Get a specific task by ID"""
    return await _get_owned_task(service, task_id, user)


@router.put("/{task_id}", response_model=TaskRead)
@router.patch("/{task_id}", response_model=TaskRead)
async def update_task(
    task_id: int, task_data: TaskUpdate, user: CurrentUserDep, service: TaskServiceDep
):
    await _get_owned_task(service, task_id, user)

    task = await service.update_task(task_id, task_data)
    if task is None:
        raise NotFoundError(f"Task with id {task_id} not found")
    return task


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(task_id: int, user: CurrentUserDep, service: TaskServiceDep):
    """Delete a task"""
    await _get_owned_task(service, task_id, user)

    if not await service.delete_task(task_id):
        raise NotFoundError(f"Task with id {task_id} not found")
