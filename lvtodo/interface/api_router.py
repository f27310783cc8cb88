"""JSON HTTP API over the task, wish, group, and user services.

The acting user is taken from the ``X-User-Id`` header; identity is asserted
by the caller and not authenticated here.
"""

import logging
import secrets
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from lvtodo.core import scheduler_tracker
from lvtodo.core.config import settings
from lvtodo.core.errors import (
    AlreadyMemberError,
    DuplicateVoteError,
    ForbiddenError,
    InputValidationError,
    InsufficientFundsError,
    InvalidTransitionError,
    LvTodoError,
    NotFoundError,
    classify_error_with_response,
)
from lvtodo.core.scheduler import OVERDUE_SWEEP_JOB, REMINDER_SWEEP_JOB
from lvtodo.domain.group import Group
from lvtodo.domain.history import TaskHistory
from lvtodo.domain.task import Difficulty, Task, TaskStatus
from lvtodo.domain.user import User
from lvtodo.domain.wish import Wish, WishStatus
from lvtodo.models.service_models import LeaderboardEntry, LevelProgress, SweepResult, UserStatistics
from lvtodo.services import (
    analytics_service,
    deadline_service,
    group_service,
    history_service,
    task_service,
    user_service,
    wish_service,
)


logger = logging.getLogger(__name__)

router = APIRouter(tags=["lvtodo"])

_STATUS_BY_ERROR: list[tuple[type[LvTodoError], int]] = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (AlreadyMemberError, status.HTTP_409_CONFLICT),
    (DuplicateVoteError, status.HTTP_409_CONFLICT),
    (InsufficientFundsError, status.HTTP_409_CONFLICT),
    (InputValidationError, 422),
]


async def domain_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render a domain error as an ErrorResponse with the matching status code."""
    status_code = next(
        (code for error_type, code in _STATUS_BY_ERROR if isinstance(exc, error_type)),
        status.HTTP_400_BAD_REQUEST,
    )
    logger.info(
        "Request rejected",
        extra={"path": request.url.path, "status_code": status_code, "error": str(exc)},
    )
    return JSONResponse(
        status_code=status_code,
        content=classify_error_with_response(exc).model_dump(mode="json"),
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LvTodoError, domain_error_handler)


async def require_actor(x_user_id: str | None = Header(default=None)) -> str:
    """Acting user id from the X-User-Id header."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    return x_user_id.strip()


async def require_sweep_token(x_sweep_token: str | None = Header(default=None)) -> None:
    """Guard for externally triggered sweeps. The endpoints do not exist without a configured token."""
    if not settings.sweep_trigger_token:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")
    if not x_sweep_token or not secrets.compare_digest(x_sweep_token, settings.sweep_trigger_token):
        logger.warning("sweep_trigger_rejected")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid sweep token")


class UserCreateRequest(BaseModel):
    display_name: str
    email: str = ""


class GroupCreateRequest(BaseModel):
    name: str
    description: str = ""


class JoinGroupRequest(BaseModel):
    invite_code: str


class GroupSettingsRequest(BaseModel):
    allow_wishes: bool | None = None
    require_task_confirmation: bool | None = None


class TaskCreateRequest(BaseModel):
    title: str
    description: str = ""
    difficulty: Difficulty
    assigned_to: str
    group_id: str
    deadline: datetime


class TaskUpdateRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    difficulty: Difficulty | None = None
    deadline: datetime | None = None


class WishCreateRequest(BaseModel):
    title: str
    description: str = ""
    group_id: str


class WishApproveRequest(BaseModel):
    suggested_cost: int = Field(..., description="Positive point price suggested by the approver")


# Users


@router.post("/users", status_code=status.HTTP_201_CREATED)
async def create_user(body: UserCreateRequest) -> User:
    return await user_service.create_user(display_name=body.display_name, email=body.email)


@router.get("/users/{user_id}")
async def get_user(user_id: str) -> User:
    return await user_service.get_user(user_id=user_id)


@router.get("/users/{user_id}/stats")
async def get_user_stats(user_id: str) -> UserStatistics:
    return await analytics_service.get_user_statistics(user_id=user_id)


@router.get("/users/{user_id}/level")
async def get_user_level(user_id: str) -> LevelProgress:
    return await user_service.get_level_progress(user_id=user_id)


@router.get("/users/{user_id}/groups")
async def get_user_groups(user_id: str) -> list[Group]:
    return await group_service.get_user_groups(user_id=user_id)


@router.get("/users/{user_id}/tasks")
async def get_user_tasks(
    user_id: str, role: Literal["assignee", "assigner"] = "assignee", task_status: TaskStatus | None = None
) -> list[Task]:
    """Tasks assigned to the user (``role=assignee``) or created by them (``role=assigner``)."""
    if role == "assigner":
        return await task_service.list_tasks(assigned_by=user_id, status=task_status)
    return await task_service.list_tasks(assigned_to=user_id, status=task_status)


@router.get("/users/{user_id}/wishes")
async def get_user_wishes(user_id: str) -> list[Wish]:
    return await wish_service.list_wishes(created_by=user_id)


@router.get("/users/{user_id}/history")
async def get_user_history(user_id: str) -> list[TaskHistory]:
    return await history_service.list_for_user(user_id=user_id)


# Groups


@router.post("/groups", status_code=status.HTTP_201_CREATED)
async def create_group(body: GroupCreateRequest, actor_id: str = Depends(require_actor)) -> Group:
    return await group_service.create_group(name=body.name, description=body.description, created_by=actor_id)


@router.post("/groups/join")
async def join_group(body: JoinGroupRequest, actor_id: str = Depends(require_actor)) -> Group:
    return await group_service.join_group(user_id=actor_id, invite_code=body.invite_code)


@router.get("/groups/by-code/{invite_code}")
async def get_group_by_code(invite_code: str) -> Group:
    group = await group_service.get_group_by_invite_code(invite_code=invite_code)
    if group is None:
        msg = f"No group with invite code {group_service.normalize_invite_code(invite_code)}"
        raise NotFoundError(msg)
    return group


@router.get("/groups/{group_id}")
async def get_group(group_id: str) -> Group:
    return await group_service.get_group(group_id=group_id)


@router.post("/groups/{group_id}/leave", status_code=status.HTTP_204_NO_CONTENT)
async def leave_group(group_id: str, actor_id: str = Depends(require_actor)) -> Response:
    await group_service.leave_group(user_id=actor_id, group_id=group_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/groups/{group_id}/settings")
async def update_group_settings(
    group_id: str, body: GroupSettingsRequest, actor_id: str = Depends(require_actor)
) -> Group:
    return await group_service.update_group_settings(
        group_id=group_id,
        actor_id=actor_id,
        allow_wishes=body.allow_wishes,
        require_task_confirmation=body.require_task_confirmation,
    )


@router.delete("/groups/{group_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_group(group_id: str, actor_id: str = Depends(require_actor)) -> Response:
    await group_service.delete_group(group_id=group_id, actor_id=actor_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/groups/{group_id}/members")
async def get_group_members(group_id: str) -> list[User]:
    return await group_service.get_group_members(group_id=group_id)


@router.get("/groups/{group_id}/tasks")
async def get_group_tasks(group_id: str, task_status: TaskStatus | None = None) -> list[Task]:
    return await task_service.list_tasks(group_id=group_id, status=task_status)


@router.get("/groups/{group_id}/wishes")
async def get_group_wishes(group_id: str, wish_status: WishStatus | None = None) -> list[Wish]:
    return await wish_service.list_wishes(group_id=group_id, status=wish_status)


@router.get("/groups/{group_id}/wishes/awaiting-vote")
async def get_wishes_awaiting_vote(group_id: str, actor_id: str = Depends(require_actor)) -> list[Wish]:
    return await wish_service.list_wishes_awaiting_vote(group_id=group_id, voter_id=actor_id)


@router.get("/groups/{group_id}/leaderboard")
async def get_group_leaderboard(group_id: str, period_days: int = 30) -> list[LeaderboardEntry]:
    return await analytics_service.get_group_leaderboard(group_id=group_id, period_days=period_days)


# Tasks


@router.post("/tasks", status_code=status.HTTP_201_CREATED)
async def create_task(body: TaskCreateRequest, actor_id: str = Depends(require_actor)) -> Task:
    return await task_service.create_task(
        title=body.title,
        description=body.description,
        difficulty=body.difficulty,
        assigned_to=body.assigned_to,
        assigned_by=actor_id,
        group_id=body.group_id,
        deadline=body.deadline,
    )


@router.get("/tasks/{task_id}")
async def get_task(task_id: str) -> Task:
    return await task_service.get_task(task_id=task_id)


@router.patch("/tasks/{task_id}")
async def update_task(task_id: str, body: TaskUpdateRequest, actor_id: str = Depends(require_actor)) -> Task:
    return await task_service.update_task_details(
        task_id=task_id,
        actor_id=actor_id,
        title=body.title,
        description=body.description,
        difficulty=body.difficulty,
        deadline=body.deadline,
    )


@router.post("/tasks/{task_id}/start")
async def start_task(task_id: str, actor_id: str = Depends(require_actor)) -> Task:
    return await task_service.start_task(task_id=task_id, actor_id=actor_id)


@router.post("/tasks/{task_id}/complete")
async def complete_task(task_id: str, actor_id: str = Depends(require_actor)) -> Task:
    return await task_service.complete_task(task_id=task_id, actor_id=actor_id)


@router.post("/tasks/{task_id}/confirm")
async def confirm_task(task_id: str, actor_id: str = Depends(require_actor)) -> Task:
    return await task_service.confirm_task(task_id=task_id, actor_id=actor_id)


@router.post("/tasks/{task_id}/dispute")
async def dispute_task(task_id: str, actor_id: str = Depends(require_actor)) -> Task:
    return await task_service.dispute_task(task_id=task_id, actor_id=actor_id)


@router.get("/tasks/{task_id}/history")
async def get_task_history(task_id: str) -> list[TaskHistory]:
    return await history_service.list_for_task(task_id=task_id)


# Wishes


@router.post("/wishes", status_code=status.HTTP_201_CREATED)
async def propose_wish(body: WishCreateRequest, actor_id: str = Depends(require_actor)) -> Wish:
    return await wish_service.propose_wish(
        title=body.title, description=body.description, group_id=body.group_id, created_by=actor_id
    )


@router.get("/wishes/{wish_id}")
async def get_wish(wish_id: str) -> Wish:
    return await wish_service.get_wish(wish_id=wish_id)


@router.post("/wishes/{wish_id}/approve")
async def approve_wish(wish_id: str, body: WishApproveRequest, actor_id: str = Depends(require_actor)) -> Wish:
    return await wish_service.approve_wish(wish_id=wish_id, approver_id=actor_id, suggested_cost=body.suggested_cost)


@router.post("/wishes/{wish_id}/complete")
async def complete_wish(wish_id: str, actor_id: str = Depends(require_actor)) -> Wish:
    return await wish_service.complete_wish(wish_id=wish_id, actor_id=actor_id)


@router.post("/wishes/{wish_id}/cancel")
async def cancel_wish(wish_id: str, actor_id: str = Depends(require_actor)) -> Wish:
    return await wish_service.cancel_wish(wish_id=wish_id, actor_id=actor_id)


# Sweep triggers for external schedulers


async def _run_sweep_exclusively(job_name: str, sweep: Callable[[], Awaitable[SweepResult]]) -> SweepResult:
    tracker = scheduler_tracker.job_tracker
    if not await tracker.acquire_lock(job_name):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"{job_name} is already running")
    try:
        return await sweep()
    finally:
        await tracker.release_lock(job_name)


@router.post("/internal/sweeps/reminders", dependencies=[Depends(require_sweep_token)])
async def trigger_reminder_sweep() -> SweepResult:
    return await _run_sweep_exclusively(REMINDER_SWEEP_JOB, deadline_service.run_reminder_sweep)


@router.post("/internal/sweeps/overdue", dependencies=[Depends(require_sweep_token)])
async def trigger_overdue_sweep() -> SweepResult:
    return await _run_sweep_exclusively(OVERDUE_SWEEP_JOB, deadline_service.run_overdue_sweep)
