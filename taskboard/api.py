import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from .auth import get_current_user
from .config import Settings
from .coordinator import BoardTaskCoordinator, BoardView
from .errors import InvalidIdentifier, NotFound
from .models import Board, Column, Task
from .schemas import (
    BoardCreate,
    BoardDeleted,
    BoardOut,
    BoardSummary,
    BoardUpdate,
    BoardWithTasks,
    BoardWithTasksOut,
    ColumnOut,
    ColumnWithTasks,
    DbStatus,
    Health,
    ReconcileOut,
    TaskCreate,
    TaskCreated,
    TaskDeleted,
    TaskMove,
    TaskOut,
    TaskStub,
    TaskUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def get_coordinator(request: Request) -> BoardTaskCoordinator:
    return request.app.state.coordinator


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


# === Helpers ===


def column_out(column: Column) -> ColumnOut:
    return ColumnOut(id=column.id, title=column.title, taskIds=list(column.task_ids))


def board_out(board: Board) -> BoardOut:
    return BoardOut(
        id=board.id,
        title=board.title,
        description=board.description,
        isShared=board.is_shared,
        columns=[column_out(c) for c in board.columns],
        createdAt=board.created_at,
        updatedAt=board.updated_at,
    )


def task_out(task: Task) -> TaskOut:
    return TaskOut(
        id=task.id,
        title=task.title,
        description=task.description,
        boardId=task.board_id,
        columnId=task.column_id,
        color=task.color,
        priority=task.priority,
        dueDate=task.due_date,
        isShared=task.is_shared,
        createdAt=task.created_at,
        updatedAt=task.updated_at,
    )


def board_with_tasks_out(view: BoardView) -> BoardWithTasks:
    board = view.board
    columns = []
    for column in board.columns:
        tasks = [task_out(view.tasks[tid]) if tid in view.tasks else TaskStub(id=tid) for tid in column.task_ids]
        columns.append(ColumnWithTasks(id=column.id, title=column.title, taskIds=list(column.task_ids), tasks=tasks))
    return BoardWithTasks(
        board=BoardWithTasksOut(
            id=board.id,
            title=board.title,
            description=board.description,
            isShared=board.is_shared,
            columns=columns,
            createdAt=board.created_at,
            updatedAt=board.updated_at,
        ),
        taskCount=len(view.tasks),
    )


# === Health ===


@router.get("/health", response_model=Health)
def health() -> Health:
    return Health(status="ok", timestamp=datetime.now(timezone.utc))


@router.get("/db-status", response_model=DbStatus)
async def db_status(request: Request) -> DbStatus:
    store = request.app.state.store
    return DbStatus(connected=await store.ping(), backend=store.backend)


# === Board endpoints ===


@router.get("/boards", response_model=List[BoardOut])
async def list_boards(coordinator: BoardTaskCoordinator = Depends(get_coordinator)):
    return [board_out(b) for b in await coordinator.list_boards()]


@router.post("/boards", response_model=BoardOut, status_code=201)
async def create_board(
    payload: BoardCreate,
    coordinator: BoardTaskCoordinator = Depends(get_coordinator),
    user: Optional[str] = Depends(get_current_user),
):
    columns = [Column(id=c.id, title=c.title or c.id) for c in payload.columns] if payload.columns else None
    board = await coordinator.create_board(payload.title or "", payload.description, columns)
    logger.info("Board %s created by %s", board.id, user or "anonymous")
    return board_out(board)


@router.get("/boards/{board_id}", response_model=BoardOut)
async def get_board(board_id: str, coordinator: BoardTaskCoordinator = Depends(get_coordinator)):
    return board_out(await coordinator.get_board(board_id))


@router.put("/boards/{board_id}", response_model=BoardOut)
@router.patch("/boards/{board_id}", response_model=BoardOut)
async def update_board(
    board_id: str,
    payload: BoardUpdate,
    coordinator: BoardTaskCoordinator = Depends(get_coordinator),
):
    fields = payload.model_dump(exclude_unset=True)
    if payload.columns is not None:
        fields["columns"] = [Column(id=c.id, title=c.title or c.id) for c in payload.columns]
    return board_out(await coordinator.update_board(board_id, fields))


@router.delete("/boards/{board_id}", response_model=BoardDeleted)
async def delete_board(
    board_id: str,
    coordinator: BoardTaskCoordinator = Depends(get_coordinator),
    user: Optional[str] = Depends(get_current_user),
):
    deletion = await coordinator.delete_board(board_id)
    logger.info("Board %s deleted by %s", deletion.board.id, user or "anonymous")
    return BoardDeleted(
        message="Board and all its tasks deleted successfully",
        board=BoardSummary(id=deletion.board.id, title=deletion.board.title),
        tasksDeletedCount=deletion.tasks_deleted,
    )


@router.get("/boards/{board_id}/with-tasks", response_model=BoardWithTasks)
@router.get("/board-with-tasks/{board_id}", response_model=BoardWithTasks, include_in_schema=False)
async def get_board_with_tasks(board_id: str, coordinator: BoardTaskCoordinator = Depends(get_coordinator)):
    return board_with_tasks_out(await coordinator.board_with_tasks(board_id))


@router.post("/boards/{board_id}/reconcile", response_model=ReconcileOut)
async def reconcile_board(board_id: str, coordinator: BoardTaskCoordinator = Depends(get_coordinator)):
    report = await coordinator.reconcile_board(board_id)
    return ReconcileOut(
        boardId=report.board_id,
        removed=report.removed,
        added=report.added,
        reassigned=report.reassigned,
    )


# === Task endpoints ===


@router.get("/tasks/board/{board_id}", response_model=List[TaskOut])
@router.get("/boards/{board_id}/tasks", response_model=List[TaskOut])
async def list_tasks_for_board(
    board_id: str,
    coordinator: BoardTaskCoordinator = Depends(get_coordinator),
    settings: Settings = Depends(get_app_settings),
):
    try:
        tasks = await coordinator.list_tasks_for_board(board_id)
    except InvalidIdentifier:
        if settings.LEGACY_EMPTY_RESPONSES:
            return []
        raise
    return [task_out(t) for t in tasks]


@router.post("/tasks", status_code=201, response_model=None)
async def create_task(
    payload: TaskCreate,
    include_board: bool = Query(default=False, alias="includeBoard"),
    coordinator: BoardTaskCoordinator = Depends(get_coordinator),
    user: Optional[str] = Depends(get_current_user),
):
    placement = await coordinator.create_task(
        payload.title or payload.text,
        payload.boardId,
        payload.columnId,
        description=payload.description,
        color=payload.color,
        priority=payload.priority,
        due_date=payload.dueDate,
    )
    logger.info("Task %s created by %s", placement.task.id, user or "anonymous")
    if include_board:
        return TaskCreated(
            task=task_out(placement.task),
            board=board_out(placement.board),
            placeholderBoard=placement.placeholder_board,
        )
    return task_out(placement.task)


@router.get("/tasks/{task_id}", response_model=TaskOut)
async def get_task(
    task_id: str,
    coordinator: BoardTaskCoordinator = Depends(get_coordinator),
    settings: Settings = Depends(get_app_settings),
):
    try:
        task = await coordinator.get_task(task_id)
    except (NotFound, InvalidIdentifier):
        if settings.LEGACY_EMPTY_RESPONSES:
            return JSONResponse({})
        raise
    return task_out(task)


@router.put("/tasks/{task_id}", response_model=TaskOut)
async def update_task(
    task_id: str,
    payload: TaskUpdate,
    coordinator: BoardTaskCoordinator = Depends(get_coordinator),
):
    data = payload.model_dump(exclude_unset=True)
    names = {"columnId": "column_id", "dueDate": "due_date"}
    fields = {names.get(k, k): v for k, v in data.items()}
    return task_out(await coordinator.update_task(task_id, fields))


@router.patch("/tasks/{task_id}/move", response_model=TaskOut)
async def move_task(
    task_id: str,
    payload: TaskMove,
    coordinator: BoardTaskCoordinator = Depends(get_coordinator),
):
    return task_out(await coordinator.move_task(task_id, payload.columnId))


@router.delete("/tasks/{task_id}", response_model=TaskDeleted)
async def delete_task(
    task_id: str,
    coordinator: BoardTaskCoordinator = Depends(get_coordinator),
    user: Optional[str] = Depends(get_current_user),
):
    task = await coordinator.delete_task(task_id)
    logger.info("Task %s deleted by %s", task.id, user or "anonymous")
    return TaskDeleted(message="Task deleted successfully", id=task.id)
