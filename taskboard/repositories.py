from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from .errors import InvalidIdentifier, NotFound, ValidationFailed
from .ids import new_id, normalize_id
from .models import (
    DEFAULT_COLOR,
    DEFAULT_PRIORITY,
    PRIORITIES,
    Board,
    Column,
    Task,
    default_columns,
    now_utc,
)
from .store import DocumentStore

BOARDS = "boards"
TASKS = "tasks"


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip()


def _check_columns(columns: Sequence[Column]) -> List[Column]:
    seen = set()
    out = []
    for column in columns:
        column_id = (column.id or "").strip()
        if not column_id:
            raise ValidationFailed("column id is required")
        if column_id in seen:
            raise ValidationFailed(f"duplicate column id {column_id!r}")
        seen.add(column_id)
        title = (column.title or "").strip() or column_id
        out.append(Column(id=column_id, title=title, task_ids=list(column.task_ids)))
    return out


@dataclass
class BoardDeletion:
    board: Board
    tasks_deleted: int


class BoardRepository:
    """Board documents, including the per-column ``taskIds`` lists."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def create(
        self,
        title: str,
        description: Optional[str] = None,
        columns: Optional[Sequence[Column]] = None,
    ) -> Board:
        title = _clean(title) or ""
        if not title:
            raise ValidationFailed("board title is required")
        now = now_utc()
        board = Board(
            id=new_id(),
            title=title,
            description=_clean(description),
            created_at=now,
            updated_at=now,
            columns=_check_columns(columns) if columns else default_columns(),
        )
        await self.store.insert_one(BOARDS, board.to_document())
        return board

    async def find(self, board_id: str) -> Optional[Board]:
        doc = await self.store.find_one(BOARDS, {"_id": board_id})
        return Board.from_document(doc) if doc else None

    async def get(self, board_id: str) -> Board:
        board = await self.find(board_id)
        if board is None:
            raise NotFound(f"board {board_id} not found", {"boardId": board_id})
        return board

    async def list(self) -> List[Board]:
        # Unbounded: every board is returned.
        docs = await self.store.find(BOARDS)
        return [Board.from_document(d) for d in docs]

    async def update(self, board_id: str, fields: Dict[str, Any]) -> Board:
        changes: Dict[str, Any] = {}
        if "title" in fields:
            title = _clean(fields["title"]) or ""
            if not title:
                raise ValidationFailed("board title cannot be empty")
            changes["title"] = title
        if "description" in fields:
            changes["description"] = _clean(fields["description"])
        if "columns" in fields:
            if not fields["columns"]:
                raise ValidationFailed("a board needs at least one column")
            changes["columns"] = [c.to_document() for c in _check_columns(fields["columns"])]
        changes["isShared"] = True
        changes["updatedAt"] = now_utc()
        doc = await self.store.update_one(BOARDS, {"_id": board_id}, changes)
        if doc is None:
            raise NotFound(f"board {board_id} not found", {"boardId": board_id})
        return Board.from_document(doc)

    async def delete(self, board_id: str) -> BoardDeletion:
        """Delete a board and every task that names it.

        Tasks go first, so an interrupted delete can simply be retried.
        """
        board = await self.get(board_id)
        tasks_deleted = await self.store.delete_many(TASKS, {"boardId": board_id})
        await self.store.delete_one(BOARDS, {"_id": board_id})
        return BoardDeletion(board=board, tasks_deleted=tasks_deleted)

    async def append_task_to_column(self, board_id: str, column_id: str, task_id: str) -> Board:
        doc = await self.store.push_to_array(
            BOARDS, {"_id": board_id}, "columns", "id", column_id, "taskIds", task_id,
            fields={"updatedAt": now_utc()},
        )
        if doc is None:
            raise NotFound(f"board {board_id} not found", {"boardId": board_id})
        return Board.from_document(doc)

    async def remove_task_from_column(self, board_id: str, column_id: str, task_id: str) -> Board:
        doc = await self.store.pull_from_array(
            BOARDS, {"_id": board_id}, "columns", "id", column_id, "taskIds", task_id,
            fields={"updatedAt": now_utc()},
        )
        if doc is None:
            raise NotFound(f"board {board_id} not found", {"boardId": board_id})
        return Board.from_document(doc)


TASK_FIELDS = {
    "title": "title",
    "description": "description",
    "color": "color",
    "priority": "priority",
    "due_date": "dueDate",
    "column_id": "columnId",
}


def _check_priority(priority: Optional[str]) -> str:
    priority = priority or DEFAULT_PRIORITY
    if priority not in PRIORITIES:
        raise ValidationFailed(f"priority must be one of {', '.join(PRIORITIES)}", {"priority": priority})
    return priority


class TaskRepository:
    """Task documents. Never touches boards; column bookkeeping belongs to the coordinator."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def create(
        self,
        title: str,
        board_id: str,
        column_id: str,
        description: Optional[str] = None,
        color: Optional[str] = None,
        priority: Optional[str] = None,
        due_date: Optional[datetime] = None,
    ) -> Task:
        title = _clean(title) or ""
        if not title:
            raise ValidationFailed("task title is required")
        try:
            board_id = normalize_id(board_id, "boardId")
        except InvalidIdentifier as exc:
            raise ValidationFailed(exc.message, exc.details) from exc
        if not column_id:
            raise ValidationFailed("column id is required")
        now = now_utc()
        task = Task(
            id=new_id(),
            title=title,
            description=_clean(description) or "",
            board_id=board_id,
            column_id=column_id,
            color=color or DEFAULT_COLOR,
            priority=_check_priority(priority),
            due_date=due_date,
            created_at=now,
            updated_at=now,
        )
        await self.store.insert_one(TASKS, task.to_document())
        return task

    async def find(self, task_id: str) -> Optional[Task]:
        doc = await self.store.find_one(TASKS, {"_id": task_id})
        return Task.from_document(doc) if doc else None

    async def get(self, task_id: str) -> Task:
        task = await self.find(task_id)
        if task is None:
            raise NotFound(f"task {task_id} not found", {"taskId": task_id})
        return task

    async def list_by_board(self, board_id: str) -> List[Task]:
        docs = await self.store.find(TASKS, {"boardId": board_id})
        return [Task.from_document(d) for d in docs]

    def _changes(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        changes: Dict[str, Any] = {}
        for name, value in fields.items():
            if name not in TASK_FIELDS:
                raise ValidationFailed(f"task field {name!r} cannot be updated")
            if name == "title":
                value = _clean(value) or ""
                if not value:
                    raise ValidationFailed("task title cannot be empty")
            elif name == "priority":
                value = _check_priority(value)
            elif name == "color":
                value = value or DEFAULT_COLOR
            elif name == "column_id" and not value:
                raise ValidationFailed("column id is required")
            changes[TASK_FIELDS[name]] = value
        changes["isShared"] = True
        changes["updatedAt"] = now_utc()
        return changes

    def validate(self, fields: Dict[str, Any]) -> None:
        """Raise :class:`ValidationFailed` for anything :meth:`update` would reject."""
        self._changes(fields)

    async def update(self, task_id: str, fields: Dict[str, Any]) -> Task:
        doc = await self.store.update_one(TASKS, {"_id": task_id}, self._changes(fields))
        if doc is None:
            raise NotFound(f"task {task_id} not found", {"taskId": task_id})
        return Task.from_document(doc)

    async def set_column_if(self, task_id: str, expected_column_id: str, column_id: str) -> Optional[Task]:
        """Move the task to ``column_id`` only if it is still in ``expected_column_id``.

        Returns ``None`` when the task is gone or sits in another column.
        """
        doc = await self.store.update_one(
            TASKS,
            {"_id": task_id, "columnId": expected_column_id},
            self._changes({"column_id": column_id}),
        )
        return Task.from_document(doc) if doc else None

    async def delete(self, task_id: str) -> Task:
        doc = await self.store.delete_one(TASKS, {"_id": task_id})
        if doc is None:
            raise NotFound(f"task {task_id} not found", {"taskId": task_id})
        return Task.from_document(doc)
