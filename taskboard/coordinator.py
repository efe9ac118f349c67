"""Board/task consistency.

A task's column lives in two places: ``Task.column_id`` and the ``taskIds``
list of that column on the owning board. The store only guarantees atomic
writes to a single document, so every operation here writes the two sides in
a fixed order and leaves anything a crash could break repairable by
:meth:`BoardTaskCoordinator.reconcile_board`. ``Task.column_id`` is the source
of truth; the board lists are an index over it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from .columns import match_column, resolve_column
from .errors import ConcurrentModification, NotFound, ValidationFailed
from .ids import normalize_id
from .models import Board, Column, Task
from .repositories import BoardDeletion, BoardRepository, TaskRepository

logger = logging.getLogger(__name__)

PLACEHOLDER_BOARD_TITLE = "Auto-created Board"
PLACEHOLDER_BOARD_DESCRIPTION = (
    "This board was automatically created because the original board ID was not found"
)


@dataclass
class TaskPlacement:
    task: Task
    board: Board
    placeholder_board: bool = False


@dataclass
class ReconcileReport:
    board_id: str
    removed: int = 0
    added: int = 0
    reassigned: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.removed or self.added or self.reassigned)


@dataclass
class BoardView:
    board: Board
    tasks: Dict[str, Task] = field(default_factory=dict)


class BoardTaskCoordinator:
    def __init__(
        self,
        boards: BoardRepository,
        tasks: TaskRepository,
        missing_board_policy: str = "placeholder",
        move_retries: int = 3,
    ) -> None:
        self.boards = boards
        self.tasks = tasks
        self.missing_board_policy = missing_board_policy
        self.move_retries = move_retries

    # === Boards ===

    async def create_board(
        self,
        title: str,
        description: Optional[str] = None,
        columns: Optional[Sequence[Column]] = None,
    ) -> Board:
        board = await self.boards.create(title, description, columns)
        logger.info("Created board %s with columns %s", board.id, [c.id for c in board.columns])
        return board

    async def get_board(self, board_id: Any) -> Board:
        return await self.boards.get(normalize_id(board_id, "boardId"))

    async def list_boards(self) -> List[Board]:
        return await self.boards.list()

    async def update_board(self, board_id: Any, fields: Dict[str, Any]) -> Board:
        """Merge ``fields`` into the board.

        A new column list keeps the ``taskIds`` each surviving column already
        had; tasks whose column disappeared are reassigned by reconciliation.
        """
        board_id = normalize_id(board_id, "boardId")
        fields = dict(fields)
        if "columns" not in fields or fields["columns"] is None:
            fields.pop("columns", None)
            return await self.boards.update(board_id, fields)
        current = await self.boards.get(board_id)
        existing = {c.id: c.task_ids for c in current.columns}
        fields["columns"] = [
            Column(id=c.id, title=c.title, task_ids=list(existing.get((c.id or "").strip(), [])))
            for c in fields["columns"]
        ]
        await self.boards.update(board_id, fields)
        report = await self.reconcile_board(board_id)
        if report.changed:
            logger.info("Column update on board %s required repairs: %s", board_id, report)
        return await self.boards.get(board_id)

    async def delete_board(self, board_id: Any) -> BoardDeletion:
        deletion = await self.boards.delete(normalize_id(board_id, "boardId"))
        logger.info("Deleted board %s and %d tasks", deletion.board.id, deletion.tasks_deleted)
        return deletion

    async def board_with_tasks(self, board_id: Any) -> BoardView:
        board = await self.get_board(board_id)
        tasks = await self.tasks.list_by_board(board.id)
        referenced = {tid for c in board.columns for tid in c.task_ids}
        return BoardView(board=board, tasks={t.id: t for t in tasks if t.id in referenced})

    # === Tasks ===

    async def _board_for_new_task(self, board_id: str) -> tuple[Board, bool]:
        board = await self.boards.find(board_id)
        if board is not None:
            return board, False
        if self.missing_board_policy != "placeholder":
            raise NotFound(f"board {board_id} not found", {"boardId": board_id})
        board = await self.boards.create(PLACEHOLDER_BOARD_TITLE, PLACEHOLDER_BOARD_DESCRIPTION)
        logger.warning("Board %s not found, created placeholder board %s for new task", board_id, board.id)
        return board, True

    async def create_task(
        self,
        title: Optional[str],
        board_id: Any,
        column_id: Optional[str],
        description: Optional[str] = None,
        color: Optional[str] = None,
        priority: Optional[str] = None,
        due_date: Optional[datetime] = None,
    ) -> TaskPlacement:
        if not title or not title.strip():
            raise ValidationFailed("task title is required")
        if board_id is None or board_id == "":
            raise ValidationFailed("board id is required")
        if not column_id:
            raise ValidationFailed("column id is required")
        board_id = normalize_id(board_id, "boardId")

        board, placeholder = await self._board_for_new_task(board_id)
        resolved = resolve_column(board, column_id)

        task = await self.tasks.create(
            title,
            board.id,
            resolved,
            description=description,
            color=color,
            priority=priority,
            due_date=due_date,
        )
        try:
            board = await self.boards.append_task_to_column(board.id, resolved, task.id)
        except NotFound:
            # Board vanished between the read and the write.
            await self.tasks.delete(task.id)
            raise
        logger.info("Created task %s in column %r of board %s", task.id, resolved, board.id)
        return TaskPlacement(task=task, board=board, placeholder_board=placeholder)

    async def get_task(self, task_id: Any) -> Task:
        return await self.tasks.get(normalize_id(task_id, "taskId"))

    async def list_tasks_for_board(self, board_id: Any) -> List[Task]:
        board_id = normalize_id(board_id, "boardId")
        if await self.boards.find(board_id) is None:
            return []
        return await self.tasks.list_by_board(board_id)

    async def update_task(self, task_id: Any, fields: Dict[str, Any]) -> Task:
        task_id = normalize_id(task_id, "taskId")
        fields = dict(fields)
        column_id = fields.pop("column_id", None)
        task = await self.tasks.get(task_id)
        # Reject bad fields before the move touches any board.
        self.tasks.validate(fields)
        if column_id is not None:
            task = await self.move_task(task_id, column_id)
        if fields:
            task = await self.tasks.update(task_id, fields)
        return task

    async def move_task(self, task_id: Any, new_column_id: Optional[str]) -> Task:
        """Move a task to another column of its board.

        The board lists are updated before the task. The task write only lands
        if the task is still in the column this call moved it out of; when a
        concurrent move got there first, the task's placement is repaired from
        its current ``column_id`` and the move is retried.
        """
        if not new_column_id:
            raise ValidationFailed("column id is required")
        task = await self.tasks.get(normalize_id(task_id, "taskId"))
        board = await self.boards.get(task.board_id)
        column = match_column(board, new_column_id)
        if column is None:
            raise ValidationFailed(
                f"board {board.id} has no column {new_column_id!r}",
                {"columnId": new_column_id, "columns": [c.id for c in board.columns]},
            )
        target = column.id

        for attempt in range(self.move_retries + 1):
            if task.column_id == target:
                return task
            source = task.column_id
            await self.boards.remove_task_from_column(board.id, source, task.id)
            await self.boards.append_task_to_column(board.id, target, task.id)
            moved = await self.tasks.set_column_if(task.id, source, target)
            if moved is not None:
                logger.info("Moved task %s from %r to %r on board %s", task.id, source, target, board.id)
                return moved

            logger.warning("Task %s changed column during move (attempt %d), repairing", task.id, attempt + 1)
            current = await self.tasks.find(task.id)
            if current is None:
                await self.boards.remove_task_from_column(board.id, target, task.id)
                raise NotFound(f"task {task.id} not found", {"taskId": task.id})
            await self._place(board.id, current)
            task = current

        raise ConcurrentModification(
            f"task {task.id} kept changing column, giving up after {self.move_retries + 1} attempts",
            {"taskId": task.id},
        )

    async def delete_task(self, task_id: Any) -> Task:
        task = await self.tasks.get(normalize_id(task_id, "taskId"))
        board = await self.boards.find(task.board_id)
        if board is None:
            logger.info("Board %s of task %s is already gone", task.board_id, task.id)
        else:
            column_ids = {task.column_id} | {c.id for c in board.columns_containing(task.id)}
            for column_id in sorted(column_ids):
                await self.boards.remove_task_from_column(board.id, column_id, task.id)
        deleted = await self.tasks.delete(task.id)
        logger.info("Deleted task %s", task.id)
        return deleted

    # === Repair ===

    async def _place(self, board_id: str, task: Task) -> Board:
        """Make ``task.column_id`` the only column on the board listing the task."""
        board = await self.boards.get(board_id)
        for column in board.columns_containing(task.id):
            if column.id != task.column_id:
                board = await self.boards.remove_task_from_column(board_id, column.id, task.id)
        return await self.boards.append_task_to_column(board_id, task.column_id, task.id)

    async def reconcile_board(self, board_id: Any) -> ReconcileReport:
        """Rebuild the board's ``taskIds`` lists from the tasks' own ``column_id``.

        Stale and duplicate ids are dropped, missing tasks are appended in
        creation order, and tasks pointing at a column the board does not have
        are reassigned through the column resolver.
        """
        board = await self.get_board(board_id)
        report = ReconcileReport(board_id=board.id)
        tasks = await self.tasks.list_by_board(board.id)
        column_ids = {c.id for c in board.columns}

        for i, task in enumerate(tasks):
            if task.column_id not in column_ids:
                target = resolve_column(board, task.column_id)
                logger.warning("Task %s names missing column %r, reassigning to %r", task.id, task.column_id, target)
                tasks[i] = await self.tasks.update(task.id, {"column_id": target})
                report.reassigned += 1

        by_id = {t.id: t for t in tasks}
        columns = []
        for column in board.columns:
            kept: List[str] = []
            for task_id in column.task_ids:
                task = by_id.get(task_id)
                if task is None or task.column_id != column.id or task_id in kept:
                    report.removed += 1
                    continue
                kept.append(task_id)
            missing = sorted(
                (t for t in tasks if t.column_id == column.id and t.id not in kept),
                key=lambda t: t.created_at,
            )
            kept.extend(t.id for t in missing)
            report.added += len(missing)
            columns.append(Column(id=column.id, title=column.title, task_ids=kept))

        if report.removed or report.added:
            await self.boards.update(board.id, {"columns": columns})
        if report.changed:
            logger.warning(
                "Reconciled board %s: removed=%d added=%d reassigned=%d",
                board.id, report.removed, report.added, report.reassigned,
            )
        return report
