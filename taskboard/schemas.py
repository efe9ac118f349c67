from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional, Union

from pydantic import BaseModel, Field


class ErrorEnvelope(BaseModel):
    code: str
    message: str
    details: Optional[dict[str, Any]] = None
    requestId: Optional[str] = None


class ErrorResponse(BaseModel):
    error: ErrorEnvelope


class Health(BaseModel):
    status: str = "ok"
    timestamp: datetime


class DbStatus(BaseModel):
    connected: bool
    backend: str


# === Boards ===


class ColumnIn(BaseModel):
    id: str = Field(min_length=1, max_length=80)
    title: Optional[str] = Field(default=None, max_length=80)


class ColumnOut(BaseModel):
    id: str
    title: str
    taskIds: list[str]


class BoardCreate(BaseModel):
    title: Optional[str] = Field(default=None, max_length=140)
    description: Optional[str] = Field(default=None, max_length=2000)
    columns: Optional[list[ColumnIn]] = None


class BoardUpdate(BaseModel):
    title: Optional[str] = Field(default=None, max_length=140)
    description: Optional[str] = Field(default=None, max_length=2000)
    columns: Optional[list[ColumnIn]] = None


class BoardOut(BaseModel):
    id: str
    title: str
    description: Optional[str]
    isShared: bool
    columns: list[ColumnOut]
    createdAt: datetime
    updatedAt: datetime


class BoardSummary(BaseModel):
    id: str
    title: str


class BoardDeleted(BaseModel):
    message: str
    board: BoardSummary
    tasksDeletedCount: int


class ReconcileOut(BaseModel):
    boardId: str
    removed: int
    added: int
    reassigned: int


# === Tasks ===


class TaskCreate(BaseModel):
    title: Optional[str] = Field(default=None, max_length=200)
    text: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = Field(default=None, max_length=8000)
    boardId: Optional[str] = None
    columnId: Optional[str] = None
    color: Optional[str] = None
    priority: Optional[str] = None
    dueDate: Optional[datetime] = None


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = Field(default=None, max_length=8000)
    columnId: Optional[str] = None
    color: Optional[str] = None
    priority: Optional[str] = None
    dueDate: Optional[datetime] = None


class TaskMove(BaseModel):
    columnId: Optional[str] = None


class TaskOut(BaseModel):
    id: str
    title: str
    description: Optional[str]
    boardId: str
    columnId: str
    color: str
    priority: str
    dueDate: Optional[datetime]
    isShared: bool
    createdAt: datetime
    updatedAt: datetime


class TaskCreated(BaseModel):
    task: TaskOut
    board: BoardOut
    placeholderBoard: bool


class TaskDeleted(BaseModel):
    message: str
    id: str


class TaskStub(BaseModel):
    id: str


class ColumnWithTasks(ColumnOut):
    tasks: list[Union[TaskOut, TaskStub]]


class BoardWithTasksOut(BaseModel):
    id: str
    title: str
    description: Optional[str]
    isShared: bool
    columns: List[ColumnWithTasks]
    createdAt: datetime
    updatedAt: datetime


class BoardWithTasks(BaseModel):
    board: BoardWithTasksOut
    taskCount: int
