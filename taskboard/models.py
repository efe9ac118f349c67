from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

PRIORITIES = ("low", "medium", "high")
DEFAULT_COLOR = "blue"
DEFAULT_PRIORITY = "medium"


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


# === Domain objects persisted in the document store ===


@dataclass
class Column:
    id: str
    title: str
    task_ids: List[str] = field(default_factory=list)

    def to_document(self) -> Dict[str, Any]:
        return {"id": self.id, "title": self.title, "taskIds": list(self.task_ids)}

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Column":
        return cls(id=doc["id"], title=doc.get("title") or doc["id"], task_ids=list(doc.get("taskIds") or []))


def default_columns() -> List[Column]:
    return [
        Column(id="todo", title="To Do"),
        Column(id="in-progress", title="In Progress"),
        Column(id="done", title="Done"),
    ]


@dataclass
class Board:
    id: str
    title: str
    description: Optional[str]
    created_at: datetime
    updated_at: datetime
    columns: List[Column] = field(default_factory=list)
    is_shared: bool = True

    def column(self, column_id: str) -> Optional[Column]:
        for column in self.columns:
            if column.id == column_id:
                return column
        return None

    def columns_containing(self, task_id: str) -> List[Column]:
        return [c for c in self.columns if task_id in c.task_ids]

    def to_document(self) -> Dict[str, Any]:
        return {
            "_id": self.id,
            "title": self.title,
            "description": self.description,
            "isShared": self.is_shared,
            "columns": [c.to_document() for c in self.columns],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Board":
        return cls(
            id=doc["_id"],
            title=doc["title"],
            description=doc.get("description"),
            created_at=doc["createdAt"],
            updated_at=doc["updatedAt"],
            columns=[Column.from_document(c) for c in doc.get("columns") or []],
            is_shared=doc.get("isShared", True),
        )


@dataclass
class Task:
    id: str
    title: str
    board_id: str
    column_id: str
    created_at: datetime
    updated_at: datetime
    description: Optional[str] = None
    color: str = DEFAULT_COLOR
    priority: str = DEFAULT_PRIORITY
    due_date: Optional[datetime] = None
    is_shared: bool = True

    def to_document(self) -> Dict[str, Any]:
        return {
            "_id": self.id,
            "title": self.title,
            "description": self.description,
            "boardId": self.board_id,
            "columnId": self.column_id,
            "color": self.color,
            "priority": self.priority,
            "dueDate": self.due_date,
            "isShared": self.is_shared,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Task":
        return cls(
            id=doc["_id"],
            title=doc["title"],
            description=doc.get("description"),
            board_id=doc["boardId"],
            column_id=doc["columnId"],
            color=doc.get("color") or DEFAULT_COLOR,
            priority=doc.get("priority") or DEFAULT_PRIORITY,
            due_date=doc.get("dueDate"),
            is_shared=doc.get("isShared", True),
            created_at=doc["createdAt"],
            updated_at=doc["updatedAt"],
        )
