"""Column resolution.

Frontends of different vintages name columns differently (``"todo"``,
``"column-1"``, ``"To Do"``). :func:`resolve_column` maps whatever was sent onto
a column that actually exists on the board, trying in order:

1. exact id
2. id, ignoring case
3. title, ignoring case
4. for a plain lowercase word: ``column-<word>``, ``col-<word>``, ``<word>``
5. the board's first column
"""
from __future__ import annotations

import logging
import re
from typing import Optional

from .errors import NoColumns
from .models import Board, Column

logger = logging.getLogger(__name__)

_SIMPLE_TOKEN = re.compile(r"^[a-z]+$")


def match_column(board: Board, requested: Optional[str]) -> Optional[Column]:
    """Steps 1-4 of the fallback chain; ``None`` when nothing matches."""
    if not requested:
        return None
    for column in board.columns:
        if column.id == requested:
            return column
    lowered = requested.lower()
    for column in board.columns:
        if column.id.lower() == lowered:
            return column
    for column in board.columns:
        if column.title.lower() == lowered:
            return column
    if _SIMPLE_TOKEN.match(requested):
        formats = {f"column-{requested}", f"col-{requested}", requested}
        for column in board.columns:
            if column.id.lower() in formats:
                return column
    return None


def resolve_column(board: Board, requested: Optional[str]) -> str:
    """Return the id of the column ``requested`` refers to, or of the first column."""
    if not board.columns:
        raise NoColumns(f"board {board.id} has no columns", {"boardId": board.id})
    column = match_column(board, requested)
    if column is None:
        column = board.columns[0]
        logger.info("No column matches %r on board %s, using first column %r", requested, board.id, column.id)
    elif column.id != requested:
        logger.info("Resolved column %r to %r on board %s", requested, column.id, board.id)
    return column.id
