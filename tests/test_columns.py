from datetime import datetime, timezone

import pytest

from taskboard.columns import match_column, resolve_column
from taskboard.errors import NoColumns
from taskboard.models import Board, Column, default_columns


def make_board(*columns):
    now = datetime.now(timezone.utc)
    return Board(
        id="507f1f77bcf86cd799439011",
        title="Board",
        description=None,
        created_at=now,
        updated_at=now,
        columns=list(columns),
    )


def test_exact_id_wins():
    board = make_board(*default_columns())
    assert resolve_column(board, "in-progress") == "in-progress"


def test_case_insensitive_id_before_title():
    board = make_board(Column(id="todo", title="To Do"))
    assert resolve_column(board, "TODO") == "todo"


def test_id_match_beats_title_match_on_another_column():
    board = make_board(Column(id="done", title="Todo"), Column(id="todo", title="Done"))
    assert resolve_column(board, "TODO") == "todo"


def test_title_match_ignores_case():
    board = make_board(*default_columns())
    assert resolve_column(board, "in progress") == "in-progress"
    assert resolve_column(board, "To Do") == "todo"


def test_simple_word_tries_common_prefixes():
    board = make_board(Column(id="column-todo", title="Backlog"), Column(id="col-done", title="Finished"))
    assert resolve_column(board, "todo") == "column-todo"
    assert resolve_column(board, "done") == "col-done"


def test_prefixes_are_only_tried_for_lowercase_words():
    board = make_board(Column(id="column-1", title="Backlog"), Column(id="col-done", title="Finished"))
    assert resolve_column(board, "Done") == "column-1"


def test_unknown_column_falls_back_to_first():
    board = make_board(Column(id="todo", title="To Do"), Column(id="done", title="Done"))
    assert resolve_column(board, "backlog") == "todo"
    assert resolve_column(board, None) == "todo"


def test_board_without_columns_is_reported():
    with pytest.raises(NoColumns):
        resolve_column(make_board(), "todo")


def test_match_column_has_no_fallback():
    board = make_board(*default_columns())
    assert match_column(board, "backlog") is None
    assert match_column(board, "DONE").id == "done"
    assert match_column(board, "") is None
