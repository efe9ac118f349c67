import anyio
import pytest
from fastapi.testclient import TestClient

from taskboard.config import Settings
from taskboard.coordinator import BoardTaskCoordinator
from taskboard.main import create_app
from taskboard.repositories import BoardRepository, TaskRepository
from taskboard.store import MemoryStore


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def store():
    store = MemoryStore()
    anyio.run(store.connect)
    return store


@pytest.fixture
def boards(store):
    return BoardRepository(store)


@pytest.fixture
def tasks(store):
    return TaskRepository(store)


@pytest.fixture
def coordinator(boards, tasks):
    return BoardTaskCoordinator(boards, tasks)


@pytest.fixture
def settings():
    return Settings(_env_file=None, STORE_BACKEND="memory")


@pytest.fixture
def client(settings, store):
    with TestClient(create_app(settings, store)) as client:
        yield client


@pytest.fixture
def check_invariant(boards, tasks):
    """Assert the board's column lists and its tasks' column ids agree."""

    async def check(board_id):
        board = await boards.get(board_id)
        board_tasks = {t.id: t for t in await tasks.list_by_board(board_id)}
        for column in board.columns:
            assert len(column.task_ids) == len(set(column.task_ids)), column
            for task_id in column.task_ids:
                assert task_id in board_tasks, f"{task_id} listed in {column.id} but missing"
                assert board_tasks[task_id].column_id == column.id
        for task in board_tasks.values():
            holders = [c.id for c in board.columns if task.id in c.task_ids]
            assert holders == [task.column_id], f"{task.id} held by {holders}"
        return board

    return check
