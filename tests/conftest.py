"""Shared fixtures for tasknest tests."""

import pytest

from tasknest.config import Settings
from tasknest.data.store import MemoryTaskStore
from tasknest.models import CreateTaskOptions, Task
from tasknest.service import TaskService


def make_task(task_id, title=None, **fields):
    """Build a Task whose parent_id follows from its id unless given explicitly."""
    if "parent_id" not in fields:
        fields["parent_id"] = task_id.rsplit(".", 1)[0] if "." in task_id else None
    return Task(id=task_id, title=title or f"Task {task_id}", **fields)


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def store():
    return MemoryTaskStore()


@pytest.fixture
def service(store, settings):
    return TaskService(store, settings)


@pytest.fixture
def nested_store():
    """1, 2, 3 at root with 3.1, 3.2 and 3.2.1 below task 3."""
    return MemoryTaskStore([
        make_task("1", "Set up repository"),
        make_task("2", "Write onboarding guide"),
        make_task("3", "Build payment service"),
        make_task("3.1", "Design payment schema"),
        make_task("3.2", "Integrate card processor"),
        make_task("3.2.1", "Handle declined cards"),
    ])


def add(service, title, **options):
    """Create a task through the service, bypassing duplicate checks unless told otherwise."""
    options.setdefault("force", True)
    result = service.create_task(CreateTaskOptions(title=title, **options))
    assert result.success, result
    return result.data


def ids(store):
    return [t.id for t in store.get_all_tasks().unwrap()]
