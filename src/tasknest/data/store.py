"""
Task stores - the keyed record store the core reads from and writes to.

Every operation returns an OperationResult; storage failures are reported as
DATABASE_ERROR results instead of being raised. ``transaction()`` groups
several writes so that they are persisted together or not at all.
"""
import abc
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from packaging import version
from pydantic import ValidationError

from tasknest.logs import get_logger
from tasknest.models import OperationResult, Task, TaskFile, TaskId
from tasknest.recovery import (
    CorruptionError,
    ErrorCode,
    MigrationNeededError,
    TaskError,
    TaskNestError,
)
from tasknest.version import APP_SCHEMA_VERSION
from .io import DATA_YAML, atomic_write, load_yaml_file

log = get_logger("data.store")


def _clone(task: Task) -> Task:
    # Round-trip through the record form: copies and drops transient metadata
    return Task.model_validate(task.to_record())


class TaskStore(abc.ABC):
    """Base class holding tasks in memory; subclasses decide how they are persisted."""

    def __init__(self):
        self._tasks: Dict[str, Task] = {}
        self._transaction_depth = 0

    @abc.abstractmethod
    def _persist(self):
        """Write the current state to the backing medium."""
        pass

    def _commit(self):
        if self._transaction_depth == 0:
            self._persist()

    def _ordered(self) -> List[Task]:
        return [self._tasks[key] for key in sorted(self._tasks, key=TaskId.sort_key)]

    @contextmanager
    def transaction(self) -> Iterator['TaskStore']:
        """
        Apply all writes made inside the block atomically.

        On any exception the in-memory state is restored and nothing is
        persisted. Nested transactions join the outermost one.
        """
        snapshot = dict(self._tasks)
        self._transaction_depth += 1
        try:
            yield self
        except BaseException:
            self._tasks = snapshot
            raise
        finally:
            self._transaction_depth -= 1

        if self._transaction_depth == 0:
            try:
                self._persist()
            except TaskNestError as e:
                self._tasks = snapshot
                raise TaskError(f"Could not persist transaction: {e}", ErrorCode.DATABASE_ERROR) from e

    def _write(self, fn, *args) -> OperationResult:
        snapshot = dict(self._tasks)
        try:
            data = fn(*args)
            self._commit()
            return OperationResult.ok(data)
        except TaskError as e:
            self._tasks = snapshot
            return OperationResult.fail(e)
        except (TaskNestError, OSError) as e:
            self._tasks = snapshot
            log.error(f"Storage failure: {e}")
            return OperationResult.fail(TaskError(str(e), ErrorCode.DATABASE_ERROR))

    def get_task(self, task_id: str) -> OperationResult:
        task = self._tasks.get(task_id)
        if task is None:
            return OperationResult.fail(TaskError(f"Task with ID {task_id} not found", ErrorCode.NOT_FOUND))
        return OperationResult.ok(_clone(task))

    def get_all_tasks(self) -> OperationResult:
        """Every task, in numeric id order."""
        return OperationResult.ok([_clone(t) for t in self._ordered()])

    def get_child_tasks(self, parent_id: Optional[str]) -> OperationResult:
        """Direct children of parent_id; roots when parent_id is None."""
        return OperationResult.ok([_clone(t) for t in self._ordered() if t.parent_id == parent_id])

    def create_task(self, task: Task) -> OperationResult:
        return self._write(self._insert, task)

    def update_task(self, task: Task) -> OperationResult:
        return self._write(self._replace, task)

    def remove_task(self, task_id: str) -> OperationResult:
        return self._write(self._delete, task_id)

    def _insert(self, task: Task) -> Task:
        if task.id in self._tasks:
            raise TaskError(f"Task with ID {task.id} already exists", ErrorCode.DATABASE_ERROR)
        stored = _clone(task)
        self._tasks[stored.id] = stored
        return _clone(stored)

    def _replace(self, task: Task) -> Task:
        if task.id not in self._tasks:
            raise TaskError(f"Task with ID {task.id} not found", ErrorCode.NOT_FOUND)
        stored = _clone(task)
        self._tasks[stored.id] = stored
        return _clone(stored)

    def _delete(self, task_id: str) -> bool:
        if task_id not in self._tasks:
            raise TaskError(f"Task with ID {task_id} not found", ErrorCode.NOT_FOUND)
        del self._tasks[task_id]
        return True

    def __len__(self) -> int:
        return len(self._tasks)


class MemoryTaskStore(TaskStore):
    """Store that lives only as long as the process."""

    def __init__(self, tasks: Optional[List[Task]] = None):
        super().__init__()
        for task in tasks or []:
            self._tasks[task.id] = _clone(task)

    def _persist(self):
        pass


class YAMLTaskStore(TaskStore):
    """Store backed by a single YAML document (``tasks.yml``)."""

    def __init__(self, file_path: Union[Path, str]):
        super().__init__()
        self.file_path = Path(file_path)
        self.schema_version = APP_SCHEMA_VERSION
        self._load()

    @classmethod
    def initialize(cls, file_path: Union[Path, str]) -> 'YAMLTaskStore':
        """Create an empty task file (and its directory) and open it."""
        file_path = Path(file_path)
        atomic_write(DATA_YAML, file_path, TaskFile().model_dump(mode="json"), create_dirs=True)
        log.info(f"Initialized task file {file_path}")
        return cls(file_path)

    def _load(self):
        data = load_yaml_file(self.file_path)
        if data is None:
            log.debug(f"No task file at {self.file_path}; starting empty")
            return

        file_version = str(data.get("schema_version", "0.0.0"))
        try:
            if version.parse(file_version) > version.parse(APP_SCHEMA_VERSION):
                raise MigrationNeededError(
                    f"{self.file_path} was written with schema {file_version}, "
                    f"this version of tasknest understands {APP_SCHEMA_VERSION}"
                )
        except version.InvalidVersion as e:
            raise CorruptionError(f"Invalid schema version {file_version!r} in {self.file_path}") from e

        if file_version != APP_SCHEMA_VERSION:
            log.info(f"Upgrading {self.file_path} from schema {file_version} on next write")

        try:
            task_file = TaskFile.model_validate({**data, "schema_version": APP_SCHEMA_VERSION})
        except ValidationError as e:
            raise CorruptionError(f"Invalid task data in {self.file_path}: {e}") from e

        for task in task_file.tasks:
            if task.id in self._tasks:
                raise CorruptionError(f"Duplicate task id {task.id} in {self.file_path}")
            self._tasks[task.id] = task
        log.debug(f"Loaded {len(self._tasks)} tasks from {self.file_path}")

    def _persist(self):
        document = {
            "schema_version": APP_SCHEMA_VERSION,
            "tasks": [task.to_record() for task in self._ordered()],
        }
        atomic_write(DATA_YAML, self.file_path, document, create_dirs=True)
