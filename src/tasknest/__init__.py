"""
TaskNest - a hierarchical task tracker with duplicate detection.

Tasks form a strict tree addressed by dot-notation ids (3.2.1). New tasks are
checked against existing ones for near-duplicates, which can be skipped or
merged instead of created.
"""

from .version import VERSION, APP_SCHEMA_VERSION
from .models import (
    TaskStatus,
    TaskReadiness,
    TaskId,
    Task,
    OperationResult,
    CreateTaskOptions,
    UpdateTaskOptions,
)
from .recovery import ErrorCode, TaskError, HierarchyCycleError
from .config import Settings, load_settings
from .data import MemoryTaskStore, YAMLTaskStore
from .service import TaskService

__version__ = VERSION

__all__ = [
    "VERSION",
    "APP_SCHEMA_VERSION",
    "TaskStatus",
    "TaskReadiness",
    "TaskId",
    "Task",
    "OperationResult",
    "CreateTaskOptions",
    "UpdateTaskOptions",
    "ErrorCode",
    "TaskError",
    "HierarchyCycleError",
    "Settings",
    "load_settings",
    "MemoryTaskStore",
    "YAMLTaskStore",
    "TaskService",
]
