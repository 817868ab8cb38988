from enum import Enum


class ErrorCode(Enum):
    NOT_FOUND = "NOT_FOUND"
    VALIDATION = "VALIDATION"
    HIERARCHY_CYCLE = "HIERARCHY_CYCLE"
    DATABASE_ERROR = "DATABASE_ERROR"
    DEPENDENCY_ERROR = "DEPENDENCY_ERROR"


class TaskNestError(Exception):
    """Base exception for all tasknest errors."""
    pass

class RecoverableError(TaskNestError):
    """An error that can be recovered from without data loss."""
    pass

class FatalError(TaskNestError):
    """An error that requires application termination or major intervention."""
    pass

class CorruptionError(FatalError):
    """Corrupted Data Error - from syntax errors in data formats, to just unknown data"""
    pass

class FileOperationError(RecoverableError):
    """File operation failed but can be retried."""
    pass

class MigrationNeededError(RecoverableError):
    """ Data is valid, but was written by a newer schema """
    pass

class TaskError(RecoverableError):
    """A modeled failure of a task operation, tagged with an ErrorCode."""

    def __init__(self, message: str, code: ErrorCode = ErrorCode.VALIDATION):
        super().__init__(message)
        self.message = message
        self.code = code

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"

class HierarchyCycleError(TaskError):
    """A parent chain loops back onto itself."""

    def __init__(self, message: str, task_ids=None):
        super().__init__(message, ErrorCode.HIERARCHY_CYCLE)
        self.task_ids = list(task_ids or [])
