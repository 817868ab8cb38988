"""
Data management submodule: task stores, file I/O and plan-file validation.
"""

from .store import TaskStore, MemoryTaskStore, YAMLTaskStore
from .validate import PLAN_ENTRY_SCHEMA, PLAN_SCHEMA, load_plan_file, validate_plan, validate_plan_entry

__all__ = [
    'TaskStore',
    'MemoryTaskStore',
    'YAMLTaskStore',
    'PLAN_SCHEMA',
    'PLAN_ENTRY_SCHEMA',
    'load_plan_file',
    'validate_plan',
    'validate_plan_entry',
]
