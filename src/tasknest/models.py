from pydantic import BaseModel, Field, field_validator, model_validator
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar
import json
import re

from .recovery import ErrorCode, TaskError
from .version import APP_SCHEMA_VERSION

# Metadata keys that only ever live on search/duplicate results
TRANSIENT_METADATA_KEYS = ("similarityScore",)

MERGED_FROM = "mergedFrom"
MERGED_INTO = "mergedInto"
MERGED_AT = "mergedAt"

class TaskStatus(Enum):
    TODO = "todo"
    IN_PROGRESS = "in-progress"
    DONE = "done"

class TaskReadiness(Enum):
    DRAFT = "draft"
    READY = "ready"
    BLOCKED = "blocked"

class TaskId:
    """Utility class for parsing and validating dot-notation task ids."""

    ID_PATTERN = re.compile(r'^[1-9]\d*(?:\.[1-9]\d*)*$')

    def __init__(self, raw_id: str):
        self.raw_id = str(raw_id).strip() if raw_id is not None else ""
        self.segments: List[int] = []
        self._parse()

    def _parse(self):
        """Parse the id into integer segments."""
        if not self.ID_PATTERN.match(self.raw_id):
            raise ValueError(f"Invalid task id format: {self.raw_id!r}")
        self.segments = [int(s) for s in self.raw_id.split('.')]

    @classmethod
    def validate_id(cls, raw_id: str) -> bool:
        """Validate if an id string is properly formatted."""
        try:
            cls(raw_id)
            return True
        except ValueError:
            return False

    @classmethod
    def sort_key(cls, raw_id: str) -> tuple:
        """Numeric ordering key so that "2" sorts before "10" and "1" before "1.1"."""
        try:
            return tuple(cls(raw_id).segments)
        except ValueError:
            return (float('inf'), str(raw_id))

    @classmethod
    def from_segments(cls, segments: List[int]) -> 'TaskId':
        return cls('.'.join(str(s) for s in segments))

    @property
    def parent(self) -> Optional[str]:
        """The id of the parent, or None for a root id."""
        if len(self.segments) == 1:
            return None
        return '.'.join(str(s) for s in self.segments[:-1])

    @property
    def position(self) -> int:
        return self.segments[-1]

    @property
    def depth(self) -> int:
        return len(self.segments)

    def child(self, position: int) -> 'TaskId':
        return TaskId.from_segments(self.segments + [position])

    def with_position(self, position: int) -> 'TaskId':
        return TaskId.from_segments(self.segments[:-1] + [position])

    def is_prefix_of(self, other: 'TaskId') -> bool:
        """True when other lies strictly below this id."""
        return (len(other.segments) > len(self.segments)
                and other.segments[:len(self.segments)] == self.segments)

    def replace_prefix(self, old_prefix: str, new_prefix: str) -> 'TaskId':
        """Swap an ancestor prefix, keeping the remaining suffix."""
        old = TaskId(old_prefix)
        if old.segments == self.segments:
            return TaskId(new_prefix)
        if not old.is_prefix_of(self):
            raise ValueError(f"{old_prefix} is not a prefix of {self.raw_id}")
        return TaskId.from_segments(TaskId(new_prefix).segments + self.segments[len(old.segments):])

    def __eq__(self, other) -> bool:
        if isinstance(other, TaskId):
            return self.segments == other.segments
        if isinstance(other, str):
            return self.raw_id == other
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.raw_id)

    def __str__(self) -> str:
        return self.raw_id

    def __repr__(self) -> str:
        return f"TaskId({self.raw_id!r})"


def format_tags(tags: Optional[List[str]], empty: str = "none") -> str:
    """Render a tag list for display, with a placeholder for no tags."""
    if not tags:
        return empty
    return ", ".join(tags)

def safe_access(mapping: Optional[Dict[str, Any]], key: str, default: Any = None) -> Any:
    """Read a possibly nested value using dot notation ("a.b.c")."""
    value: Any = mapping
    for part in key.split('.'):
        if not isinstance(value, dict) or part not in value:
            return default
        value = value[part]
    return value

def strip_transient(metadata: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Copy of metadata without the transient result annotations."""
    return {k: v for k, v in (metadata or {}).items() if k not in TRANSIENT_METADATA_KEYS}

def unique_tags(tags: Optional[List[str]]) -> List[str]:
    """Deduplicate tags keeping the first occurrence of each."""
    seen = set()
    result = []
    for tag in tags or []:
        tag = str(tag).strip()
        if tag and tag not in seen:
            seen.add(tag)
            result.append(tag)
    return result

def _check_metadata(v):
    if v is None:
        return {}
    if not isinstance(v, dict):
        raise ValueError("metadata must be a mapping")
    try:
        json.dumps(v)
    except (TypeError, ValueError) as e:
        raise ValueError(f"metadata must be JSON-serializable: {e}")
    return dict(v)


class Task(BaseModel):
    id: str = Field(description="Dot-notation id encoding the ancestry, e.g. 3.2.1")
    title: str = Field(description="Short human readable title")
    description: Optional[str] = Field(default=None, description="Optional longer description")
    body: Optional[str] = Field(default=None, description="Optional free-form body text")
    status: TaskStatus = Field(default=TaskStatus.TODO, description="Work status")
    readiness: TaskReadiness = Field(default=TaskReadiness.DRAFT, description="Readiness of the task")
    tags: List[str] = Field(default_factory=list, description="Ordered set of tags")
    parent_id: Optional[str] = Field(default=None, description="Id of the parent task, null for roots")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="JSON-serializable key/value map")
    created_at: datetime = Field(default_factory=datetime.now, description="When the task was created")
    updated_at: datetime = Field(default_factory=datetime.now, description="When the task was last changed")

    @field_validator('id')
    @classmethod
    def validate_id(cls, v):
        if not TaskId.validate_id(v):
            raise ValueError(f"Invalid task id format: {v!r}")
        return v

    @field_validator('parent_id')
    @classmethod
    def validate_parent_id(cls, v):
        if v is not None and not TaskId.validate_id(v):
            raise ValueError(f"Invalid parent id format: {v!r}")
        return v

    @field_validator('title')
    @classmethod
    def validate_title(cls, v):
        if v is None or not str(v).strip():
            raise ValueError("title must not be empty")
        return str(v).strip()

    @field_validator('tags', mode='before')
    @classmethod
    def validate_tags(cls, v):
        return unique_tags(v)

    @field_validator('metadata', mode='before')
    @classmethod
    def validate_metadata(cls, v):
        return _check_metadata(v)

    @property
    def task_id(self) -> TaskId:
        return TaskId(self.id)

    @property
    def position(self) -> int:
        return self.task_id.position

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    @property
    def is_retired(self) -> bool:
        return MERGED_INTO in self.metadata

    def to_record(self) -> Dict[str, Any]:
        """Serialized form written by the stores; transient annotations are dropped."""
        record = self.model_dump(mode="json")
        record["metadata"] = strip_transient(record.get("metadata"))
        return record


class SimilarityResult(BaseModel):
    """Candidate task id paired with a similarity score. Never persisted."""

    id: str = Field(description="Id of the candidate task")
    title: str = Field(default="", description="Title of the candidate task")
    score: float = Field(ge=0.0, le=1.0, description="Similarity in [0, 1]")

    def to_public(self) -> Dict[str, Any]:
        return {"id": self.id, "title": self.title, "similarity": self.score}


class TaskErrorInfo(BaseModel):
    code: ErrorCode
    message: str

    @classmethod
    def from_exception(cls, error: TaskError) -> 'TaskErrorInfo':
        return cls(code=error.code, message=error.message)

    def to_exception(self) -> TaskError:
        return TaskError(self.message, self.code)


T = TypeVar('T')

class OperationResult(BaseModel, Generic[T]):
    """Uniform result shape returned by the store and the service."""

    success: bool
    data: Optional[T] = None
    error: Optional[TaskErrorInfo] = None
    warnings: List[str] = Field(default_factory=list)
    decision: Optional[str] = None
    candidates: List[SimilarityResult] = Field(default_factory=list)

    @classmethod
    def ok(cls, data=None, **kwargs) -> 'OperationResult':
        return cls(success=True, data=data, **kwargs)

    @classmethod
    def fail(cls, error: TaskError, **kwargs) -> 'OperationResult':
        return cls(success=False, error=TaskErrorInfo.from_exception(error), **kwargs)

    @property
    def code(self) -> Optional[ErrorCode]:
        return self.error.code if self.error else None

    def unwrap(self):
        """Return data, raising the carried TaskError when the operation failed."""
        if not self.success:
            if self.error:
                raise self.error.to_exception()
            raise TaskError("Operation did not succeed", ErrorCode.VALIDATION)
        return self.data


class CreateTaskOptions(BaseModel):
    title: str = Field(description="Title of the new task")
    description: Optional[str] = None
    body: Optional[str] = None
    status: Optional[TaskStatus] = None
    readiness: Optional[TaskReadiness] = None
    tags: List[str] = Field(default_factory=list)
    child_of: Optional[str] = Field(default=None, description="Create the task under this parent")
    after: Optional[str] = Field(default=None, description="Create the task as a sibling of this task")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    force: bool = Field(default=False, description="Create even when similar tasks exist")
    auto_merge: bool = Field(default=False, description="Merge into a high-confidence duplicate")

    @field_validator('title')
    @classmethod
    def validate_title(cls, v):
        if v is None or not str(v).strip():
            raise ValueError("title must not be empty")
        return str(v).strip()

    @field_validator('tags', mode='before')
    @classmethod
    def validate_tags(cls, v):
        return unique_tags(v)

    @field_validator('metadata', mode='before')
    @classmethod
    def validate_metadata(cls, v):
        return _check_metadata(v)

    @field_validator('child_of', 'after')
    @classmethod
    def validate_reference(cls, v):
        if v is not None and not TaskId.validate_id(v):
            raise ValueError(f"Invalid task id format: {v!r}")
        return v


class UpdateTaskOptions(BaseModel):
    id: str
    title: Optional[str] = None
    description: Optional[str] = None
    body: Optional[str] = None
    status: Optional[TaskStatus] = None
    readiness: Optional[TaskReadiness] = None
    tags: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None

    @field_validator('title')
    @classmethod
    def validate_title(cls, v):
        if v is not None and not str(v).strip():
            raise ValueError("title must not be empty")
        return v.strip() if v is not None else v

    @field_validator('tags', mode='before')
    @classmethod
    def validate_tags(cls, v):
        return None if v is None else unique_tags(v)

    @field_validator('metadata', mode='before')
    @classmethod
    def validate_metadata(cls, v):
        return None if v is None else _check_metadata(v)

    def changes(self) -> Dict[str, Any]:
        """Fields the caller actually supplied."""
        return {k: getattr(self, k) for k in self.model_fields_set
                if k != 'id' and getattr(self, k) is not None}


class SearchFilters(BaseModel):
    status: Optional[TaskStatus] = None
    readiness: Optional[TaskReadiness] = None
    tags: List[str] = Field(default_factory=list)
    query: str = ""


class PlanEntry(BaseModel):
    """One entry of a triage plan file; an id marks it as an update."""

    id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    readiness: Optional[TaskReadiness] = None
    tags: Optional[List[str]] = None
    child_of: Optional[str] = None
    after: Optional[str] = None
    force: bool = False
    metadata: Optional[Dict[str, Any]] = None

    @model_validator(mode='before')
    @classmethod
    def accept_aliases(cls, data):
        if isinstance(data, dict):
            data = dict(data)
            for alias in ('childOf', 'parentId', 'parent_id'):
                if alias in data and data.get('child_of') is None:
                    data['child_of'] = data.pop(alias)
                else:
                    data.pop(alias, None)
        return data

    @property
    def is_update(self) -> bool:
        return bool(self.id)

    def to_create_options(self, auto_merge: bool = False) -> CreateTaskOptions:
        return CreateTaskOptions(
            title=self.title or "",
            description=self.description,
            status=self.status,
            readiness=self.readiness,
            tags=self.tags or [],
            child_of=self.child_of,
            after=self.after,
            metadata=self.metadata or {},
            force=self.force,
            auto_merge=auto_merge,
        )

    def to_update_options(self) -> UpdateTaskOptions:
        fields = {k: getattr(self, k) for k in
                  ('title', 'description', 'status', 'readiness', 'tags', 'metadata')
                  if getattr(self, k) is not None}
        return UpdateTaskOptions(id=self.id, **fields)


class PlanFile(BaseModel):
    """A decoded plan; entries stay raw until each is validated on its own."""

    tasks: List[Dict[str, Any]] = Field(default_factory=list)


class TaskFile(BaseModel):
    """On-disk document holding every task of a project."""

    schema_version: str = Field(default=APP_SCHEMA_VERSION, description="Schema version the file was written with")
    tasks: List[Task] = Field(default_factory=list, description="Flat list of tasks")
