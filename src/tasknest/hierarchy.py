"""
Parent/child structure over a flat list of tasks.

The hierarchy is always derived from ``parent_id`` back-references; it holds
no state of its own beyond the task list it was built from.
"""
from typing import Dict, Iterator, List, Optional, Tuple

from pydantic import BaseModel, Field

from .logs import get_logger
from .models import Task, TaskId
from .recovery import ErrorCode, HierarchyCycleError, TaskError

log = get_logger("hierarchy")


class TaskNode(BaseModel):
    """A task together with its (recursively nested) children."""

    task: Task = Field(description="The task at this node")
    children: List['TaskNode'] = Field(default_factory=list, description="Child nodes in id order")

    def walk(self, depth: int = 0) -> Iterator[Tuple[int, Task]]:
        """Pre-order traversal yielding (depth, task)."""
        yield depth, self.task
        for child in self.children:
            yield from child.walk(depth + 1)


TaskNode.model_rebuild()


def _by_id(tasks: List[Task]) -> List[Task]:
    return sorted(tasks, key=lambda t: TaskId.sort_key(t.id))


class TaskHierarchy:
    """Read-only parent/child queries over a snapshot of tasks."""

    def __init__(self, tasks: List[Task]):
        self.tasks: Dict[str, Task] = {}
        for task in tasks:
            self.tasks[task.id] = task

        self._children: Dict[Optional[str], List[Task]] = {}
        self.dangling: List[str] = []
        for task in self.tasks.values():
            parent_id = task.parent_id
            if parent_id is not None and parent_id not in self.tasks:
                log.warning(f"Task {task.id} references missing parent {parent_id}; treating it as a root")
                self.dangling.append(task.id)
            self._children.setdefault(parent_id, []).append(task)

        for key in self._children:
            self._children[key] = _by_id(self._children[key])

        self._check_cycles()

    def _check_cycles(self):
        clean = set()
        for task_id in self.tasks:
            chain = []
            seen = set()
            current: Optional[str] = task_id
            while current is not None and current in self.tasks and current not in clean:
                if current in seen:
                    loop = chain[chain.index(current):]
                    raise HierarchyCycleError(f"Parent chain loops: {' -> '.join(loop + [current])}", loop)
                seen.add(current)
                chain.append(current)
                current = self.tasks[current].parent_id
            clean.update(chain)

    def _require(self, task_id: str) -> Task:
        task = self.tasks.get(task_id)
        if task is None:
            raise TaskError(f"Task with ID {task_id} not found", ErrorCode.NOT_FOUND)
        return task

    def get(self, task_id: str) -> Optional[Task]:
        return self.tasks.get(task_id)

    def __contains__(self, task_id) -> bool:
        return task_id in self.tasks

    def roots(self) -> List[Task]:
        """Tasks with no parent, plus tasks whose parent no longer exists."""
        top = list(self._children.get(None, []))
        top.extend(self.tasks[i] for i in self.dangling)
        return _by_id(top)

    def get_children(self, task_id: str) -> List[Task]:
        self._require(task_id)
        return list(self._children.get(task_id, []))

    def get_descendants(self, task_id: str) -> List[Task]:
        """Every task below task_id, each exactly once, in pre-order."""
        self._require(task_id)
        result = []
        seen = set()
        stack = list(reversed(self._children.get(task_id, [])))
        while stack:
            task = stack.pop()
            if task.id in seen:
                continue
            seen.add(task.id)
            result.append(task)
            stack.extend(reversed(self._children.get(task.id, [])))
        return result

    def get_siblings(self, task_id: str) -> List[Task]:
        """Tasks sharing task_id's parent (roots share the root group), excluding the task itself."""
        task = self._require(task_id)
        return [t for t in self._children.get(task.parent_id, []) if t.id != task_id]

    def get_ancestors(self, task_id: str) -> List[Task]:
        """Ancestors of task_id from the root down to its parent."""
        task = self._require(task_id)
        ancestors = []
        current = task.parent_id
        while current is not None and current in self.tasks:
            parent = self.tasks[current]
            ancestors.append(parent)
            current = parent.parent_id
        ancestors.reverse()
        return ancestors

    def is_descendant_of(self, candidate_id: str, ancestor_id: str) -> bool:
        self._require(ancestor_id)
        return any(t.id == ancestor_id for t in self.get_ancestors(candidate_id))

    def is_sibling_of(self, task_id: str, other_id: str) -> bool:
        task = self._require(task_id)
        other = self._require(other_id)
        return task.id != other.id and task.parent_id == other.parent_id

    def _node(self, task: Task) -> TaskNode:
        return TaskNode(task=task, children=[self._node(c) for c in self._children.get(task.id, [])])

    def build(self) -> List[TaskNode]:
        return [self._node(task) for task in self.roots()]


def build_hierarchy(tasks: List[Task]) -> List[TaskNode]:
    """
    Arrange a flat task list into trees.

    Children are attached under their parent in numeric id order. Tasks whose
    parent is missing become roots (a warning is logged).

    Raises:
        HierarchyCycleError: a parent chain loops back on itself
    """
    return TaskHierarchy(tasks).build()
