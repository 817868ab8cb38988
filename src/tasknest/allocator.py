"""
Identifier allocation and renumbering.

Sibling ids are kept contiguous (1..n). Removing a task shifts every later
sibling down by one and rewrites the id prefix of everything below those
siblings, as one store transaction.
"""
from datetime import datetime
from typing import Dict, List, Optional

from .hierarchy import TaskHierarchy
from .logs import get_logger
from .models import Task, TaskId
from .recovery import ErrorCode, HierarchyCycleError, TaskError

log = get_logger("allocator")


def _group_of(task_id: str) -> Optional[str]:
    return TaskId(task_id).parent


def plan_reorder(removed_id: str, tasks: List[Task]) -> Dict[str, str]:
    """
    Compute the renames caused by removing removed_id.

    Args:
        removed_id: Id of the task that was (or will be) removed
        tasks: The remaining tasks; the removed task and its subtree may be included, they are ignored

    Returns:
        Mapping of old id to new id for every task that has to move. Empty when
        the removed task was the last of its siblings.

    Raises:
        TaskError: DEPENDENCY_ERROR if a descendant does not carry its ancestor's id prefix
    """
    removed = TaskId(removed_id)
    group = removed.parent
    remaining = [t for t in tasks if t.id != removed_id and not removed.is_prefix_of(t.task_id)]
    hierarchy = TaskHierarchy(remaining)

    later = sorted(
        (t for t in remaining if _group_of(t.id) == group and t.position > removed.position),
        key=lambda t: t.position,
    )

    plan: Dict[str, str] = {}
    for sibling in later:
        old_id = sibling.task_id
        new_id = old_id.with_position(old_id.position - 1)
        plan[sibling.id] = str(new_id)
        for descendant in hierarchy.get_descendants(sibling.id):
            try:
                plan[descendant.id] = str(descendant.task_id.replace_prefix(sibling.id, str(new_id)))
            except ValueError as e:
                raise TaskError(f"Cannot renumber {descendant.id} under {sibling.id}: {e}",
                                ErrorCode.DEPENDENCY_ERROR) from e
    return plan


def check_numbering(tasks: List[Task]) -> List[str]:
    """Describe every broken id/parent invariant in a task list; empty when consistent."""
    problems = []
    ids = [t.id for t in tasks]
    known = set(ids)

    seen = set()
    for task_id in ids:
        if task_id in seen:
            problems.append(f"Duplicate task id {task_id}")
        seen.add(task_id)

    groups: Dict[Optional[str], List[int]] = {}
    for task in tasks:
        implied = _group_of(task.id)
        if task.parent_id != implied:
            problems.append(f"Task {task.id} has parent {task.parent_id or 'none'} "
                            f"but its id implies {implied or 'none'}")
        if task.parent_id is not None and task.parent_id not in known:
            problems.append(f"Task {task.id} references missing parent {task.parent_id}")
        groups.setdefault(implied, []).append(task.position)

    for group in sorted(groups, key=lambda g: TaskId.sort_key(g) if g else ()):
        positions = sorted(set(groups[group]))
        expected = list(range(1, len(positions) + 1))
        if positions != expected:
            label = f"under {group}" if group else "at root"
            problems.append(f"Tasks {label} are numbered {positions}, expected {expected}")

    try:
        TaskHierarchy(tasks)
    except HierarchyCycleError as e:
        problems.append(e.message)

    return problems


class IdentifierAllocator:
    """Hands out new ids and repairs numbering after removals, reading current ids from the store."""

    def __init__(self, store):
        self.store = store

    def _tasks(self) -> List[Task]:
        return self.store.get_all_tasks().unwrap()

    def allocate(self, parent_id: Optional[str] = None) -> str:
        """
        Next free id in a sibling group.

        Raises:
            TaskError: NOT_FOUND when parent_id does not exist
        """
        tasks = self._tasks()
        if parent_id is not None and not any(t.id == parent_id for t in tasks):
            raise TaskError(f"Parent task with ID {parent_id} not found", ErrorCode.NOT_FOUND)

        positions = [t.position for t in tasks if _group_of(t.id) == parent_id]
        position = max(positions, default=0) + 1
        if parent_id is None:
            return str(position)
        return str(TaskId(parent_id).child(position))

    def plan_reorder(self, removed_id: str) -> Dict[str, str]:
        return plan_reorder(removed_id, self._tasks())

    def reorder_after_removal(self, removed_id: str) -> Dict[str, str]:
        """
        Close the gap left by removed_id.

        Returns:
            The applied old id -> new id mapping

        Raises:
            TaskError: DEPENDENCY_ERROR when any write fails; nothing is changed in that case
        """
        tasks = {t.id: t for t in self._tasks()}
        plan = plan_reorder(removed_id, list(tasks.values()))
        if not plan:
            log.debug(f"No renumbering needed after removing {removed_id}")
            return plan

        log.info(f"Renumbering {len(plan)} tasks after removing {removed_id}")
        now = datetime.now()
        try:
            with self.store.transaction():
                for old_id in plan:
                    result = self.store.remove_task(old_id)
                    if not result.success:
                        raise TaskError(f"Failed to move task {old_id}: {result.error.message}",
                                        ErrorCode.DEPENDENCY_ERROR)

                for old_id in sorted(plan, key=lambda i: TaskId.sort_key(plan[i])):
                    task = tasks[old_id]
                    renamed = task.model_copy(update={
                        "id": plan[old_id],
                        "parent_id": plan.get(task.parent_id, task.parent_id),
                        "updated_at": now,
                    })
                    result = self.store.create_task(renamed)
                    if not result.success:
                        raise TaskError(f"Failed to renumber {old_id} to {plan[old_id]}: {result.error.message}",
                                        ErrorCode.DEPENDENCY_ERROR)
        except TaskError as e:
            log.warning(f"Renumbering after removing {removed_id} rolled back: {e.message}")
            if e.code == ErrorCode.DEPENDENCY_ERROR:
                raise
            raise TaskError(e.message, ErrorCode.DEPENDENCY_ERROR) from e

        for old_id, new_id in plan.items():
            log.debug(f"Renumbered {old_id} -> {new_id}")
        return plan
