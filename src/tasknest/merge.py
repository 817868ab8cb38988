"""
Merging a duplicate task into the task it duplicates.

The target absorbs the source's tags and metadata; the source is kept but
retired (done, blocked, pointing at the target).
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from .hierarchy import TaskHierarchy
from .logs import get_logger
from .models import (
    MERGED_AT,
    MERGED_FROM,
    MERGED_INTO,
    CreateTaskOptions,
    Task,
    TaskReadiness,
    TaskStatus,
    strip_transient,
    unique_tags,
)
from .recovery import ErrorCode, TaskError

log = get_logger("merge")


def merged_tags(target_tags: List[str], source_tags: List[str]) -> List[str]:
    return unique_tags(list(target_tags) + list(source_tags))


def merged_metadata(source: Dict[str, Any], target: Dict[str, Any], merged_from: str, merged_at: str) -> Dict[str, Any]:
    """Target wins on conflicting keys; merge markers are added last."""
    metadata = {**strip_transient(source), **strip_transient(target)}
    metadata[MERGED_FROM] = merged_from
    metadata[MERGED_AT] = merged_at
    return metadata


class MergeExecutor:
    def __init__(self, store):
        self.store = store

    def _get(self, task_id: str) -> Task:
        return self.store.get_task(task_id).unwrap()

    def _absorb(self, target: Task, tags: List[str], metadata: Dict[str, Any], merged_from: str,
                now: datetime, status: Optional[TaskStatus], readiness: Optional[TaskReadiness]) -> Task:
        update: Dict[str, Any] = {
            "tags": merged_tags(target.tags, tags),
            "metadata": merged_metadata(metadata, target.metadata, merged_from, now.isoformat()),
            "updated_at": now,
        }
        if status is not None:
            update["status"] = status
        if readiness is not None:
            update["readiness"] = readiness
        return target.model_copy(update=update)

    def merge(self, source_id: str, target_id: str, status: Optional[TaskStatus] = None,
              readiness: Optional[TaskReadiness] = None) -> Task:
        """
        Merge source into target and retire the source.

        Both writes are made in one transaction.

        Returns:
            The updated target

        Raises:
            TaskError: NOT_FOUND for unknown ids, VALIDATION when merging a task
                into itself or one of its descendants, DATABASE_ERROR when a write fails
        """
        if source_id == target_id:
            raise TaskError(f"Cannot merge task {source_id} into itself", ErrorCode.VALIDATION)

        source = self._get(source_id)
        target = self._get(target_id)
        hierarchy = TaskHierarchy(self.store.get_all_tasks().unwrap())
        if hierarchy.is_descendant_of(target_id, source_id):
            raise TaskError(f"Cannot merge task {source_id} into its descendant {target_id}", ErrorCode.VALIDATION)
        if source.is_retired:
            raise TaskError(f"Task {source_id} was already merged into {source.metadata[MERGED_INTO]}",
                            ErrorCode.VALIDATION)

        now = datetime.now()
        updated_target = self._absorb(target, source.tags, source.metadata, source.id, now, status, readiness)

        retired_metadata = strip_transient(source.metadata)
        retired_metadata[MERGED_INTO] = target.id
        retired_metadata[MERGED_AT] = now.isoformat()
        retired_source = source.model_copy(update={
            "status": TaskStatus.DONE,
            "readiness": TaskReadiness.BLOCKED,
            "metadata": retired_metadata,
            "updated_at": now,
        })

        with self.store.transaction():
            saved = self.store.update_task(updated_target).unwrap()
            self.store.update_task(retired_source).unwrap()

        log.info(f"Merged task {source_id} into {target_id}")
        return saved

    def merge_new(self, options: CreateTaskOptions, target_id: str, status: Optional[TaskStatus] = None,
                  readiness: Optional[TaskReadiness] = None) -> Task:
        """
        Fold a create request into an existing task instead of creating it.

        ``mergedFrom`` records the request's title since it never had an id.
        """
        target = self._get(target_id)
        now = datetime.now()
        updated_target = self._absorb(target, options.tags, options.metadata, options.title, now, status, readiness)
        saved = self.store.update_task(updated_target).unwrap()
        log.info(f"Merged new task '{options.title}' into {target_id}")
        return saved
