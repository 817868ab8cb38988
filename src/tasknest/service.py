"""
TaskService - the operations the CLI and triage build on.

Every call reads the current tasks from the store it was given; nothing is
cached between calls. Modeled failures come back as failed OperationResults.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from .allocator import IdentifierAllocator, check_numbering
from .config import Settings
from .dedup import Decision, DuplicateGroup, DuplicateResolver
from .hierarchy import TaskHierarchy
from .logs import get_logger
from .merge import MergeExecutor
from .models import (
    TRANSIENT_METADATA_KEYS,
    CreateTaskOptions,
    OperationResult,
    SearchFilters,
    Task,
    TaskId,
    TaskReadiness,
    TaskStatus,
    UpdateTaskOptions,
    safe_access,
)
from .nlp import expand_with_synonyms, extract_search_filters, jaccard_similarity, ordered_tokens, stem_tokens
from .recovery import ErrorCode, TaskError

log = get_logger("service")

METADATA_OPERATIONS = ("set", "remove", "append")

_MISSING = object()


def _split_key(key: str) -> List[str]:
    parts = str(key).split('.')
    if any(not p for p in parts):
        raise TaskError(f"Invalid metadata key {key!r}", ErrorCode.VALIDATION)
    if parts[0] in TRANSIENT_METADATA_KEYS:
        raise TaskError(f"Metadata key {parts[0]} is reserved for search results", ErrorCode.VALIDATION)
    return parts


class TaskService:
    def __init__(self, store, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or Settings()
        self.allocator = IdentifierAllocator(store)
        self.resolver = DuplicateResolver(self.settings)
        self.merger = MergeExecutor(store)

    def _tasks(self) -> List[Task]:
        return self.store.get_all_tasks().unwrap()

    def _hierarchy(self) -> TaskHierarchy:
        return TaskHierarchy(self._tasks())

    # --- reading ---

    def get_task(self, task_id: str) -> OperationResult:
        return self.store.get_task(task_id)

    def list_tasks(self, filters: Optional[SearchFilters] = None, include_retired: bool = True) -> OperationResult:
        """All tasks in id order, optionally narrowed by status, readiness and tags."""
        result = self.store.get_all_tasks()
        if not result.success:
            return result
        tasks = result.data
        if filters is not None:
            tasks = [t for t in tasks if self._matches(t, filters)]
        if not include_retired:
            tasks = [t for t in tasks if not t.is_retired]
        return OperationResult.ok(tasks)

    @staticmethod
    def _matches(task: Task, filters: SearchFilters) -> bool:
        if filters.status is not None and task.status != filters.status:
            return False
        if filters.readiness is not None and task.readiness != filters.readiness:
            return False
        return all(tag in task.tags for tag in filters.tags)

    def build_hierarchy(self) -> OperationResult:
        try:
            return OperationResult.ok(self._hierarchy().build())
        except TaskError as e:
            log.error(f"Cannot build task tree: {e}")
            return OperationResult.fail(e)

    def get_descendants(self, task_id: str) -> List[Task]:
        """
        Every task below task_id.

        Raises:
            TaskError: NOT_FOUND for an unknown id
        """
        return self._hierarchy().get_descendants(task_id)

    def get_next_tasks(self, count: int = 1) -> List[Task]:
        """Ready, not yet started tasks in id order."""
        tasks = [t for t in self._tasks()
                 if t.status == TaskStatus.TODO and t.readiness == TaskReadiness.READY and not t.is_retired]
        return tasks[:max(count, 0)]

    # --- creating and changing ---

    def _placement(self, options: CreateTaskOptions, tasks: List[Task]) -> Optional[str]:
        known = {t.id for t in tasks}
        if options.child_of and options.after:
            raise TaskError("Use either child_of or after, not both", ErrorCode.VALIDATION)
        if options.child_of:
            if options.child_of not in known:
                raise TaskError(f"Parent task with ID {options.child_of} not found", ErrorCode.NOT_FOUND)
            return options.child_of
        if options.after:
            if options.after not in known:
                raise TaskError(f"Task with ID {options.after} not found", ErrorCode.NOT_FOUND)
            return TaskId(options.after).parent
        return None

    def create_task(self, options: CreateTaskOptions, interactive: bool = False) -> OperationResult:
        """
        Create a task unless it duplicates an existing one.

        The result's ``decision`` says what happened: ``create``, ``merge``
        (data is the task the request was folded into), or ``skip``/``prompt``
        (unsuccessful, with the competing ``candidates``).
        """
        try:
            tasks = self._tasks()
            parent_id = self._placement(options, tasks)
            resolution = self.resolver.resolve(options.title, tasks, force=options.force,
                                               auto_merge=options.auto_merge, interactive=interactive)
            candidates = resolution.candidates

            if resolution.decision == Decision.MERGE:
                target = self.merger.merge_new(options, resolution.target.id, options.status, options.readiness)
                return OperationResult.ok(target, decision=Decision.MERGE.value, candidates=candidates,
                                          warnings=resolution.warnings)

            if resolution.decision in (Decision.SKIP, Decision.PROMPT):
                best = resolution.best
                message = (f"Similar task already exists: {best.id} '{best.title}' "
                           f"(similarity {best.score:.2f}); use force to create anyway")
                return OperationResult(success=False, decision=resolution.decision.value,
                                       candidates=candidates, warnings=[message])

            now = datetime.now()
            task = Task(
                id=self.allocator.allocate(parent_id),
                title=options.title,
                description=options.description,
                body=options.body,
                status=options.status or TaskStatus.TODO,
                readiness=options.readiness or TaskReadiness.DRAFT,
                tags=options.tags,
                parent_id=parent_id,
                metadata=options.metadata,
                created_at=now,
                updated_at=now,
            )
            created = self.store.create_task(task)
            if not created.success:
                return created
            log.info(f"Created task {task.id}: {task.title}")
            return OperationResult.ok(created.data, decision=Decision.CREATE.value, candidates=candidates,
                                      warnings=resolution.warnings)
        except TaskError as e:
            log.warning(f"Create failed: {e}")
            return OperationResult.fail(e)

    def update_task(self, options: UpdateTaskOptions) -> OperationResult:
        """Apply the supplied fields; metadata keys are merged into the existing metadata."""
        current = self.store.get_task(options.id)
        if not current.success:
            return current

        task = current.data
        changes = options.changes()
        if "metadata" in changes:
            changes["metadata"] = {**task.metadata, **changes["metadata"]}
        if not changes:
            return OperationResult.ok(task, warnings=["Nothing to update"])

        changes["updated_at"] = datetime.now()
        result = self.store.update_task(task.model_copy(update=changes))
        if result.success:
            log.info(f"Updated task {task.id}: {', '.join(k for k in changes if k != 'updated_at')}")
        return result

    def remove_task(self, task_id: str, with_children: bool = False) -> bool:
        """
        Remove a task and close the gap in its sibling numbering.

        Returns False (and logs a warning) when the task does not exist, when
        it has children and ``with_children`` is not set, or when the
        renumbering fails; in the last case nothing is removed.
        """
        try:
            hierarchy = self._hierarchy()
            children = hierarchy.get_children(task_id)
            if children and not with_children:
                log.warning(f"Task {task_id} has {len(children)} subtasks; remove them first or pass with_children")
                return False

            descendants = hierarchy.get_descendants(task_id)
            with self.store.transaction():
                for descendant in reversed(descendants):
                    self.store.remove_task(descendant.id).unwrap()
                self.store.remove_task(task_id).unwrap()
                self.allocator.reorder_after_removal(task_id)
        except TaskError as e:
            log.warning(f"Could not remove task {task_id}: {e}")
            return False

        log.info(f"Removed task {task_id}" + (f" and {len(descendants)} subtasks" if descendants else ""))
        return True

    def merge_tasks(self, source_id: str, target_id: str, status: Optional[TaskStatus] = None,
                    readiness: Optional[TaskReadiness] = None) -> OperationResult:
        try:
            return OperationResult.ok(self.merger.merge(source_id, target_id, status, readiness),
                                      decision=Decision.MERGE.value)
        except TaskError as e:
            log.warning(f"Merge of {source_id} into {target_id} failed: {e}")
            return OperationResult.fail(e)

    # --- similarity ---

    def find_similar_tasks(self, title: str, threshold: Optional[float] = None) -> List[Dict[str, Any]]:
        """Tasks resembling title as ``{id, title, similarity}``, most similar first."""
        if threshold is None:
            threshold = self.settings.search_threshold
        return [r.to_public() for r in self.resolver.find_candidates(title, self._tasks(), threshold)]

    def find_duplicate_groups(self, min_similarity: Optional[float] = None) -> List[DuplicateGroup]:
        """Groups of live (not yet merged) tasks that look alike."""
        tasks = [t for t in self._tasks() if not t.is_retired]
        return self.resolver.find_duplicate_groups(tasks, min_similarity)

    def search(self, query: str, threshold: Optional[float] = None) -> List[Task]:
        """
        Free-text search.

        Status and readiness words in the query become filters. The rest is
        ranked by similarity; tasks sharing a stemmed word or synonym with the
        query follow the ranked ones. Each returned task carries its score in
        ``metadata.similarityScore``.
        """
        if threshold is None:
            threshold = self.settings.search_threshold

        filters = extract_search_filters(query)
        pool = [t for t in self._tasks() if self._matches(t, filters)]
        text = filters.query
        if not text:
            return pool

        ranked = self.resolver.find_candidates(text, pool, threshold)
        scores = {r.id: r.score for r in ranked}

        terms = set(stem_tokens(expand_with_synonyms(text)))
        keyword_hits = []
        for task in pool:
            if task.id in scores:
                continue
            words = set(stem_tokens(ordered_tokens(f"{task.title} {task.description or ''}")))
            if terms & words:
                keyword_hits.append((task.id, jaccard_similarity(terms, words)))
        keyword_hits.sort(key=lambda hit: hit[1], reverse=True)

        by_id = {t.id: t for t in pool}
        results = []
        for task_id, score in [(r.id, r.score) for r in ranked] + keyword_hits:
            task = by_id[task_id]
            results.append(task.model_copy(update={"metadata": {**task.metadata, "similarityScore": score}}))
        return results

    # --- metadata ---

    def update_metadata(self, task_id: str, key: str, value: Any = None, operation: str = "set") -> OperationResult:
        """
        Change one metadata field, addressed with a dot path.

        ``set`` assigns, ``remove`` deletes, ``append`` adds to a list (creating it).
        """
        try:
            if operation not in METADATA_OPERATIONS:
                raise TaskError(f"Unknown metadata operation {operation!r}", ErrorCode.VALIDATION)
            parts = _split_key(key)
            task = self.store.get_task(task_id).unwrap()
            metadata = task.model_copy(deep=True).metadata

            container = metadata
            for part in parts[:-1]:
                if part not in container and operation != "remove":
                    container[part] = {}
                child = container.get(part)
                if not isinstance(child, dict):
                    if operation == "remove":
                        raise TaskError(f"Metadata field {key} is not set on task {task_id}", ErrorCode.NOT_FOUND)
                    raise TaskError(f"Metadata field {part} of task {task_id} is not a mapping", ErrorCode.VALIDATION)
                container = child

            leaf = parts[-1]
            if operation == "set":
                container[leaf] = value
            elif operation == "remove":
                if leaf not in container:
                    raise TaskError(f"Metadata field {key} is not set on task {task_id}", ErrorCode.NOT_FOUND)
                del container[leaf]
            else:
                existing = container.setdefault(leaf, [])
                if not isinstance(existing, list):
                    raise TaskError(f"Metadata field {key} of task {task_id} is not a list", ErrorCode.VALIDATION)
                existing.append(value)

            updated = Task.model_validate({**task.model_dump(), "metadata": metadata, "updated_at": datetime.now()})
        except TaskError as e:
            return OperationResult.fail(e)
        except ValueError as e:
            return OperationResult.fail(TaskError(f"Invalid metadata value: {e}", ErrorCode.VALIDATION))

        log.debug(f"Metadata {operation} {key} on task {task_id}")
        return self.store.update_task(updated)

    def get_metadata_field(self, task_id: str, key: str) -> OperationResult:
        result = self.store.get_task(task_id)
        if not result.success:
            return result
        value = safe_access(result.data.metadata, key, _MISSING)
        if value is _MISSING:
            return OperationResult.fail(TaskError(f"Metadata field {key} is not set on task {task_id}",
                                                  ErrorCode.NOT_FOUND))
        return OperationResult.ok(value)

    # --- maintenance ---

    def check(self) -> List[str]:
        """Numbering and structure problems in the stored tasks."""
        return check_numbering(self._tasks())
