"""Tests for merging duplicate tasks."""

from unittest.mock import patch

import pytest

from tasknest.data.store import MemoryTaskStore
from tasknest.merge import MergeExecutor
from tasknest.models import CreateTaskOptions, OperationResult, TaskReadiness, TaskStatus
from tasknest.recovery import ErrorCode, TaskError
from conftest import make_task


@pytest.fixture
def store():
    return MemoryTaskStore([
        make_task("1", "Fix login bug", tags=["auth", "bug"],
                  metadata={"priority": "high"}),
        make_task("2", "Fix login issue", tags=["bug", "urgent"],
                  metadata={"priority": "low", "owner": "sam", "similarityScore": 0.57}),
        make_task("2.1", "Reproduce on mobile"),
    ])


@pytest.fixture
def executor(store):
    return MergeExecutor(store)


class TestMerge:
    """Test merging an existing task into another."""

    def test_target_absorbs_source(self, executor, store):
        """Test tags are unioned in target order and target metadata wins."""
        merged = executor.merge("2", "1")
        assert merged.tags == ["auth", "bug", "urgent"]
        assert merged.metadata["priority"] == "high"
        assert merged.metadata["owner"] == "sam"
        assert merged.metadata["mergedFrom"] == "2"
        assert "mergedAt" in merged.metadata
        assert "similarityScore" not in merged.metadata
        assert store.get_task("1").unwrap() == merged

    def test_source_is_retired(self, executor, store):
        """Test the source stays but is marked done, blocked and merged."""
        executor.merge("2", "1")
        source = store.get_task("2").unwrap()
        assert source.status == TaskStatus.DONE
        assert source.readiness == TaskReadiness.BLOCKED
        assert source.metadata["mergedInto"] == "1"
        assert "mergedAt" in source.metadata
        assert source.is_retired

    def test_status_only_changes_when_given(self, executor, store):
        target_before = store.get_task("1").unwrap()
        merged = executor.merge("2", "1")
        assert merged.status == target_before.status
        assert merged.readiness == target_before.readiness

    def test_explicit_status_and_readiness(self, executor, store):
        """Test caller supplied values override the target's."""
        merged = executor.merge("2", "1", status=TaskStatus.IN_PROGRESS, readiness=TaskReadiness.READY)
        assert merged.status == TaskStatus.IN_PROGRESS
        assert merged.readiness == TaskReadiness.READY

    def test_merge_into_self(self, executor):
        with pytest.raises(TaskError) as exc:
            executor.merge("1", "1")
        assert exc.value.code == ErrorCode.VALIDATION

    def test_merge_into_descendant(self, executor):
        with pytest.raises(TaskError) as exc:
            executor.merge("2", "2.1")
        assert exc.value.code == ErrorCode.VALIDATION

    def test_merge_child_into_parent_is_allowed(self, executor):
        merged = executor.merge("2.1", "2")
        assert merged.metadata["mergedFrom"] == "2.1"

    def test_already_merged_source(self, executor):
        executor.merge("2", "1")
        with pytest.raises(TaskError) as exc:
            executor.merge("2", "1")
        assert exc.value.code == ErrorCode.VALIDATION

    def test_unknown_ids(self, executor):
        with pytest.raises(TaskError) as exc:
            executor.merge("9", "1")
        assert exc.value.code == ErrorCode.NOT_FOUND

    def test_failed_write_leaves_both_tasks_untouched(self, executor, store):
        """Test the two writes are all-or-nothing."""
        target_before = store.get_task("1").unwrap()
        source_before = store.get_task("2").unwrap()
        original_update = store.update_task
        calls = []

        def flaky_update(task):
            calls.append(task.id)
            if len(calls) == 2:
                return OperationResult.fail(TaskError("disk full", ErrorCode.DATABASE_ERROR))
            return original_update(task)

        with patch.object(store, "update_task", side_effect=flaky_update):
            with pytest.raises(TaskError) as exc:
                executor.merge("2", "1")

        assert exc.value.code == ErrorCode.DATABASE_ERROR
        assert store.get_task("1").unwrap() == target_before
        assert store.get_task("2").unwrap() == source_before


class TestMergeNew:
    """Test folding a create request into an existing task."""

    def test_merge_new(self, executor, store):
        options = CreateTaskOptions(title="Fix the login bug", tags=["urgent", "auth"],
                                    metadata={"source": "plan", "priority": "low"})
        merged = executor.merge_new(options, "1")
        assert merged.tags == ["auth", "bug", "urgent"]
        assert merged.metadata["source"] == "plan"
        assert merged.metadata["priority"] == "high"
        assert merged.metadata["mergedFrom"] == "Fix the login bug"
        assert len(store) == 3
