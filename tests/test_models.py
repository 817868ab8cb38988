"""Unit tests for Pydantic models."""

import pytest
from pydantic import ValidationError

from tasknest.models import (
    CreateTaskOptions,
    OperationResult,
    PlanEntry,
    Task,
    TaskFile,
    TaskId,
    TaskReadiness,
    TaskStatus,
    UpdateTaskOptions,
    format_tags,
    safe_access,
)
from tasknest.recovery import ErrorCode, TaskError


class TestTaskId:
    """Test TaskId parsing and manipulation."""

    def test_valid_ids(self):
        """Test parsing of valid dot-notation ids."""
        task_id = TaskId("3.2.1")
        assert task_id.segments == [3, 2, 1]
        assert task_id.parent == "3.2"
        assert task_id.position == 1
        assert task_id.depth == 3

        root = TaskId("7")
        assert root.parent is None
        assert root.position == 7

    def test_invalid_ids(self):
        """Test rejection of malformed ids."""
        for raw in ["", "0", "1.0", "1..2", "a.1", "1.", ".1", "01"]:
            with pytest.raises(ValueError, match="Invalid task id format"):
                TaskId(raw)
        assert not TaskId.validate_id("1.x")
        assert TaskId.validate_id("10.2")

    def test_sort_key_is_numeric(self):
        """Test that ids order numerically, parents before children."""
        raw = ["10", "2", "1.1", "1", "2.10", "2.9"]
        assert sorted(raw, key=TaskId.sort_key) == ["1", "1.1", "2", "2.9", "2.10", "10"]

    def test_child_and_position(self):
        """Test deriving related ids."""
        assert str(TaskId("3").child(4)) == "3.4"
        assert str(TaskId("3.2").with_position(1)) == "3.1"

    def test_replace_prefix(self):
        """Test prefix rewriting keeps the suffix."""
        assert str(TaskId("3.2.1").replace_prefix("3", "2")) == "2.2.1"
        assert str(TaskId("3.2.1").replace_prefix("3.2", "3.1")) == "3.1.1"
        assert str(TaskId("3").replace_prefix("3", "2")) == "2"
        with pytest.raises(ValueError, match="not a prefix"):
            TaskId("4.1").replace_prefix("3", "2")

    def test_equality(self):
        """Test comparison with other ids and plain strings."""
        assert TaskId("1.2") == TaskId("1.2")
        assert TaskId("1.2") == "1.2"
        assert TaskId("1.2") != TaskId("1.3")
        assert TaskId("1").is_prefix_of(TaskId("1.2"))
        assert not TaskId("1").is_prefix_of(TaskId("1"))
        assert not TaskId("1").is_prefix_of(TaskId("10.1"))


class TestTask:
    """Test the Task model."""

    def test_defaults(self):
        """Test default values of a minimal task."""
        task = Task(id="1", title="  Write tests  ")
        assert task.title == "Write tests"
        assert task.status == TaskStatus.TODO
        assert task.readiness == TaskReadiness.DRAFT
        assert task.tags == []
        assert task.metadata == {}
        assert task.is_root

    def test_validation(self):
        """Test invalid field values."""
        with pytest.raises(ValidationError):
            Task(id="1", title="   ")
        with pytest.raises(ValidationError):
            Task(id="1.a", title="Bad id")
        with pytest.raises(ValidationError):
            Task(id="1", title="Bad metadata", metadata={"when": object()})
        with pytest.raises(ValidationError):
            Task(id="1", title="Bad status", status="finished")

    def test_none_containers_normalized(self):
        """Test that missing tags and metadata become empty containers."""
        task = Task(id="1", title="Task", tags=None, metadata=None)
        assert task.tags == []
        assert task.metadata == {}

    def test_tags_deduplicated_in_order(self):
        """Test tags keep first occurrence order."""
        task = Task(id="1", title="Task", tags=["b", "a", "b", " ", "c"])
        assert task.tags == ["b", "a", "c"]

    def test_record_drops_transient_metadata(self):
        """Test serialized form omits similarityScore."""
        task = Task(id="1", title="Task", status="in-progress",
                    metadata={"similarityScore": 0.9, "owner": "sam"})
        record = task.to_record()
        assert record["metadata"] == {"owner": "sam"}
        assert record["status"] == "in-progress"

    def test_is_retired(self):
        """Test merge markers mark a task as retired."""
        assert Task(id="1", title="Task", metadata={"mergedInto": "2"}).is_retired
        assert not Task(id="1", title="Task", metadata={"mergedFrom": "2"}).is_retired


class TestHelpers:
    """Test null-handling helpers."""

    def test_format_tags(self):
        assert format_tags(["a", "b"]) == "a, b"
        assert format_tags([]) == "none"
        assert format_tags(None, empty="-") == "-"

    def test_safe_access(self):
        metadata = {"review": {"by": "sam", "round": 2}, "flat": 1}
        assert safe_access(metadata, "review.by") == "sam"
        assert safe_access(metadata, "flat") == 1
        assert safe_access(metadata, "review.missing", "x") == "x"
        assert safe_access(metadata, "flat.deeper") is None
        assert safe_access(None, "anything") is None


class TestOperationResult:
    """Test the uniform result wrapper."""

    def test_ok(self):
        result = OperationResult.ok(5, warnings=["careful"])
        assert result.success
        assert result.unwrap() == 5
        assert result.code is None

    def test_fail(self):
        result = OperationResult.fail(TaskError("missing", ErrorCode.NOT_FOUND))
        assert not result.success
        assert result.code == ErrorCode.NOT_FOUND
        with pytest.raises(TaskError) as exc:
            result.unwrap()
        assert exc.value.code == ErrorCode.NOT_FOUND
        assert str(exc.value) == "[NOT_FOUND] missing"


class TestOptions:
    """Test request models."""

    def test_create_options_validation(self):
        """Test create options reject empty titles and bad references."""
        with pytest.raises(ValidationError):
            CreateTaskOptions(title="")
        with pytest.raises(ValidationError):
            CreateTaskOptions(title="Task", child_of="x")
        options = CreateTaskOptions(title="Task", tags=["a", "a"])
        assert options.tags == ["a"]
        assert not options.force

    def test_update_changes_only_supplied_fields(self):
        """Test that update options report only what was set."""
        options = UpdateTaskOptions(id="1", status=TaskStatus.DONE)
        assert options.changes() == {"status": TaskStatus.DONE}
        assert UpdateTaskOptions(id="1").changes() == {}

    def test_plan_entry_aliases(self):
        """Test parent aliases in plan entries."""
        assert PlanEntry.model_validate({"title": "A", "parentId": "2"}).child_of == "2"
        assert PlanEntry.model_validate({"title": "A", "childOf": "3"}).child_of == "3"
        entry = PlanEntry.model_validate({"id": "1", "status": "done"})
        assert entry.is_update
        assert entry.to_update_options().changes() == {"status": TaskStatus.DONE}

    def test_plan_entry_to_create_options(self):
        """Test plan entries convert into create requests."""
        entry = PlanEntry.model_validate({"title": "New", "tags": ["x"], "force": True})
        options = entry.to_create_options(auto_merge=True)
        assert options.title == "New"
        assert options.tags == ["x"]
        assert options.force
        assert options.auto_merge


class TestTaskFile:
    """Test the on-disk document model."""

    def test_record_round_trip(self):
        """Test that a task file survives the plain-data form the store writes."""
        task_file = TaskFile(tasks=[Task(id="1", title="One", tags=["a"]),
                                    Task(id="1.1", title="Child", parent_id="1")])
        loaded = TaskFile.model_validate(task_file.model_dump(mode="json"))
        assert [t.id for t in loaded.tasks] == ["1", "1.1"]
        assert loaded.tasks[1].parent_id == "1"
        assert loaded.schema_version == task_file.schema_version
