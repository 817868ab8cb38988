"""Tests for plan based triage."""

import json

import pytest

from tasknest.data.validate import load_plan_file, validate_plan, validate_plan_entry
from tasknest.models import TaskReadiness, TaskStatus
from tasknest.recovery import CorruptionError, ErrorCode, TaskError
from tasknest.triage import open_tasks, process_plan
from conftest import add, ids, make_task


@pytest.fixture
def seeded(service):
    add(service, "Fix login bug", tags=["auth"])
    add(service, "Write documentation")
    return service


def plan(*entries):
    return validate_plan({"tasks": list(entries)})


class TestProcessPlan:
    """Test applying plan files."""

    def test_updates_run_before_creates(self, seeded):
        """Test a rename earlier in the run frees the title for a later create."""
        results = process_plan(seeded, plan(
            {"title": "Fix login issue"},
            {"id": "1", "title": "Rotate signing keys"},
        ))
        assert results.updated == [{"id": "1", "title": "Rotate signing keys"}]
        assert results.added == [{"id": "3", "title": "Fix login issue"}]
        assert results.skipped == []

    def test_similar_create_is_skipped(self, seeded):
        results = process_plan(seeded, plan({"title": "Fix login issue"}))
        assert results.added == []
        assert len(results.skipped) == 1
        skipped = results.skipped[0]
        assert skipped["title"] == "Fix login issue"
        assert skipped["reason"] == "Similar task exists"
        assert skipped["similar_tasks"][0]["id"] == "1"
        assert ids(seeded.store) == ["1", "2"]

    def test_forced_entry_is_created(self, seeded):
        results = process_plan(seeded, plan({"title": "Fix login issue", "force": True}))
        assert [a["id"] for a in results.added] == ["3"]
        assert results.added[0]["warnings"]

    def test_auto_merge(self, seeded):
        results = process_plan(seeded, plan({"title": "Fix login bug", "tags": ["urgent"]}), auto_merge=True)
        assert results.merged == [{"title": "Fix login bug", "target": "1"}]
        assert seeded.get_task("1").unwrap().tags == ["auth", "urgent"]
        assert ids(seeded.store) == ["1", "2"]

    def test_errors_do_not_stop_the_run(self, seeded):
        """Test a failing entry is recorded and later entries still apply."""
        results = process_plan(seeded, plan(
            {"id": "7", "status": "done"},
            {"id": "2", "status": "in-progress"},
            {"title": "Deploy to staging", "childOf": "9"},
            {"title": "Plan release party"},
        ))
        assert [e["id"] for e in results.errors] == ["7", None]
        assert results.errors[1]["title"] == "Deploy to staging"
        assert [u["id"] for u in results.updated] == ["2"]
        assert [a["title"] for a in results.added] == ["Plan release party"]
        assert seeded.get_task("2").unwrap().status == TaskStatus.IN_PROGRESS

    def test_child_placement(self, seeded):
        results = process_plan(seeded, plan({"title": "Add password reset", "parentId": "1"}))
        assert results.added == [{"id": "1.1", "title": "Add password reset"}]
        assert seeded.get_task("1.1").unwrap().parent_id == "1"

    def test_dry_run_writes_nothing(self, seeded):
        before = [t.model_dump() for t in seeded.list_tasks().unwrap()]
        results = process_plan(seeded, plan(
            {"id": "2", "readiness": "ready"},
            {"title": "Fix login issue"},
            {"title": "Plan release party"},
        ), dry_run=True)
        assert results.summary() == {"added": 1, "updated": 1, "merged": 0, "skipped": 1, "errors": 0}
        assert all(entry["dry_run"] for entry in results.added + results.updated + results.skipped)
        assert [t.model_dump() for t in seeded.list_tasks().unwrap()] == before

    def test_dry_run_reports_merge(self, seeded):
        results = process_plan(seeded, plan({"title": "Fix login bug"}), auto_merge=True, dry_run=True)
        assert results.merged == [{"title": "Fix login bug", "target": "1", "dry_run": True}]
        assert "mergedFrom" not in seeded.get_task("1").unwrap().metadata

    def test_invalid_entries_are_reported_individually(self, seeded):
        """Test malformed entries land in errors while valid ones still apply."""
        results = process_plan(seeded, plan(
            {"title": "Plan release party"},
            {"title": "Ship it", "status": "wip"},
            {"status": "done"},
            {"id": "2", "readiness": "ready"},
        ))
        assert [a["title"] for a in results.added] == ["Plan release party"]
        assert [u["id"] for u in results.updated] == ["2"]
        assert [(e["id"], e["title"]) for e in results.errors] == [(None, "Ship it"), (None, None)]
        assert ids(seeded.store) == ["1", "2", "3"]

    def test_auto_merge_applies_entry_status(self, seeded):
        results = process_plan(seeded, plan({"title": "Fix login bug", "status": "in-progress",
                                             "readiness": "ready"}), auto_merge=True)
        assert results.merged == [{"title": "Fix login bug", "target": "1"}]
        merged = seeded.get_task("1").unwrap()
        assert merged.status == TaskStatus.IN_PROGRESS
        assert merged.readiness == TaskReadiness.READY


class TestPlanFiles:
    """Test loading and validating plan files."""

    def test_load(self, tmp_path):
        path = tmp_path / "plan.json"
        path.write_text(json.dumps({"tasks": [
            {"title": "New work", "child_of": "2", "tags": ["a"]},
            {"id": "1", "status": "done"},
        ]}))
        loaded = load_plan_file(path)
        create, update = (validate_plan_entry(raw) for raw in loaded.tasks)
        assert create.child_of == "2"
        assert not create.is_update
        assert update.is_update
        assert update.status == TaskStatus.DONE

    @pytest.mark.parametrize("alias", ["childOf", "parentId", "parent_id", "child_of"])
    def test_parent_aliases(self, alias):
        assert validate_plan_entry({"title": "New work", alias: "3.1"}).child_of == "3.1"

    @pytest.mark.parametrize("document", [
        {},
        {"tasks": "nope"},
        {"tasks": ["title"]},
        {"tasks": [{"title": "x"}, 3]},
    ])
    def test_invalid_documents(self, document):
        with pytest.raises(TaskError) as exc:
            validate_plan(document)
        assert exc.value.code == ErrorCode.VALIDATION

    def test_bad_entries_pass_document_check(self):
        """Test entry problems are left for per-entry validation."""
        loaded = validate_plan({"tasks": [{"title": "x", "status": "wip"}, {}]})
        assert len(loaded.tasks) == 2

    @pytest.mark.parametrize("entry", [
        {},
        {"title": ""},
        {"title": "x", "status": "finished"},
        {"id": "0.1"},
        {"title": "x", "tags": "a,b"},
        {"status": "done"},
    ])
    def test_invalid_entries(self, entry):
        with pytest.raises(TaskError) as exc:
            validate_plan_entry(entry)
        assert exc.value.code == ErrorCode.VALIDATION

    def test_missing_file(self, tmp_path):
        with pytest.raises(TaskError) as exc:
            load_plan_file(tmp_path / "missing.json")
        assert exc.value.code == ErrorCode.NOT_FOUND

    def test_not_json(self, tmp_path):
        path = tmp_path / "plan.json"
        path.write_text("tasks:\n  - title: yaml\n")
        with pytest.raises(CorruptionError):
            load_plan_file(path)


class TestOpenTasks:
    """Test which tasks interactive triage visits."""

    def test_open_tasks(self):
        tasks = [
            make_task("2", "Later"),
            make_task("1.1", "Child"),
            make_task("1", "Parent"),
            make_task("3", "Finished", status=TaskStatus.DONE),
            make_task("4", "Stuck", readiness=TaskReadiness.BLOCKED),
        ]
        assert [t.id for t in open_tasks(tasks)] == ["1", "1.1", "2"]
