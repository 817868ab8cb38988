"""
Triage - applying a batch plan of task changes, or walking open tasks interactively.

Both modes are fail-soft: a problem with one task is recorded in
``TriageResults.errors`` and processing moves on to the next one.
"""
from typing import Any, Dict, List, Optional

import click
from pydantic import BaseModel, Field, ValidationError

from .data.validate import validate_plan_entry
from .dedup import Decision
from .logs import get_logger
from .models import (
    PlanEntry,
    PlanFile,
    Task,
    TaskId,
    TaskReadiness,
    TaskStatus,
    UpdateTaskOptions,
    format_tags,
)
from .recovery import TaskError
from .service import TaskService

log = get_logger("triage")

# Number of similar tasks shown per entry before summarizing the rest
SHOW_CANDIDATES = 3


class TriageResults(BaseModel):
    added: List[Dict[str, Any]] = Field(default_factory=list)
    updated: List[Dict[str, Any]] = Field(default_factory=list)
    merged: List[Dict[str, Any]] = Field(default_factory=list)
    skipped: List[Dict[str, Any]] = Field(default_factory=list)
    errors: List[Dict[str, Any]] = Field(default_factory=list)

    def summary(self) -> Dict[str, int]:
        return {
            "added": len(self.added),
            "updated": len(self.updated),
            "merged": len(self.merged),
            "skipped": len(self.skipped),
            "errors": len(self.errors),
        }


def _brief(task: Task, **extra) -> Dict[str, Any]:
    return {"id": task.id, "title": task.title, **extra}


def _error(results: TriageResults, entry_id: Optional[str], title: Optional[str], message: str):
    log.warning(f"Triage entry {entry_id or title!r} failed: {message}")
    results.errors.append({"id": entry_id, "title": title, "error": message})


def _apply_update(service: TaskService, entry: PlanEntry, results: TriageResults, dry_run: bool):
    if dry_run:
        existing = service.get_task(entry.id)
        if not existing.success:
            _error(results, entry.id, entry.title, existing.error.message)
            return
        results.updated.append(_brief(existing.data, dry_run=True))
        return

    result = service.update_task(entry.to_update_options())
    if result.success:
        results.updated.append(_brief(result.data))
    else:
        _error(results, entry.id, entry.title, result.error.message)


def _apply_create(service: TaskService, entry: PlanEntry, results: TriageResults,
                  auto_merge: bool, dry_run: bool):
    options = entry.to_create_options(auto_merge=auto_merge)

    if dry_run:
        resolution = service.resolver.resolve(options.title, service.list_tasks().unwrap(),
                                              force=options.force, auto_merge=auto_merge)
        similar = [c.to_public() for c in resolution.candidates]
        if resolution.decision == Decision.MERGE:
            results.merged.append({"title": options.title, "target": resolution.target.id, "dry_run": True})
        elif resolution.decision == Decision.CREATE:
            results.added.append({"title": options.title, "dry_run": True})
        else:
            results.skipped.append({"title": options.title, "reason": "Similar task exists",
                                    "similar_tasks": similar, "dry_run": True})
        return

    result = service.create_task(options)
    if result.decision == Decision.MERGE.value:
        results.merged.append({"title": options.title, "target": result.data.id})
    elif result.success:
        added = _brief(result.data)
        if result.warnings:
            added["warnings"] = result.warnings
        results.added.append(added)
    elif result.decision in (Decision.SKIP.value, Decision.PROMPT.value):
        results.skipped.append({
            "title": options.title,
            "reason": "Similar task exists",
            "similar_tasks": [c.to_public() for c in result.candidates],
        })
    else:
        _error(results, entry.id, entry.title, result.error.message if result.error else "Task was not created")


def process_plan(service: TaskService, plan: PlanFile, auto_merge: bool = False,
                 dry_run: bool = False) -> TriageResults:
    """
    Apply a plan: entries with an id are updates, the rest are creates.

    Entries that fail validation are recorded in ``errors`` and the rest still
    run. All updates run before any create, each in plan order. With
    ``dry_run`` nothing is written; results describe what would have happened.
    """
    results = TriageResults()
    entries = []
    for raw in plan.tasks:
        try:
            entries.append(validate_plan_entry(raw))
        except TaskError as e:
            _error(results, raw.get("id"), raw.get("title"), e.message)
    updates = [e for e in entries if e.is_update]
    creates = [e for e in entries if not e.is_update]
    log.info(f"Processing plan: {len(updates)} updates, {len(creates)} creates"
             + (" (dry run)" if dry_run else ""))

    for entry in updates:
        try:
            _apply_update(service, entry, results, dry_run)
        except (TaskError, ValidationError) as e:
            _error(results, entry.id, entry.title, str(e))

    for entry in creates:
        try:
            _apply_create(service, entry, results, auto_merge, dry_run)
        except (TaskError, ValidationError) as e:
            _error(results, entry.id, entry.title, str(e))

    log.info(f"Plan processed: {results.summary()}")
    return results


def open_tasks(tasks: List[Task]) -> List[Task]:
    """Tasks still worth triaging (not done, not blocked), parents before children."""
    tasks = [t for t in tasks if t.status != TaskStatus.DONE and t.readiness != TaskReadiness.BLOCKED]
    return sorted(tasks, key=lambda t: TaskId.sort_key(t.id))


def _show_task(task: Task, index: int, total: int, all_tasks: List[Task]):
    click.echo("")
    click.echo(click.style(f"📋 Task {index}/{total}: {task.id}", bold=True))
    click.echo(f"   📝 Title: {task.title}")
    click.echo(f"   🔄 Status: {task.status.value}")
    click.echo(f"   🚦 Readiness: {task.readiness.value}")
    click.echo(f"   🏷️  Tags: {format_tags(task.tags)}")

    by_id = {t.id: t for t in all_tasks}
    if task.parent_id and task.parent_id in by_id:
        click.echo(f"   ⬆️  Parent: {task.parent_id}: {by_id[task.parent_id].title}")
    children = [t for t in all_tasks if t.parent_id == task.id]
    if children:
        click.echo(f"   ⬇️  Subtasks ({len(children)}):")
        for child in children:
            click.echo(f"      {child.id}: {child.title} [{child.status.value}]")


def _prompt_update(service: TaskService, task: Task, results: TriageResults, dry_run: bool):
    fields = {}
    status = click.prompt("New status [todo, in-progress, done] (empty keeps current)",
                          default="", show_default=False).strip()
    if status:
        if status in [s.value for s in TaskStatus]:
            fields["status"] = TaskStatus(status)
        else:
            click.echo("   Invalid status, keeping current value")

    readiness = click.prompt("New readiness [draft, ready, blocked] (empty keeps current)",
                             default="", show_default=False).strip()
    if readiness:
        if readiness in [r.value for r in TaskReadiness]:
            fields["readiness"] = TaskReadiness(readiness)
        else:
            click.echo("   Invalid readiness, keeping current value")

    _update(service, task, fields, results, dry_run)


def _prompt_tags(service: TaskService, task: Task, results: TriageResults, dry_run: bool):
    raw = click.prompt("New tags, comma-separated (empty keeps current)", default="", show_default=False)
    tags = [t.strip() for t in raw.split(",") if t.strip()]
    if not tags:
        click.echo("   Tags unchanged")
        return
    _update(service, task, {"tags": tags}, results, dry_run)


def _update(service: TaskService, task: Task, fields: Dict[str, Any], results: TriageResults, dry_run: bool):
    if not fields:
        click.echo("   Nothing changed")
        return
    if dry_run:
        click.echo("   💡 Would update task (dry run)")
        results.updated.append(_brief(task, dry_run=True))
        return
    result = service.update_task(UpdateTaskOptions(id=task.id, **fields))
    if result.success:
        results.updated.append(_brief(result.data))
        click.echo("   ✅ Task updated")
    else:
        results.errors.append({"id": task.id, "title": task.title, "error": result.error.message})
        click.echo(f"   ❌ {result.error.message}")


def _prompt_merge(service: TaskService, task: Task, similar: List[Dict[str, Any]],
                  results: TriageResults, dry_run: bool):
    choice = click.prompt(f"Merge into which task [1-{len(similar)}]", type=click.IntRange(1, len(similar)))
    target = similar[choice - 1]
    click.echo(f"   Source: {task.id}: {task.title}")
    click.echo(f"   Target: {target['id']}: {target['title']}")
    if not click.confirm("Proceed with merge?", default=False):
        click.echo("   Merge cancelled")
        return
    if dry_run:
        click.echo("   💡 Would merge tasks (dry run)")
        results.merged.append({"id": task.id, "title": task.title, "target": target["id"], "dry_run": True})
        return
    result = service.merge_tasks(task.id, target["id"])
    if result.success:
        results.merged.append({"id": task.id, "title": task.title, "target": target["id"]})
        click.echo(f"   ✅ Merged {task.id} into {target['id']}")
    else:
        results.errors.append({"id": task.id, "title": task.title, "error": result.error.message})
        click.echo(f"   ❌ {result.error.message}")


def run_interactive(service: TaskService, dry_run: bool = False,
                    threshold: Optional[float] = None) -> TriageResults:
    """
    Walk every open task and ask what to do with it.

    Choosing quit stops the walk; changes already made are kept.
    """
    results = TriageResults()
    all_tasks = service.list_tasks().unwrap()
    queue = open_tasks(all_tasks)
    if threshold is None:
        threshold = service.settings.dedup_threshold

    if not queue:
        click.echo("📭 No open tasks to triage")
        return results

    click.echo(f"🔍 Found {len(queue)} open tasks to triage")
    for index, task in enumerate(queue, start=1):
        current = service.get_task(task.id)
        if not current.success or current.data.is_retired:
            continue
        task = current.data
        _show_task(task, index, len(queue), all_tasks)

        similar = [s for s in service.find_similar_tasks(task.title, threshold) if s["id"] != task.id]
        if similar:
            click.echo(f"   ⚠️  Similar tasks ({len(similar)}):")
            for number, s in enumerate(similar, start=1):
                click.echo(f"      [{number}] {s['id']}: {s['title']} ({round(s['similarity'] * 100)}% similar)")

        actions = ["u", "d", "t", "s", "q"] + (["m"] if similar else [])
        click.echo("   Actions: u) update  d) done  t) tags" + ("  m) merge" if similar else "") + "  s) skip  q) quit")
        action = click.prompt("Choose an action", type=click.Choice(actions, case_sensitive=False)).lower()

        if action == "q":
            click.echo("👋 Leaving triage")
            break
        if action == "s":
            results.skipped.append(_brief(task, reason="Manual skip in interactive mode"))
        elif action == "u":
            _prompt_update(service, task, results, dry_run)
        elif action == "d":
            _update(service, task, {"status": TaskStatus.DONE}, results, dry_run)
        elif action == "t":
            _prompt_tags(service, task, results, dry_run)
        elif action == "m":
            _prompt_merge(service, task, similar, results, dry_run)

    return results
