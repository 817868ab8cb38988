"""
Command Line Interface for TaskNest.
"""

import json
from pathlib import Path

import click

from .config import Settings, load_settings
from .data.io import DATA_YAML, atomic_write
from .data.store import YAMLTaskStore
from .data.validate import load_plan_file
from .hierarchy import TaskHierarchy
from .logs import get_logger
from .models import (
    CreateTaskOptions,
    SearchFilters,
    TaskReadiness,
    TaskStatus,
    UpdateTaskOptions,
    format_tags,
)
from .recovery import TaskError, TaskNestError
from .service import TaskService
from .triage import process_plan, run_interactive
from .version import VERSION

log = get_logger("cli")

STATUS_CHOICES = click.Choice([s.value for s in TaskStatus])
READINESS_CHOICES = click.Choice([r.value for r in TaskReadiness])


class CliContext:
    """Lazily opens the project store the first time a command needs it."""

    def __init__(self, data_dir=None):
        self.data_dir = data_dir
        self._service = None

    @property
    def service(self) -> TaskService:
        if self._service is None:
            try:
                settings = load_settings(self.data_dir)
                if not settings.tasks_file.exists():
                    _fail(f"Not in a TaskNest project ({settings.tasks_file} missing)",
                          hint="Run 'tn init' to initialize a project")
                self._service = TaskService(YAMLTaskStore(settings.tasks_file), settings)
            except TaskNestError as e:
                log.error(f"Cannot open project: {e}")
                _fail(f"Error loading project files: {e}")
        return self._service


def _fail(message, hint=None):
    click.echo(f"❌ {message}")
    if hint:
        click.echo(f"💡 {hint}")
    click.get_current_context().exit(1)


def _echo_json(data):
    click.echo(json.dumps(data, indent=2, default=str))


def _parse_value(raw):
    """Metadata values are JSON when they parse as JSON, plain strings otherwise."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _task_line(task, indent=0):
    marker = {"todo": "⬜", "in-progress": "🔄", "done": "✅"}[task.status.value]
    tags = f" [{format_tags(task.tags, empty='')}]" if task.tags else ""
    merged = " (merged)" if task.is_retired else ""
    return f"{'  ' * indent}{marker} {task.id} {task.title}{tags}{merged}"


@click.group()
@click.version_option(version=VERSION, prog_name="tn")
@click.option('--data-dir', type=click.Path(file_okay=False, path_type=Path), default=None,
              help='Project data directory (default: .tasknest)')
@click.pass_context
def main(ctx, data_dir):
    """
    TaskNest - hierarchical tasks with duplicate detection.
    """
    ctx.obj = CliContext(data_dir)


@main.command()
@click.pass_obj
def init(obj):
    """Initialize a new TaskNest project in the current directory."""
    try:
        settings = load_settings(obj.data_dir)
    except TaskNestError as e:
        _fail(f"Error reading settings: {e}")

    if settings.tasks_file.exists():
        click.echo(f"❌ Project already initialized ({settings.tasks_file} exists)")
        return

    click.echo(f"🚀 Initializing TaskNest project in {Path(settings.data_dir).resolve()}")
    try:
        YAMLTaskStore.initialize(settings.tasks_file)
        click.echo("📋 Created tasks.yml")
        if not settings.config_file.exists():
            atomic_write(DATA_YAML, settings.config_file, Settings().to_file_dict(), create_dirs=True)
            click.echo("⚙️  Created config.yml")
    except TaskNestError as e:
        _fail(f"Error initializing project: {e}")

    click.echo("✅ Project initialized successfully!")
    click.echo("💡 Use 'tn add \"Title\"' to create your first task")


@main.command()
@click.argument('title')
@click.option('-d', '--description', help='Longer description')
@click.option('--body', help='Free-form body text')
@click.option('-s', '--status', type=STATUS_CHOICES, help='Initial status (default: todo)')
@click.option('-r', '--readiness', type=READINESS_CHOICES, help='Initial readiness (default: draft)')
@click.option('-t', '--tag', 'tags', multiple=True, help='Tag, may be repeated')
@click.option('--child-of', help='Create as a subtask of this task')
@click.option('--after', help='Create as a sibling of this task')
@click.option('--force', is_flag=True, help='Create even if similar tasks exist')
@click.option('--auto-merge', is_flag=True, help='Merge into a near-identical task instead of creating')
@click.option('--json', 'as_json', is_flag=True, help='Print the result as JSON')
@click.pass_obj
def add(obj, title, description, body, status, readiness, tags, child_of, after, force, auto_merge, as_json):
    """Add a new task."""
    try:
        options = CreateTaskOptions(
            title=title, description=description, body=body,
            status=TaskStatus(status) if status else None,
            readiness=TaskReadiness(readiness) if readiness else None,
            tags=list(tags), child_of=child_of, after=after, force=force, auto_merge=auto_merge,
        )
    except ValueError as e:
        _fail(f"Invalid task: {e}")

    result = obj.service.create_task(options)
    if as_json:
        _echo_json(result.model_dump(mode="json"))
        return

    for warning in result.warnings:
        click.echo(f"⚠️  {warning}")
    if result.decision == "merge":
        click.echo(f"🔀 Merged into existing task {result.data.id}: {result.data.title}")
    elif result.success:
        click.echo(f"✅ Created task {result.data.id}: {result.data.title}")
    elif result.decision in ("skip", "prompt"):
        click.echo("🔍 Similar tasks:")
        for candidate in result.candidates:
            click.echo(f"   {candidate.id}: {candidate.title} ({round(candidate.score * 100)}% similar)")
        _fail("Task not created", hint="Use --force to create it anyway or --auto-merge to merge")
    else:
        _fail(result.error.message)


@main.command()
@click.argument('task_id')
@click.option('--title', help='New title')
@click.option('-d', '--description', help='New description')
@click.option('--body', help='New body text')
@click.option('-s', '--status', type=STATUS_CHOICES, help='New status')
@click.option('-r', '--readiness', type=READINESS_CHOICES, help='New readiness')
@click.option('-t', '--tag', 'tags', multiple=True, help='Replace tags, may be repeated')
@click.pass_obj
def update(obj, task_id, title, description, body, status, readiness, tags):
    """Update fields of a task."""
    fields = {"title": title, "description": description, "body": body,
              "status": TaskStatus(status) if status else None,
              "readiness": TaskReadiness(readiness) if readiness else None,
              "tags": list(tags) if tags else None}
    try:
        options = UpdateTaskOptions(id=task_id, **{k: v for k, v in fields.items() if v is not None})
    except ValueError as e:
        _fail(f"Invalid update: {e}")

    result = obj.service.update_task(options)
    if not result.success:
        _fail(result.error.message)
    for warning in result.warnings:
        click.echo(f"💡 {warning}")
    click.echo(f"✅ Updated task {result.data.id}: {result.data.title}")


@main.command()
@click.argument('task_id')
@click.option('--with-children', is_flag=True, help='Also remove all subtasks')
@click.option('-y', '--yes', is_flag=True, help='Do not ask for confirmation')
@click.pass_obj
def remove(obj, task_id, with_children, yes):
    """Remove a task and renumber the tasks after it."""
    found = obj.service.get_task(task_id)
    if not found.success:
        _fail(found.error.message)

    if not yes and not click.confirm(f"Remove task {task_id}: {found.data.title}?", default=False):
        click.echo("Cancelled")
        return

    if obj.service.remove_task(task_id, with_children=with_children):
        click.echo(f"🗑️  Removed task {task_id}")
    else:
        _fail(f"Task {task_id} was not removed",
              hint="Use --with-children to remove a task that has subtasks")


@main.command()
@click.argument('task_id')
@click.option('--json', 'as_json', is_flag=True, help='Print the task as JSON')
@click.pass_obj
def show(obj, task_id, as_json):
    """Show a task with its parents and subtasks."""
    result = obj.service.get_task(task_id)
    if not result.success:
        _fail(result.error.message)
    task = result.data
    if as_json:
        _echo_json(task.to_record())
        return

    hierarchy = TaskHierarchy(obj.service.list_tasks().unwrap())
    click.echo(click.style(f"📋 {task.id}: {task.title}", bold=True))
    click.echo(f"   🔄 Status: {task.status.value}")
    click.echo(f"   🚦 Readiness: {task.readiness.value}")
    click.echo(f"   🏷️  Tags: {format_tags(task.tags)}")
    if task.description:
        click.echo(f"   📝 {task.description}")
    if task.body:
        click.echo("")
        click.echo(task.body)
    ancestors = hierarchy.get_ancestors(task.id)
    if ancestors:
        click.echo("   ⬆️  Path: " + " > ".join(f"{a.id} {a.title}" for a in ancestors))
    children = hierarchy.get_children(task.id)
    if children:
        click.echo(f"   ⬇️  Subtasks ({len(children)}):")
        for child in children:
            click.echo("      " + _task_line(child))
    if task.metadata:
        click.echo("   🗂️  Metadata:")
        for key, value in task.metadata.items():
            click.echo(f"      {key}: {json.dumps(value, default=str)}")


@main.command(name='list')
@click.option('-s', '--status', type=STATUS_CHOICES, help='Only tasks with this status')
@click.option('-r', '--readiness', type=READINESS_CHOICES, help='Only tasks with this readiness')
@click.option('-t', '--tag', 'tags', multiple=True, help='Only tasks carrying this tag')
@click.option('--json', 'as_json', is_flag=True, help='Print tasks as JSON')
@click.pass_obj
def list_tasks(obj, status, readiness, tags, as_json):
    """List tasks as a tree (or flat when filtered)."""
    filtered = bool(status or readiness or tags)
    if filtered or as_json:
        filters = SearchFilters(status=TaskStatus(status) if status else None,
                                readiness=TaskReadiness(readiness) if readiness else None,
                                tags=list(tags))
        tasks = obj.service.list_tasks(filters).unwrap()
        if as_json:
            _echo_json([t.to_record() for t in tasks])
            return
        if not tasks:
            click.echo("📭 No matching tasks")
        for task in tasks:
            click.echo(_task_line(task))
        return

    result = obj.service.build_hierarchy()
    if not result.success:
        _fail(result.error.message)
    if not result.data:
        click.echo("📭 No tasks yet")
        return
    for root in result.data:
        for depth, task in root.walk():
            click.echo(_task_line(task, depth))


@main.command()
@click.argument('query')
@click.option('--similar', is_flag=True, help='Rank by title similarity only, without keyword filters')
@click.option('--threshold', type=click.FloatRange(0.0, 1.0), default=None, help='Minimum similarity')
@click.option('--json', 'as_json', is_flag=True, help='Print results as JSON')
@click.pass_obj
def search(obj, query, similar, threshold, as_json):
    """Search tasks by text ("stuck login" finds blocked login tasks)."""
    if similar:
        matches = obj.service.find_similar_tasks(query, threshold)
        if as_json:
            _echo_json(matches)
            return
        if not matches:
            click.echo("📭 No similar tasks")
        for match in matches:
            click.echo(f"{match['id']}: {match['title']} ({round(match['similarity'] * 100)}% similar)")
        return

    tasks = obj.service.search(query, threshold)
    if as_json:
        _echo_json([t.model_dump(mode="json") for t in tasks])
        return
    if not tasks:
        click.echo("📭 No matching tasks")
    for task in tasks:
        score = task.metadata.get("similarityScore")
        suffix = f" ({round(score * 100)}%)" if score is not None else ""
        click.echo(_task_line(task) + suffix)


@main.command(name='next')
@click.option('-n', '--count', default=1, show_default=True, help='Number of tasks to show')
@click.pass_obj
def next_tasks(obj, count):
    """Show the next ready tasks to work on."""
    tasks = obj.service.get_next_tasks(count)
    if not tasks:
        click.echo("🎉 Nothing is ready to work on")
        click.echo("💡 Mark tasks ready with 'tn update ID -r ready'")
        return
    for task in tasks:
        click.echo(_task_line(task))


@main.command()
@click.option('--min-similarity', type=click.FloatRange(0.0, 1.0), default=None,
              help='Minimum similarity for tasks to be grouped')
@click.option('--json', 'as_json', is_flag=True, help='Print groups as JSON')
@click.pass_obj
def deduplicate(obj, min_similarity, as_json):
    """Find groups of existing tasks that look like duplicates."""
    groups = obj.service.find_duplicate_groups(min_similarity)
    if as_json:
        _echo_json([{"anchor": {"id": g.anchor.id, "title": g.anchor.title},
                     "duplicates": [d.to_public() for d in g.duplicates]} for g in groups])
        return
    if not groups:
        click.echo("✨ No duplicate tasks found")
        return
    click.echo(f"🔍 Found {len(groups)} group(s) of similar tasks:")
    for number, group in enumerate(groups, start=1):
        click.echo("")
        click.echo(click.style(f"Group {number}: {group.anchor.id} {group.anchor.title}", bold=True))
        for duplicate in group.duplicates:
            click.echo(f"   {duplicate.id}: {duplicate.title} ({round(duplicate.score * 100)}% similar)")
    click.echo("")
    click.echo("💡 Use 'tn merge SOURCE TARGET' to merge a duplicate")


@main.command()
@click.argument('source_id')
@click.argument('target_id')
@click.option('-s', '--status', type=STATUS_CHOICES, help='Status for the merged target')
@click.option('-r', '--readiness', type=READINESS_CHOICES, help='Readiness for the merged target')
@click.pass_obj
def merge(obj, source_id, target_id, status, readiness):
    """Merge SOURCE_ID into TARGET_ID; the source is kept but retired."""
    result = obj.service.merge_tasks(source_id, target_id,
                                     TaskStatus(status) if status else None,
                                     TaskReadiness(readiness) if readiness else None)
    if not result.success:
        _fail(result.error.message)
    click.echo(f"🔀 Merged {source_id} into {target_id}: {result.data.title}")


@main.group()
def metadata():
    """Read and change task metadata (keys may use dot paths)."""
    pass


@metadata.command(name='get')
@click.argument('task_id')
@click.argument('key')
@click.pass_obj
def metadata_get(obj, task_id, key):
    """Print one metadata field as JSON."""
    result = obj.service.get_metadata_field(task_id, key)
    if not result.success:
        _fail(result.error.message)
    _echo_json(result.data)


def _change_metadata(obj, task_id, key, value, operation, message):
    result = obj.service.update_metadata(task_id, key, value, operation)
    if not result.success:
        _fail(result.error.message)
    click.echo(f"✅ {message}")


@metadata.command(name='set')
@click.argument('task_id')
@click.argument('key')
@click.argument('value')
@click.pass_obj
def metadata_set(obj, task_id, key, value):
    """Set KEY to VALUE (parsed as JSON when possible)."""
    _change_metadata(obj, task_id, key, _parse_value(value), "set", f"Set {key} on task {task_id}")


@metadata.command(name='remove')
@click.argument('task_id')
@click.argument('key')
@click.pass_obj
def metadata_remove(obj, task_id, key):
    """Remove KEY."""
    _change_metadata(obj, task_id, key, None, "remove", f"Removed {key} from task {task_id}")


@metadata.command(name='append')
@click.argument('task_id')
@click.argument('key')
@click.argument('value')
@click.pass_obj
def metadata_append(obj, task_id, key, value):
    """Append VALUE to the list stored at KEY."""
    _change_metadata(obj, task_id, key, _parse_value(value), "append", f"Appended to {key} on task {task_id}")


@main.command()
@click.option('--plan', 'plan_file', type=click.Path(dir_okay=False, path_type=Path), help='JSON plan file to apply')
@click.option('-i', '--interactive', is_flag=True, help='Walk open tasks one by one')
@click.option('--auto-merge', is_flag=True, help='Merge near-identical new tasks into existing ones')
@click.option('--dry-run', is_flag=True, help='Show what would happen without writing')
@click.option('--json', 'as_json', is_flag=True, help='Print the results as JSON')
@click.pass_obj
def triage(obj, plan_file, interactive, auto_merge, dry_run, as_json):
    """Apply a plan of task changes, or triage open tasks interactively."""
    if bool(plan_file) == interactive:
        _fail("Choose exactly one of --plan FILE or --interactive")

    if interactive:
        results = run_interactive(obj.service, dry_run=dry_run)
    else:
        try:
            plan = load_plan_file(plan_file)
        except TaskError as e:
            _fail(e.message)
        except TaskNestError as e:
            _fail(f"Cannot read plan: {e}")
        results = process_plan(obj.service, plan, auto_merge=auto_merge, dry_run=dry_run)

    if as_json:
        _echo_json(results.model_dump())
        return

    summary = results.summary()
    prefix = "💡 Dry run: " if dry_run else "✅ "
    click.echo(f"{prefix}{summary['added']} added, {summary['updated']} updated, "
               f"{summary['merged']} merged, {summary['skipped']} skipped, {summary['errors']} errors")
    for skipped in results.skipped:
        similar = ", ".join(s["id"] for s in skipped.get("similar_tasks", []))
        click.echo(f"   ⏭️  {skipped['title']}" + (f" (similar to {similar})" if similar else ""))
    for error in results.errors:
        click.echo(f"   ❌ {error.get('id') or error.get('title') or 'entry'}: {error['error']}")


@main.command()
@click.pass_obj
def doctor(obj):
    """Check that task numbering and parent links are consistent."""
    problems = obj.service.check()
    if not problems:
        click.echo(f"✅ {len(obj.service.store)} tasks, numbering is consistent")
        return
    click.echo(f"⚠️  Found {len(problems)} problem(s):")
    for problem in problems:
        click.echo(f"   - {problem}")
    click.get_current_context().exit(1)


if __name__ == "__main__":
    main()
