"""taskweave CLI: a thin click surface over :mod:`taskweave.operations`.

Installed as the ``taskweave`` console_script.
"""

from __future__ import annotations

import asyncio
import functools
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click

from taskweave import __version__, operations
from taskweave.catalog import available_models
from taskweave.config import ROLE_NAMES, load_config, save_config, set_role_model
from taskweave.errors import TaskweaveError, clean_error_message
from taskweave.log import ConsoleLogger, LogConfig, Logger
from taskweave.operations import OperationResult, Project
from taskweave.tasks import graph
from taskweave.tasks.model import PRIORITIES, TASK_STATUSES

CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])

ProjectFactory = Callable[..., Project]


def _logger(ctx: click.Context) -> Logger | None:
    cfg: LogConfig | None = ctx.obj.get("log_config")
    return ConsoleLogger(cfg) if cfg is not None else None


def _project(ctx: click.Context) -> Project:
    root: Path = ctx.obj["root"]
    factory: ProjectFactory = ctx.obj.get("project_factory") or Project.open
    return factory(root, logger=_logger(ctx))


def _guarded(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Report any taskweave error as one line on stderr and exit 1."""

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except TaskweaveError as exc:
            ConsoleLogger(LogConfig()).error(clean_error_message(exc))
            sys.exit(1)

    return wrapper


def _report(result: OperationResult) -> None:
    if result.telemetry is not None:
        t = result.telemetry
        click.echo(
            f"Tokens: {t.input_tokens} in / {t.output_tokens} out  "
            f"Cost: {t.total_cost:.6f} {t.currency}  ({t.provider_name}/{t.model_used})"
        )


def _parse_dependencies(raw: str) -> list[int]:
    if not raw:
        return []
    try:
        return [int(part) for part in raw.split(",") if part.strip()]
    except ValueError:
        raise click.BadParameter("Dependencies must be comma-separated task IDs (e.g. 1,3).", param_hint="--dependencies") from None


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option(
    "--project-root",
    type=click.Path(file_okay=False, path_type=Path),
    default=".",
    show_default=True,
    help="Project directory containing .taskweave/",
)
@click.option("-v", "--verbose", is_flag=True, help="Show debug output")
@click.option("--silent", is_flag=True, help="Only print errors")
@click.version_option(__version__, prog_name="taskweave")
@click.pass_context
def main(ctx: click.Context, project_root: Path, verbose: bool, silent: bool) -> None:
    """taskweave: AI-assisted task graph management.

    \b
    EXAMPLES:
      taskweave parse-prd PRD.md --num-tasks 8
      taskweave expand --id 3
      taskweave update-task --id 4 --prompt "Use Postgres instead of SQLite"
      taskweave set-status --id 4.2 --status done
      taskweave next
    """
    ctx.ensure_object(dict)
    ctx.obj["root"] = project_root.resolve()
    if verbose or silent:
        ctx.obj["log_config"] = LogConfig(verbose=verbose, silent=silent)


# ── AI commands ──────────────────────────────────────────────────


@main.command("parse-prd")
@click.argument("prd_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--num-tasks", "-n", type=int, default=10, show_default=True, help="Approximate number of tasks")
@click.option("--append", is_flag=True, help="Add to the tag's existing tasks")
@click.option("--force", is_flag=True, help="Overwrite the tag's existing tasks")
@click.option("--research", is_flag=True, help="Use the research role")
@click.option("--tag", default=None, help="Target tag (default: current tag)")
@click.pass_context
@_guarded
def parse_prd_cmd(ctx: click.Context, prd_file: Path, num_tasks: int, append: bool, force: bool, research: bool, tag: str | None) -> None:
    """Generate tasks from a PRD file."""
    if append and force:
        raise click.UsageError("--append and --force cannot be combined.")
    project = _project(ctx)
    result = asyncio.run(
        operations.parse_prd(project, prd_file, num_tasks=num_tasks, tag=tag, append=append, force=force, research=research)
    )
    for task in result.value:
        click.echo(f"{task.id}: {task.title}")
    _report(result)


@main.command("update-task")
@click.option("--id", "task_id", type=int, required=True, help="Task ID")
@click.option("--prompt", "-p", required=True, help="What changed")
@click.option("--research", is_flag=True, help="Use the research role")
@click.option("--tag", default=None)
@click.pass_context
@_guarded
def update_task_cmd(ctx: click.Context, task_id: int, prompt: str, research: bool, tag: str | None) -> None:
    """Rewrite one task with new context."""
    project = _project(ctx)
    result = asyncio.run(operations.update_task(project, task_id, prompt, tag=tag, research=research))
    if result.value is None:
        return
    click.echo(f"{result.value.id}: {result.value.title}")
    for w in result.warnings:
        click.echo(f"  corrected: {w.message}")
    _report(result)


@main.command("update-tasks")
@click.option("--from", "from_id", type=int, required=True, help="First task ID to update")
@click.option("--prompt", "-p", required=True, help="What changed")
@click.option("--research", is_flag=True, help="Use the research role")
@click.option("--tag", default=None)
@click.pass_context
@_guarded
def update_tasks_cmd(ctx: click.Context, from_id: int, prompt: str, research: bool, tag: str | None) -> None:
    """Rewrite every unfinished task from an ID onward."""
    project = _project(ctx)
    result = asyncio.run(operations.update_tasks(project, from_id, prompt, tag=tag, research=research))
    for task in result.value:
        click.echo(f"{task.id}: {task.title}")
    for w in result.warnings:
        click.echo(f"  corrected: {w.message}")
    _report(result)


@main.command("update-subtask")
@click.option("--id", "ref", required=True, help="Subtask ID (parent.sub, e.g. 5.2)")
@click.option("--prompt", "-p", required=True, help="Notes to add")
@click.option("--research", is_flag=True, help="Use the research role")
@click.option("--tag", default=None)
@click.pass_context
@_guarded
def update_subtask_cmd(ctx: click.Context, ref: str, prompt: str, research: bool, tag: str | None) -> None:
    """Append timestamped notes to a subtask."""
    project = _project(ctx)
    result = asyncio.run(operations.update_subtask(project, ref, prompt, tag=tag, research=research))
    if result.value is not None:
        click.echo(f"{ref}: {result.value.title}")
        _report(result)


@main.command("add-task")
@click.option("--prompt", "-p", required=True, help="Description of the new task")
@click.option("--dependencies", "-d", default="", help="Comma-separated task IDs")
@click.option("--priority", type=click.Choice(PRIORITIES), default=None)
@click.option("--research", is_flag=True, help="Use the research role")
@click.option("--tag", default=None)
@click.pass_context
@_guarded
def add_task_cmd(ctx: click.Context, prompt: str, dependencies: str, priority: str | None, research: bool, tag: str | None) -> None:
    """Create a task from a description."""
    deps = _parse_dependencies(dependencies)
    project = _project(ctx)
    result = asyncio.run(
        operations.add_task(project, prompt, dependencies=deps, priority=priority, tag=tag, research=research)
    )
    click.echo(f"{result.value.id}: {result.value.title}")
    _report(result)


@main.command("expand")
@click.option("--id", "task_id", type=int, required=True, help="Task ID")
@click.option("--num", type=int, default=None, help="Number of subtasks")
@click.option("--prompt", "-p", default="", help="Extra context")
@click.option("--force", is_flag=True, help="Replace pending subtasks")
@click.option("--research", is_flag=True, help="Use the research role")
@click.option("--tag", default=None)
@click.pass_context
@_guarded
def expand_cmd(ctx: click.Context, task_id: int, num: int | None, prompt: str, force: bool, research: bool, tag: str | None) -> None:
    """Break a task into subtasks."""
    project = _project(ctx)
    result = asyncio.run(
        operations.expand_task(project, task_id, num_subtasks=num, context=prompt, force=force, tag=tag, research=research)
    )
    for st in result.value or []:
        click.echo(f"{task_id}.{st.id}: {st.title}")
    if result.value is not None:
        _report(result)


# ── direct commands ──────────────────────────────────────────────


@main.command("set-status")
@click.option("--id", "refs", required=True, help="Task/subtask IDs, comma-separated (e.g. 3,4.1)")
@click.option("--status", "-s", type=click.Choice(TASK_STATUSES), required=True)
@click.option("--tag", default=None)
@click.pass_context
@_guarded
def set_status_cmd(ctx: click.Context, refs: str, status: str, tag: str | None) -> None:
    """Set the status of tasks or subtasks."""
    updated = operations.set_status(_project(ctx), refs, status, tag=tag)
    click.echo(f"Updated {', '.join(updated)} -> {status}")


@main.command("remove-task")
@click.option("--id", "refs", required=True, help="Task/subtask IDs, comma-separated")
@click.option("--tag", default=None)
@click.pass_context
@_guarded
def remove_task_cmd(ctx: click.Context, refs: str, tag: str | None) -> None:
    """Remove tasks or subtasks and clean up dependencies."""
    removed = operations.remove(_project(ctx), refs, tag=tag)
    click.echo(f"Removed {', '.join(removed)}")


@main.command("next")
@click.option("--tag", default=None)
@click.pass_context
@_guarded
def next_cmd(ctx: click.Context, tag: str | None) -> None:
    """Show the next task to work on."""
    task = operations.next_task(_project(ctx), tag=tag)
    if task is None:
        click.echo("No eligible task found.")
        return
    click.echo(f"Next: {task.id}: {task.title} [{task.priority}]")


@main.command("fix-dependencies")
@click.option("--tag", default=None)
@click.pass_context
@_guarded
def fix_dependencies_cmd(ctx: click.Context, tag: str | None) -> None:
    """Remove invalid and circular dependencies."""
    fixed = operations.fix_dependencies(_project(ctx), tag=tag)
    if not fixed:
        click.echo("No dependency issues found.")
    for issue in fixed:
        click.echo(f"Fixed: {issue}")


@main.command("add-dependency")
@click.option("--id", "ref", required=True, help="Task or subtask that gains the dependency")
@click.option("--depends-on", required=True, help="Task or subtask it depends on")
@click.option("--tag", default=None)
@click.pass_context
@_guarded
def add_dependency_cmd(ctx: click.Context, ref: str, depends_on: str, tag: str | None) -> None:
    """Add a dependency, refusing missing targets and cycles."""
    if operations.add_dependency(_project(ctx), ref, depends_on, tag=tag):
        click.echo(f"{ref} now depends on {depends_on}")


@main.command("remove-dependency")
@click.option("--id", "ref", required=True, help="Task or subtask to edit")
@click.option("--depends-on", required=True, help="Dependency to drop")
@click.option("--tag", default=None)
@click.pass_context
@_guarded
def remove_dependency_cmd(ctx: click.Context, ref: str, depends_on: str, tag: str | None) -> None:
    """Remove a dependency."""
    if operations.remove_dependency(_project(ctx), ref, depends_on, tag=tag):
        click.echo(f"{ref} no longer depends on {depends_on}")


@main.command("add-subtask")
@click.option("--parent", "parent_id", type=int, required=True, help="Parent task ID")
@click.option("--task-id", "from_task", type=int, default=None, help="Existing task to convert into a subtask")
@click.option("--title", "-t", default="", help="Title of a new subtask")
@click.option("--description", "-d", default="")
@click.option("--details", default="")
@click.option("--dependencies", default="", help="Comma-separated IDs (sibling subtask ids or N.M)")
@click.option("--status", "-s", type=click.Choice(TASK_STATUSES), default="pending", show_default=True)
@click.option("--tag", default=None)
@click.pass_context
@_guarded
def add_subtask_cmd(
    ctx: click.Context,
    parent_id: int,
    from_task: int | None,
    title: str,
    description: str,
    details: str,
    dependencies: str,
    status: str,
    tag: str | None,
) -> None:
    """Add a subtask, or move an existing task under a parent."""
    if from_task is None and not title:
        raise click.UsageError("Either --task-id or --title is required.")
    subtask = operations.add_subtask(
        _project(ctx),
        parent_id,
        from_task=from_task,
        title=title,
        description=description,
        details=details,
        status=status,
        dependencies=graph.split_refs(dependencies),
        tag=tag,
    )
    click.echo(f"{parent_id}.{subtask.id}: {subtask.title}")


@main.command("remove-subtask")
@click.option("--id", "refs", required=True, help="Subtask IDs, comma-separated (e.g. 5.2,5.3)")
@click.option("--convert", is_flag=True, help="Turn the subtask into a standalone task")
@click.option("--tag", default=None)
@click.pass_context
@_guarded
def remove_subtask_cmd(ctx: click.Context, refs: str, convert: bool, tag: str | None) -> None:
    """Remove subtasks, optionally keeping them as tasks."""
    project = _project(ctx)
    for ref in graph.split_refs(refs):
        task = operations.remove_subtask(project, ref, convert=convert, tag=tag)
        if task is not None:
            click.echo(f"{ref} -> task {task.id}: {task.title}")
        else:
            click.echo(f"Removed {ref}")


@main.command("clear-subtasks")
@click.option("--id", "refs", default=None, help="Task IDs, comma-separated")
@click.option("--all", "all_tasks", is_flag=True, help="Clear subtasks of every task")
@click.option("--tag", default=None)
@click.pass_context
@_guarded
def clear_subtasks_cmd(ctx: click.Context, refs: str | None, all_tasks: bool, tag: str | None) -> None:
    """Delete all subtasks of the given tasks."""
    if not refs and not all_tasks:
        raise click.UsageError("Pass --id or --all.")
    cleared = operations.clear_subtasks(_project(ctx), None if all_tasks else refs, tag=tag)
    if not cleared:
        click.echo("No subtasks to clear.")
    for task_id, count in cleared.items():
        click.echo(f"Cleared {count} subtasks from task {task_id}")


# ── tags ─────────────────────────────────────────────────────────


@main.group("tags", invoke_without_command=True)
@click.pass_context
@_guarded
def tags_group(ctx: click.Context) -> None:
    """List and manage tags."""
    if ctx.invoked_subcommand is not None:
        return
    project = _project(ctx)
    doc = project.store.load()
    current = project.resolve_tag(None)
    for s in graph.list_tags(doc, current):
        marker = "*" if s.is_current else " "
        click.echo(f"{marker} {s.name}  {s.completed}/{s.task_count} done  {s.description}")


@tags_group.command("add")
@click.argument("name")
@click.option("--copy-from", default=None, help="Copy tasks from this tag")
@click.option("--description", "-d", default="")
@click.pass_context
@_guarded
def tags_add(ctx: click.Context, name: str, copy_from: str | None, description: str) -> None:
    project = _project(ctx)
    with project.store.edit() as doc:
        graph.add_tag(doc, name, description=description, copy_from=copy_from)
    click.echo(f"Created tag '{name}'")


@tags_group.command("delete")
@click.argument("name")
@click.pass_context
@_guarded
def tags_delete(ctx: click.Context, name: str) -> None:
    project = _project(ctx)
    with project.store.edit() as doc:
        count = graph.delete_tag(doc, name)
    if project.resolve_tag(None) == name:
        graph.use_tag(project.state_file, project.store.load(), project.config.settings.default_tag)
    click.echo(f"Deleted tag '{name}' ({count} tasks)")


@tags_group.command("rename")
@click.argument("old")
@click.argument("new")
@click.pass_context
@_guarded
def tags_rename(ctx: click.Context, old: str, new: str) -> None:
    project = _project(ctx)
    with project.store.edit() as doc:
        graph.rename_tag(doc, old, new)
    click.echo(f"Renamed tag '{old}' to '{new}'")


@tags_group.command("use")
@click.argument("name")
@click.pass_context
@_guarded
def tags_use(ctx: click.Context, name: str) -> None:
    project = _project(ctx)
    graph.use_tag(project.state_file, project.store.load(), name)
    click.echo(f"Switched to tag '{name}'")


# ── models ───────────────────────────────────────────────────────


@main.command("models")
@click.option("--set-main", default=None, metavar="PROVIDER:MODEL")
@click.option("--set-research", default=None, metavar="PROVIDER:MODEL")
@click.option("--set-fallback", default=None, metavar="PROVIDER:MODEL")
@click.option("--list-available", is_flag=True, help="Show models in the catalog")
@click.pass_context
@_guarded
def models_cmd(
    ctx: click.Context,
    set_main: str | None,
    set_research: str | None,
    set_fallback: str | None,
    list_available: bool,
) -> None:
    """Show or change the model bound to each role."""
    root: Path = ctx.obj["root"]
    logger = _logger(ctx) or ConsoleLogger()
    cfg = load_config(root)

    changes = {"main": set_main, "research": set_research, "fallback": set_fallback}
    changed = False
    for role, spec in changes.items():
        if not spec:
            continue
        provider, sep, model_id = spec.partition(":")
        if not sep or not provider or not model_id:
            raise click.BadParameter(f"Expected PROVIDER:MODEL, got '{spec}'", param_hint=f"--set-{role}")
        cfg = set_role_model(cfg, role, provider, model_id, logger=logger)
        changed = True
    if changed:
        save_config(root, cfg)
        logger.success("Model configuration updated")

    for role in ROLE_NAMES:
        b = cfg.binding(role)
        model = f"{b.provider}/{b.model_id}" if b.is_configured else "(not set)"
        click.echo(f"{role:<9} {model}")

    if list_available:
        for provider, info in available_models():
            tools = "" if info.supports_tools else "  (no tool use)"
            click.echo(f"  {provider}:{info.model_id}  ${info.input_per_1m}/${info.output_per_1m} per 1M{tools}")
