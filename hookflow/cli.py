#!/usr/bin/env python3
"""
Command line interface for hookflow.
"""

import asyncio
import json
import logging
from typing import Optional

import click
from rich.panel import Panel
from rich.table import Table

from .cli_utils import handle_errors, parse_key_values
from .config import (
    console, load_config, setup_logging, generate_config_example, set_config_value,
)
from .engine import WorkflowEngine
from .events import EVENT_KINDS
from .exit_codes import CommandError, USAGE_ERROR, WORKFLOW_FAILED
from .parser import WorkflowParser

logger = logging.getLogger(__name__)


def _build_engine(ctx) -> WorkflowEngine:
    config = ctx.obj['config']
    engine = WorkflowEngine.from_config(config)
    engine.load_workflows()
    engine.load_directory(config['workflows']['directory'])
    return engine


@click.group()
@click.version_option(package_name='hookflow')
@click.option('--config', 'config_path', type=click.Path(exists=True, dir_okay=False),
              help='Configuration file (defaults to ~/.hookflowrc)')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx, config_path: Optional[str], verbose: bool):
    """Event-triggered workflow engine."""
    config = load_config(config_path)
    setup_logging(config, verbose)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config
    ctx.obj['config_path'] = config_path


@cli.command(name='events')
def list_events():
    """List the event kinds that can trigger workflows."""
    for event in EVENT_KINDS:
        console.print(event)


@cli.command(name='trigger')
@click.argument('event')
@click.option('--data', '-d', multiple=True, help='Event data (key=value)')
@click.option('--project', '-p', type=click.Path(), help='Project path of the event')
@click.option('--json', 'as_json', is_flag=True, help='Print results as JSON')
@click.pass_context
@handle_errors
def trigger_event(ctx, event: str, data: tuple, project: Optional[str], as_json: bool):
    """Dispatch an event to every matching workflow.

    Examples:
        hookflow trigger FileChange -d filePath=src/app.py

        hookflow trigger GitCommit -d branch=main -p ~/code/app --json
    """
    if event not in EVENT_KINDS:
        raise CommandError(
            f"Unknown event '{event}'. Available: {', '.join(EVENT_KINDS)}", USAGE_ERROR
        )

    engine = _build_engine(ctx)
    results = asyncio.run(engine.process_event(event, parse_key_values(data), project))

    if as_json:
        click.echo(json.dumps({
            'event': event,
            'processedWorkflows': len(results),
            'results': [r.to_dict() for r in results],
        }, indent=2))
    else:
        if not results:
            console.print(f"[yellow]No workflows matched {event}[/yellow]")
        for result in results:
            _display_workflow_result(result)

    if any(not r.success for r in results):
        ctx.exit(WORKFLOW_FAILED)


@cli.command(name='test')
@click.argument('workflow_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--event', '-e', help='Event kind (defaults to the trigger event)')
@click.option('--data', '-d', multiple=True, help='Event data (key=value)')
@click.option('--project', '-p', type=click.Path(), help='Project path of the event')
@click.pass_context
@handle_errors
def test_workflow(ctx, workflow_file: str, event: Optional[str], data: tuple,
                  project: Optional[str]):
    """Run a workflow file against test data without registering it.

    Examples:
        hookflow test lint.yaml -d filePath=foo.py
    """
    workflow = WorkflowParser.load_workflow(workflow_file)
    engine = WorkflowEngine()
    result = asyncio.run(engine.test_workflow(workflow, {
        'event': event,
        'data': parse_key_values(data),
        'projectPath': project,
    }))
    _display_workflow_result(result)
    if not result.success:
        ctx.exit(WORKFLOW_FAILED)


@cli.command(name='validate')
@click.argument('workflow_file', type=click.Path(exists=True, dir_okay=False))
@handle_errors
def validate_workflow(workflow_file: str):
    """Validate a workflow definition file."""
    workflow = WorkflowParser.load_workflow(workflow_file)
    is_valid, errors = WorkflowParser.validate(workflow)

    if not is_valid:
        console.print(f"[red]✗[/red] Workflow has {len(errors)} problem(s):")
        for error in errors:
            console.print(f"  • {error}")
        raise CommandError("Validation failed", USAGE_ERROR)

    console.print("[green]✓[/green] Workflow is valid")
    console.print(f"\nWorkflow: {workflow.name}")
    console.print(f"Trigger: {workflow.trigger.event} ({workflow.trigger.condition})")
    console.print(f"Steps: {len(workflow.steps)}")


@cli.command(name='import')
@click.argument('workflow_file', type=click.Path(exists=True, dir_okay=False))
@click.pass_context
@handle_errors
def import_workflow(ctx, workflow_file: str):
    """Save a workflow definition file into the database."""
    workflow = WorkflowParser.load_workflow(workflow_file)
    engine = WorkflowEngine.from_config(ctx.obj['config'])
    created = engine.save_workflow(workflow)
    action = "Imported" if created else "Updated"
    console.print(f"[green]✓[/green] {action} workflow {workflow.id} ({workflow.name})")


@cli.command(name='enable')
@click.argument('workflow_id')
@click.pass_context
@handle_errors
def enable_workflow(ctx, workflow_id: str):
    """Enable a stored workflow."""
    engine = WorkflowEngine.from_config(ctx.obj['config'])
    workflow = engine.set_workflow_enabled(workflow_id, True)
    console.print(f"[green]✓[/green] Enabled workflow {workflow.id} ({workflow.name})")


@cli.command(name='disable')
@click.argument('workflow_id')
@click.pass_context
@handle_errors
def disable_workflow(ctx, workflow_id: str):
    """Disable a stored workflow without deleting it."""
    engine = WorkflowEngine.from_config(ctx.obj['config'])
    workflow = engine.set_workflow_enabled(workflow_id, False)
    console.print(f"[yellow]⊘[/yellow] Disabled workflow {workflow.id} ({workflow.name})")


@cli.command(name='delete')
@click.argument('workflow_id')
@click.option('--yes', '-y', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
@handle_errors
def delete_workflow(ctx, workflow_id: str, yes: bool):
    """Delete a stored workflow."""
    if not yes:
        click.confirm(f"Delete workflow {workflow_id}?", abort=True)
    engine = WorkflowEngine.from_config(ctx.obj['config'])
    name = engine.delete_workflow(workflow_id)
    console.print(f"[green]✓[/green] Deleted workflow {workflow_id} ({name})")


@cli.command(name='list')
@click.pass_context
@handle_errors
def list_workflows(ctx):
    """List registered workflows."""
    engine = _build_engine(ctx)
    workflows = engine.list_workflows()

    if not workflows:
        console.print("[yellow]No workflows registered[/yellow]")
        return

    table = Table(title="Workflows")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Event", style="magenta")
    table.add_column("Condition")
    table.add_column("Steps", justify="right")
    table.add_column("Mode")
    table.add_column("Project")

    for workflow in workflows:
        table.add_row(
            workflow.id,
            workflow.name,
            workflow.trigger.event,
            workflow.trigger.condition,
            str(len(workflow.steps)),
            'parallel' if workflow.settings.parallel else 'sequential',
            workflow.project_scope or 'global',
        )

    console.print(table)


@cli.command(name='stats')
@click.option('--days', type=int, default=None, help='Window in days')
@click.pass_context
@handle_errors
def show_statistics(ctx, days: Optional[int]):
    """Show workflow execution statistics."""
    config = ctx.obj['config']
    days = days or config['logs']['statistics_days']
    engine = _build_engine(ctx)
    rows = engine.get_execution_statistics(days)

    table = Table(title=f"Executions in the last {days} days")
    table.add_column("Workflow", style="cyan")
    table.add_column("Enabled")
    table.add_column("Runs", justify="right")
    table.add_column("Succeeded", justify="right")
    table.add_column("Avg (ms)", justify="right")
    table.add_column("Last run")

    for row in rows:
        avg = row['avg_duration']
        table.add_row(
            row['name'],
            '✓' if row['enabled'] else '✗',
            str(row['execution_count']),
            str(row['success_count'] or 0),
            f"{avg:.0f}" if avg is not None else '-',
            row['last_execution'] or '-',
        )

    console.print(table)


@cli.command(name='logs')
@click.argument('workflow_id')
@click.option('--limit', '-n', type=int, default=20, help='Number of entries')
@click.option('--offset', type=int, default=0, help='Entries to skip')
@click.option('--type', 'event_type',
              type=click.Choice(['execution', 'creation', 'update', 'deletion']),
              help='Only show entries of this type')
@click.pass_context
@handle_errors
def show_logs(ctx, workflow_id: str, limit: int, offset: int, event_type: Optional[str]):
    """Show recent log entries of a workflow."""
    engine = WorkflowEngine.from_config(ctx.obj['config'])
    entries = engine.get_workflow_logs(workflow_id, limit=limit, offset=offset,
                                       event_type=event_type)

    if not entries:
        console.print(f"[yellow]No log entries for {workflow_id}[/yellow]")
        return

    table = Table(title=f"Log of {workflow_id}")
    table.add_column("When")
    table.add_column("Type")
    table.add_column("Event", style="magenta")
    table.add_column("Status")
    table.add_column("Duration (ms)", justify="right")
    table.add_column("Error")

    for entry in entries:
        status = "[green]success[/green]" if entry.status == 'success' else "[red]error[/red]"
        table.add_row(
            entry.created_at or '-',
            entry.event_type,
            entry.metadata.get('event', '-'),
            status,
            str(entry.execution_time) if entry.execution_time is not None else '-',
            entry.error_message or '',
        )

    console.print(table)
    total = engine.count_workflow_logs(workflow_id, event_type)
    console.print(f"Showing {len(entries)} of {total} entries")


@cli.command(name='cleanup')
@click.option('--retention-days', type=int, default=None,
              help='Delete log entries older than this many days')
@click.pass_context
@handle_errors
def cleanup_logs(ctx, retention_days: Optional[int]):
    """Delete old execution log entries."""
    config = ctx.obj['config']
    retention_days = retention_days or config['logs']['retention_days']
    engine = WorkflowEngine.from_config(config)
    deleted = engine.cleanup_old_logs(retention_days)
    console.print(f"Cleaned up {deleted} old workflow log(s)")


@cli.command(name='example')
@click.argument('kind', type=click.Choice(['lint', 'commit', 'session']), default='lint')
def show_example(kind: str):
    """Print an example workflow definition."""
    click.echo(WorkflowParser.create_example_workflow(kind))


@cli.group(name='config')
def config_group():
    """Configuration management commands."""
    pass


@config_group.command(name='show')
@click.pass_context
def show_config(ctx):
    """Show the effective configuration as JSON."""
    click.echo(json.dumps(ctx.obj['config'], indent=2))


@config_group.command(name='generate')
@handle_errors
def generate_config():
    """Write an example configuration file to ~/.hookflowrc.example."""
    generate_config_example()


@config_group.command(name='set')
@click.argument('key')
@click.argument('value')
@click.pass_context
@handle_errors
def set_config(ctx, key: str, value: str):
    """Set a dotted KEY (e.g. logs.retention_days) to VALUE.

    Writes the file given with --config, or the user's ~/.hookflowrc.
    """
    try:
        path = set_config_value(key, value, ctx.obj.get('config_path'))
    except ValueError as e:
        raise CommandError(str(e), USAGE_ERROR)
    console.print(f"[green]✓[/green] Set {key} in {path}")


def _display_workflow_result(result):
    """Display a workflow result as a rich panel."""
    table = Table(show_header=True, header_style="bold")
    table.add_column("Step")
    table.add_column("Status")
    table.add_column("Time (ms)", justify="right")
    table.add_column("Output / Error")

    for step in result.step_results:
        if step.skipped:
            status = "[dim]⊘ skipped[/dim]"
        elif step.success:
            status = "[green]✓ success[/green]"
        elif step.continue_on_error:
            status = "[yellow]✗ failed (continued)[/yellow]"
        else:
            status = "[red]✗ failed[/red]"

        detail = step.output if step.success else (step.error or '')
        if len(detail) > 80:
            detail = detail[:77] + '...'
        table.add_row(step.step_name, status, str(step.execution_time), detail)

    title = f"{result.workflow_name} - {'[green]success[/green]' if result.success else '[red]failed[/red]'}"
    console.print(Panel(table, title=title, subtitle=f"{result.execution_time}ms"))
    if result.error:
        console.print(f"[red]{result.error}[/red]")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
