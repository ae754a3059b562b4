"""Command line entry point for Garden."""

import json
import sys
from typing import Optional

import click

from artifacts.store import sanitize_name
from db.session import create_session_factory
from orchestrator import InfrastructureError, Orchestrator, PipelineAbort, ProgressStore, Stage, resolve_stage_sequence
from utils.config import Config, load_config
from utils.logger import setup_logger


def _load(config_path: Optional[str]) -> Config:
    try:
        config = load_config(config_path)
    except FileNotFoundError as exc:
        raise click.ClickException(str(exc)) from exc
    setup_logger(
        level=config.logging.level,
        log_format=config.logging.format,
        log_file=config.logging.file,
    )
    return config


def _progress_store(config: Config) -> ProgressStore:
    return ProgressStore(
        create_session_factory(config.database),
        resolve_stage_sequence(config.pipeline.stages),
    )


def _task_payload(task) -> dict:
    return {
        "id": task.id,
        "name": task.name,
        "stage": task.stage.value,
        "error": task.error,
        "created_at": task.created_at.isoformat() if task.created_at else None,
        "modified_at": task.modified_at.isoformat() if task.modified_at else None,
    }


@click.group()
@click.option("--config", "config_path", default=None, envvar="GARDEN_CONFIG",
              help="Path to config.yaml.")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str]) -> None:
    """Grow gRPC services from one-line descriptions."""
    ctx.obj = config_path


@cli.command("serve")
@click.option("--poll-interval", default=1.0, show_default=True, type=float)
@click.pass_obj
def serve(config_path: Optional[str], poll_interval: float) -> None:
    """Resume unfinished tasks and pick up new ones until interrupted."""
    config = _load(config_path)
    try:
        orchestrator = Orchestrator.from_config(config)
        orchestrator.serve_forever(poll_interval=poll_interval)
    except InfrastructureError as exc:
        raise click.ClickException(f"Startup check failed: {exc}") from exc
    except (KeyError, ValueError) as exc:
        raise click.ClickException(f"Invalid configuration: {exc}") from exc


@cli.command("create")
@click.argument("name")
@click.argument("description")
@click.option("--wait", is_flag=True, default=False,
              help="Run the task in this process until it stops.")
@click.pass_obj
def create(config_path: Optional[str], name: str, description: str, wait: bool) -> None:
    """Register a task named NAME that does DESCRIPTION."""
    config = _load(config_path)
    try:
        if not wait:
            task = _progress_store(config).create(sanitize_name(name), description)
            click.echo(f"Queued task {task.id} ({task.name})")
            return
        orchestrator = Orchestrator.from_config(config)
        orchestrator.preflight()
        task = orchestrator.submit(name, description)
    except InfrastructureError as exc:
        raise click.ClickException(f"Startup check failed: {exc}") from exc
    except (KeyError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc
    except PipelineAbort as exc:
        raise click.ClickException(f"Task could not start: {exc}") from exc

    if not orchestrator.owns(task.id):
        click.echo(f"Task {task.id} ({task.name}) was picked up by a running daemon")
        return
    click.echo(f"Started task {task.id} ({task.name})")
    orchestrator.wait()
    final = orchestrator.progress.get(task.id)
    click.echo(json.dumps(_task_payload(final), indent=2))
    if final.stage is not Stage.DONE:
        sys.exit(1)


@cli.command("list")
@click.pass_obj
def list_tasks(config_path: Optional[str]) -> None:
    """Show every task and its stage."""
    config = _load(config_path)
    for task in _progress_store(config).list_tasks():
        line = f"{task.id:>4}  {task.name:<32} {task.stage.value}"
        if task.error:
            line += f"  (error: {task.error.splitlines()[0]})"
        click.echo(line)


@cli.command("status")
@click.argument("task_id", type=int)
@click.pass_obj
def status(config_path: Optional[str], task_id: int) -> None:
    """Show one task as JSON."""
    config = _load(config_path)
    task = _progress_store(config).get(task_id)
    if task is None:
        raise click.ClickException(f"No task with id {task_id}")
    click.echo(json.dumps(_task_payload(task), indent=2))


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
