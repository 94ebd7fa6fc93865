"""dockpipe CLI entry point."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING

import typer
from rich.console import Console
from rich.table import Table

if TYPE_CHECKING:
    from dockpipe.compose.service import ComposeService
    from dockpipe.config.models import DockpipeConfig
    from dockpipe.images.service import ImageService
    from dockpipe.workflows.tasks import TaskRegistry

app = typer.Typer(
    name="dockpipe",
    help="dockpipe: build, test against compose stacks, then tag, save and publish Docker images",
    no_args_is_help=True,
)
console = Console()


@app.callback()
def main_callback(
    log_level: str = typer.Option("INFO", "--log-level", "-l", help="Logging level"),
) -> None:
    from dockpipe.logging_utils import configure_logging

    configure_logging(log_level)


def build_task_registry(
    config: DockpipeConfig,
    root: Path,
    image_service: ImageService,
    compose_service: ComposeService,
) -> TaskRegistry:
    """Register build, stack and configured command tasks for *config*."""
    from dockpipe.compose.tasks import register_stack_tasks
    from dockpipe.images.tasks import register_image_tasks
    from dockpipe.workflows.tasks import CommandTestTask, TaskRegistry

    registry = TaskRegistry()
    register_image_tasks(registry, config.images, image_service, root)
    register_stack_tasks(registry, config.stacks, compose_service, root / config.state_dir, root)
    for name, task in config.tasks.items():
        registry.register(
            CommandTestTask(
                name,
                task.command,
                cwd=root / task.cwd if task.cwd else root,
                env=task.env,
                reports_dir=root / task.reports_dir if task.reports_dir else None,
            )
        )
    return registry


@app.command("run")
def run_pipeline(
    pipeline: str = typer.Argument(help="Name of the pipeline to execute"),
    path: Path | None = typer.Option(None, "--path", "-p", help="Path to .dockpipe.yaml"),
) -> None:
    """Execute a named pipeline."""
    from dockpipe.compose.service import DockerComposeCli
    from dockpipe.config.loader import config_root, load_config
    from dockpipe.errors import DockpipeError, ServiceError
    from dockpipe.events.emitter import create_cli_emitter
    from dockpipe.images.service import DockerImageService
    from dockpipe.workflows.pipeline import PipelineRunner

    try:
        config = load_config(path=path)
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)

    if pipeline not in config.pipelines:
        console.print(f"[red]Unknown pipeline: {pipeline}[/red]")
        console.print(f"Available: {', '.join(config.pipelines.keys()) or 'none'}")
        raise typer.Exit(1)

    root = config_root(path)
    image_service = DockerImageService()
    compose_service = DockerComposeCli()
    registry = build_task_registry(config, root, image_service, compose_service)
    runner = PipelineRunner(
        config,
        registry,
        image_service=image_service,
        compose_service=compose_service,
        emitter=create_cli_emitter(config),
        base_dir=root,
    )

    try:
        result = asyncio.run(runner.run(pipeline))
    except DockpipeError as exc:
        console.print(f"\n[red bold]Pipeline '{pipeline}' failed[/red bold]")
        console.print(f"  [red]{exc}[/red]")
        cause = exc.__cause__
        while cause is not None:
            if isinstance(cause, ServiceError):
                console.print(f"  [yellow]Suggestion: {cause.suggestion}[/yellow]")
                break
            cause = cause.__cause__
        raise typer.Exit(1)

    context = result.context
    console.print(f"\n[bold]Pipeline:[/bold] {result.pipeline_name}")
    if context.built_image is not None:
        console.print(f"  [green]✓[/green] build ({context.built_image.name})")
    test_result = context.test_result
    if test_result is not None:
        icon = "[green]✓[/green]" if test_result.success else "[red]✗[/red]"
        console.print(
            f"  {icon} test: {test_result.executed} executed, {test_result.failure_count} failed, "
            f"{test_result.skipped} skipped, {test_result.total_count} total"
        )
    if context.applied_tags:
        console.print(f"  Tags applied: {', '.join(context.applied_tags)}")

    if result.success:
        console.print("\n[green bold]Pipeline completed successfully.[/green bold]")
    else:
        console.print("\n[red bold]Pipeline completed with test failures.[/red bold]")
        raise typer.Exit(1)


config_app = typer.Typer(name="config", help="Configuration commands")
app.add_typer(config_app)


@config_app.command("validate")
def config_validate(
    path: Path | None = typer.Option(None, "--path", "-p", help="Path to .dockpipe.yaml"),
) -> None:
    """Validate configuration file."""
    from urllib.parse import urlparse

    import yaml

    from dockpipe.config.loader import load_config
    from dockpipe.events.emitter import EVENT_TYPES
    from dockpipe.workflows.validation import PipelineValidator

    try:
        config = load_config(path=path)
        console.print("[green]✓[/green] YAML parses correctly")
        console.print("[green]✓[/green] Pydantic validation passes")
    except FileNotFoundError as exc:
        console.print(f"[red]✗ {exc}[/red]")
        raise typer.Exit(1)
    except yaml.YAMLError as exc:
        console.print(f"[red]✗ YAML parsing failed: {exc}[/red]")
        raise typer.Exit(1)
    except ValueError as exc:
        console.print("[green]✓[/green] YAML parses correctly")
        console.print(f"[red]✗ Pydantic validation failed: {exc}[/red]")
        raise typer.Exit(1)

    validator = PipelineValidator(config)
    errors: list[str] = []
    for pipeline in config.pipelines.values():
        errors.extend(validator.validate(pipeline))
        test = pipeline.test
        if test is not None and test.test_task and test.test_task not in config.tasks:
            console.print(
                f"[yellow]! Pipeline '{pipeline.name}': test task '{test.test_task}' is not defined under 'tasks'[/yellow]"
            )

    warnings: list[str] = []
    for i, wh in enumerate(config.webhooks):
        parsed = urlparse(wh.url)
        if not parsed.scheme or not parsed.netloc:
            errors.append(f"Webhook {i}: invalid URL '{wh.url}'")
        for evt in wh.events:
            if evt != "*" and evt not in EVENT_TYPES:
                warnings.append(f"Webhook {i}: unrecognized event type '{evt}'")

    if not errors:
        console.print(f"[green]✓[/green] {len(config.pipelines)} pipeline(s) reference known images and stacks")
        if config.webhooks:
            console.print(f"[green]✓[/green] {len(config.webhooks)} webhook(s) configured")
        for w in warnings:
            console.print(f"[yellow]! {w}[/yellow]")
        console.print("\n[green bold]Configuration is valid.[/green bold]")
    else:
        for err in errors:
            console.print(f"[red]✗ {err}[/red]")
        console.print(f"\n[red bold]{len(errors)} validation error(s) found.[/red bold]")
        raise typer.Exit(1)


@config_app.command("show")
def config_show(
    path: Path | None = typer.Option(None, "--path", "-p", help="Path to .dockpipe.yaml"),
) -> None:
    """Print resolved configuration."""
    from dockpipe.config.loader import load_config

    try:
        config = load_config(path=path)
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)

    console.print(f"[bold]{config.project.name}[/bold] v{config.project.version}\n")

    console.print("[bold]Images:[/bold]")
    for key, image in config.images.items():
        console.print(f"  {key}: {', '.join(image.references()) or '(no reference)'}")

    console.print("\n[bold]Stacks:[/bold]")
    for key, stack in config.stacks.items():
        console.print(f"  {key}: project {stack.effective_project_name}, files: {', '.join(stack.compose_files) or 'none'}")

    console.print("\n[bold]Pipelines:[/bold]")
    for key, pipeline in config.pipelines.items():
        steps = []
        if pipeline.build is not None:
            steps.append(f"build({pipeline.build.image})")
        if pipeline.test is not None:
            steps.append(f"test({pipeline.test.test_task}, {pipeline.test.lifecycle.value})")
        if pipeline.success_spec() is not None:
            steps.append("on_success")
        if pipeline.failure_spec() is not None:
            steps.append("on_failure")
        if pipeline.always is not None:
            steps.append("always")
        console.print(f"  {key}: {' → '.join(steps) or '(empty)'}")


state_app = typer.Typer(name="state", help="Compose stack state files")
app.add_typer(state_app)


@state_app.command("show")
def state_show(
    file: Path = typer.Argument(help="Path to a <stack>-state.json file"),
) -> None:
    """Show services and published ports from a stack state file."""
    import json

    from dockpipe.compose.state import read_state_file

    try:
        state = read_state_file(file)
    except (OSError, json.JSONDecodeError, KeyError, ValueError) as exc:
        console.print(f"[red]Cannot read state file {file}: {exc}[/red]")
        raise typer.Exit(1)

    table = Table(title=f"Stack {state.stack_name} (project {state.project_name})")
    table.add_column("Service", style="bold")
    table.add_column("Container")
    table.add_column("State")
    table.add_column("Ports")
    for name, info in state.services.items():
        ports = ", ".join(
            f"{p.host_port}->{p.container_port}/{p.protocol}" for p in info.published_ports
        ) or "-"
        table.add_row(name, info.container_name, info.state, ports)
    console.print(table)


def main() -> None:
    app()
