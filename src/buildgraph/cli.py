from __future__ import annotations

import signal
from typing import List, Optional

import typer
from dotenv import load_dotenv

from .build import Build
from .errors import ConfigurationError, CycleDetected, NotFound
from .executor import CancellationToken
from .logging import get_logger


app = typer.Typer(add_completion=False, help="Build-graph task orchestrator CLI")
log = get_logger("buildgraph.cli")


def _load(config: str) -> Build:
    try:
        return Build.from_file(config)
    except ConfigurationError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=1)


@app.command("tasks")
def list_tasks(
    config: str = typer.Option("build.yaml", help="Path to the build declaration"),
):
    """List registered tasks."""
    build = _load(config)
    try:
        build.evaluate()
    except (ConfigurationError, CycleDetected) as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=1)
    typer.echo("Tasks:")
    for name in sorted(build.executor.tasks):
        spec = build.executor.tasks[name]
        line = f"- {name}"
        if spec.description:
            line += f": {spec.description}"
        typer.echo(line)


@app.command("projects")
def list_projects(
    config: str = typer.Option("build.yaml", help="Path to the build declaration"),
):
    """Print projects in evaluation order with their build directories."""
    build = _load(config)
    try:
        order = build.scheduler.compute_order()
    except CycleDetected as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=1)
    for path in order:
        typer.echo(f"{path}\t{build.build_dir(path)}")


@app.command()
def run(
    names: List[str] = typer.Argument(..., help="Task name(s) to run"),
    config: str = typer.Option("build.yaml", help="Path to the build declaration"),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Evaluate and print the task order, execute nothing"
    ),
    continue_on_failure: bool = typer.Option(
        False, "--continue-on-failure", help="Keep running tasks independent of a failure"
    ),
    exclude: Optional[List[str]] = typer.Option(
        None, "--exclude", "-x", help="Task to leave out, with dependencies only it needs"
    ),
    resume: str = typer.Option("", help="Run id whose succeeded tasks are reused"),
):
    """Run tasks and their dependencies. Exit code is the number of failed tasks."""
    build = _load(config)
    exclude = exclude or []
    try:
        if dry_run:
            for name in build.plan(names, exclude=exclude):
                typer.echo(name)
            raise typer.Exit(code=0)

        token = CancellationToken()

        def _on_sigint(signum, frame):
            log.warning("Interrupt received; stopping after the current task")
            token.cancel()

        previous = signal.signal(signal.SIGINT, _on_sigint)
        try:
            result = build.run(
                names,
                continue_on_failure=continue_on_failure,
                cancel=token,
                exclude=exclude,
                resume_run=resume or None,
            )
        finally:
            signal.signal(signal.SIGINT, previous)
    except (ConfigurationError, CycleDetected, NotFound) as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=1)

    for name, err in result.failed.items():
        typer.echo(f"FAILED {name}: {err.cause}", err=True)
    for name, reason in result.skipped.items():
        typer.echo(f"SKIPPED {name}: {reason}", err=True)
    typer.echo(
        f"{len(result.succeeded)}/{len(result.order)} task(s) succeeded (run {result.run_id})"
    )
    raise typer.Exit(code=result.exit_code)


def main():  # pragma: no cover
    load_dotenv()
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
