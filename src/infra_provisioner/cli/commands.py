"""CLI command implementations."""

from __future__ import annotations

import contextlib
import os
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Literal

import typer

from infra_provisioner.cli import app
from infra_provisioner.cli.errors import handle_error

if TYPE_CHECKING:
    from collections.abc import Iterator

    from infra_provisioner.config.schema import Config
    from infra_provisioner.engine.types import ApplyResult, Plan

DEFAULT_CONFIG = Path("infra-provisioner.yaml")

ConfigPath = Annotated[
    Path,
    typer.Option("--config", "-c", help="Path to the configuration file."),
]

NoColor = Annotated[
    bool,
    typer.Option("--no-color", help="Disable colored output."),
]

AutoApprove = Annotated[
    bool,
    typer.Option("--auto-approve", help="Skip interactive approval."),
]

Parallelism = Annotated[
    int | None,
    typer.Option(
        "--parallelism",
        "-p",
        min=1,
        help="Run up to N independent operations at once (overrides the config).",
    ),
]

LockTimeout = Annotated[
    float | None,
    typer.Option(
        "--lock-timeout",
        min=0.0,
        help="Give up after this many seconds if another run holds the state lock.",
    ),
]


def _use_color(no_color: bool) -> bool:
    return not (no_color or os.environ.get("NO_COLOR"))


@contextlib.contextmanager
def _reported(color: bool) -> Iterator[None]:
    """Report any error raised in the block and exit with its code."""
    try:
        yield
    except (typer.Exit, typer.Abort):
        raise
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc


def _load_config(
    path: Path, *, parallelism: int | None = None, lock_timeout: float | None = None
) -> Config:
    """Load *path*, applying command-line overrides on top of the file."""
    from infra_provisioner.config import load

    cfg = load(path)
    overrides: dict[str, object] = {}
    if parallelism is not None:
        overrides["parallelism"] = parallelism
    if lock_timeout is not None:
        overrides["lock_timeout"] = lock_timeout
    return cfg.model_copy(update=overrides) if overrides else cfg


def _confirm(prompt: str, *, canceled: str) -> None:
    try:
        typer.confirm(prompt, abort=True)
    except typer.Abort as e:
        typer.echo(canceled, err=True)
        raise typer.Exit(1) from e


def _apply_with_progress(plan_obj: Plan, cfg: Config, *, color: bool) -> ApplyResult:
    """Apply *plan_obj*, driving a Rich progress bar from executor callbacks."""
    from rich.console import Console
    from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

    from infra_provisioner.cli.formatting import _ACTION_STYLES, style_key
    from infra_provisioner.config import apply
    from infra_provisioner.engine.types import Action, ResourceChange

    console = Console(no_color=not color)
    total = sum(1 for c in plan_obj.changes if c.action != Action.NOOP)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as bar:
        task = bar.add_task("Applying", total=total)

        def on_progress(change: ResourceChange, event: Literal["start", "done"]) -> None:
            # A no-op promoted to an update only reports "done".
            promoted = change.action == Action.NOOP
            verbs = _ACTION_STYLES["update" if promoted else style_key(change)]
            if event == "start":
                bar.update(task, description=f"{change.address}: {verbs.progress_verb}...")
                return
            bar.console.print(f"  {change.address}: {verbs.done_verb}")
            if not promoted:
                bar.advance(task)

        return apply(plan_obj, cfg, progress=on_progress)


def _review_and_apply(
    plan_obj: Plan,
    cfg: Config,
    *,
    color: bool,
    auto_approve: bool,
    prompt: str,
    nothing_to_do: str,
) -> None:
    """Print *plan_obj*, ask for approval, then apply it and print the totals."""
    from infra_provisioner.cli.formatting import (
        format_apply_summary,
        format_plan,
        format_plan_summary,
        has_actionable_changes,
    )

    if not has_actionable_changes(plan_obj):
        typer.echo(nothing_to_do)
        raise typer.Exit(0)

    typer.echo(format_plan(plan_obj, color=color))
    typer.echo()
    typer.echo(format_plan_summary(plan_obj.summary(), color=color))
    typer.echo()

    if not auto_approve:
        _confirm(prompt, canceled="Apply canceled.")

    with _reported(color):
        result = _apply_with_progress(plan_obj, cfg, color=color)

    typer.echo()
    typer.echo(format_apply_summary(result.summary(), color=color))


@app.command()
def validate(config: ConfigPath = DEFAULT_CONFIG, no_color: NoColor = False) -> None:
    """Validate the configuration file and the dependency graph."""
    from infra_provisioner.cli.formatting import styler
    from infra_provisioner.config import engine_from_config

    color = _use_color(no_color)
    with _reported(color):
        cfg = _load_config(config)
        engine_from_config(cfg).schedule(cfg.resources)

    typer.echo(styler(color)("Configuration is valid.", fg="green"))


@app.command()
def graph(config: ConfigPath = DEFAULT_CONFIG, no_color: NoColor = False) -> None:
    """Show apply order, destroy order and dependencies."""
    from infra_provisioner.cli.formatting import format_schedule
    from infra_provisioner.config import engine_from_config

    with _reported(_use_color(no_color)):
        cfg = _load_config(config)
        sched = engine_from_config(cfg).schedule(cfg.resources)

    typer.echo(format_schedule(sched))


@app.command()
def plan(
    config: ConfigPath = DEFAULT_CONFIG,
    out: Annotated[
        Path | None,
        typer.Option("--out", "-o", help="Save plan to file."),
    ] = None,
    destroy: Annotated[
        bool,
        typer.Option("--destroy", help="Plan the destruction of every managed resource."),
    ] = False,
    no_color: NoColor = False,
) -> None:
    """Show changes required by the current configuration.

    Exits 0 when nothing would change and 2 when the plan has actions.
    """
    from infra_provisioner.cli.formatting import (
        format_plan,
        format_plan_summary,
        has_actionable_changes,
    )
    from infra_provisioner.config import plan as plan_fn

    color = _use_color(no_color)
    with _reported(color):
        cfg = _load_config(config)
        plan_obj = plan_fn(cfg, destroy=destroy)

    typer.echo(format_plan(plan_obj, color=color))
    typer.echo()
    typer.echo(format_plan_summary(plan_obj.summary(), color=color))

    if out is not None:
        plan_obj.save(out)
        typer.echo(f"\nPlan saved to {out}")

    if has_actionable_changes(plan_obj):
        raise typer.Exit(2)


@app.command(name="apply")
def apply_cmd(
    plan_file: Annotated[
        Path | None,
        typer.Argument(help="Saved plan file to apply."),
    ] = None,
    config: ConfigPath = DEFAULT_CONFIG,
    auto_approve: AutoApprove = False,
    parallelism: Parallelism = None,
    lock_timeout: LockTimeout = None,
    no_color: NoColor = False,
) -> None:
    """Apply a saved plan, or plan and apply the current configuration."""
    from infra_provisioner.config import plan as plan_fn
    from infra_provisioner.engine.types import Plan

    color = _use_color(no_color)
    with _reported(color):
        cfg = _load_config(config, parallelism=parallelism, lock_timeout=lock_timeout)
        plan_obj = Plan.load(plan_file) if plan_file is not None else plan_fn(cfg)

    _review_and_apply(
        plan_obj,
        cfg,
        color=color,
        auto_approve=auto_approve,
        prompt="Do you want to apply these changes?",
        nothing_to_do="No changes. Resources are up-to-date.",
    )


@app.command()
def destroy(
    config: ConfigPath = DEFAULT_CONFIG,
    auto_approve: AutoApprove = False,
    parallelism: Parallelism = None,
    lock_timeout: LockTimeout = None,
    no_color: NoColor = False,
) -> None:
    """Destroy every resource recorded in state, dependents first."""
    from infra_provisioner.config import plan as plan_fn

    color = _use_color(no_color)
    with _reported(color):
        cfg = _load_config(config, parallelism=parallelism, lock_timeout=lock_timeout)
        plan_obj = plan_fn(cfg, destroy=True)

    _review_and_apply(
        plan_obj,
        cfg,
        color=color,
        auto_approve=auto_approve,
        prompt="Do you really want to destroy all resources?",
        nothing_to_do="No resources to destroy.",
    )


@app.command(name="refresh")
def refresh_cmd(
    config: ConfigPath = DEFAULT_CONFIG,
    auto_approve: AutoApprove = False,
    lock_timeout: LockTimeout = None,
    no_color: NoColor = False,
) -> None:
    """Read every recorded resource back and write what was found to state."""
    from infra_provisioner.cli.formatting import (
        changes_summary,
        format_changes,
        format_plan_summary,
    )
    from infra_provisioner.config import drift as drift_fn
    from infra_provisioner.config import refresh as refresh_fn

    color = _use_color(no_color)
    with _reported(color):
        cfg = _load_config(config, lock_timeout=lock_timeout)
        changes = drift_fn(cfg)

    if not changes:
        typer.echo("No changes. State is up-to-date with the provider.")
        raise typer.Exit(0)

    typer.echo(format_changes(changes, color=color))
    typer.echo()
    typer.echo(format_plan_summary(changes_summary(changes), color=color, header="Refresh"))
    typer.echo()

    if not auto_approve:
        _confirm("Do you want to update the state file?", canceled="Refresh canceled.")

    with _reported(color):
        refreshed = refresh_fn(cfg)

    count = len(refreshed)
    typer.echo(f"State refreshed. {count} resource{'s' if count != 1 else ''} updated.")


@app.command()
def drift(config: ConfigPath = DEFAULT_CONFIG, no_color: NoColor = False) -> None:
    """Show drift between state and the live provider without changing anything."""
    from infra_provisioner.cli.formatting import format_changes
    from infra_provisioner.config import drift as drift_fn

    color = _use_color(no_color)
    with _reported(color):
        changes = drift_fn(_load_config(config))

    if not changes:
        typer.echo("No drift detected. State is up-to-date with the provider.")
        raise typer.Exit(0)

    typer.echo("Drift detected:\n")
    typer.echo(format_changes(changes, color=color))
