"""Map exceptions to clean stderr messages and exit codes."""

from __future__ import annotations

from typing import TYPE_CHECKING

import typer

if TYPE_CHECKING:
    from infra_provisioner.engine.types import ActionResult


def _err(msg: str, *, fg: str | None) -> None:
    """Print a styled message to stderr."""
    typer.echo(typer.style(msg, fg=fg), err=True)


def _partial(results: list[ActionResult], *, fg: str | None) -> None:
    """Report how far the run got before it stopped."""
    from infra_provisioner.engine.types import ActionStatus

    counts: dict[str, int] = {"create": 0, "update": 0, "delete": 0}
    for r in results:
        if r.status == ActionStatus.APPLIED and r.action.value in counts:
            counts[r.action.value] += 1
    parts = [
        f"{n} {verb}"
        for n, verb in (
            (counts["create"], "added"),
            (counts["update"], "changed"),
            (counts["delete"], "destroyed"),
        )
        if n
    ]
    if parts:
        _err(f"  Partial result: {', '.join(parts)}.", fg=fg)


def handle_error(exc: Exception, *, color: bool = True) -> int:
    """Print a clean error message to stderr and return an exit code.

    All errors map to exit code 1.  No tracebacks are printed.
    """
    from infra_provisioner.config.loader import ConfigError
    from infra_provisioner.engine.errors import (
        ApplyCanceled,
        ApplyError,
        ConfigurationError,
        ConflictError,
        CycleError,
        StalePlanError,
        StateLockError,
        ValidationError,
    )

    fg = typer.colors.RED if color else None

    if isinstance(exc, ConfigError):
        _err(f"Configuration error: {exc}", fg=fg)
    elif isinstance(exc, ValidationError):
        _err("Validation failed:", fg=fg)
        for e in exc.errors:
            _err(f"  - {e}", fg=fg)
    elif isinstance(exc, CycleError):
        _err(f"Dependency cycle: {' -> '.join(exc.cycle)}", fg=fg)
    elif isinstance(exc, ConfigurationError):
        _err(f"Configuration error: {exc}", fg=fg)
    elif isinstance(exc, StalePlanError):
        _err(f"Plan is stale: {exc}", fg=fg)
    elif isinstance(exc, StateLockError):
        _err(f"State lock error: {exc}", fg=fg)
    elif isinstance(exc, ConflictError):
        _err(f"{exc}", fg=fg)
    elif isinstance(exc, ApplyError):
        _err(f"Apply failed on {exc.address}: {exc.reason}", fg=fg)
        _partial(exc.results, fg=fg)
    elif isinstance(exc, ApplyCanceled):
        _err("Apply canceled.", fg=fg)
        _partial(exc.results, fg=fg)
    else:
        _err(f"Error: {exc}", fg=fg)

    return 1
