"""CLI application for infra-provisioner."""

from __future__ import annotations

import logging
import os
import sys

import typer

from infra_provisioner import __version__

app = typer.Typer(
    name="infra-provisioner",
    no_args_is_help=True,
    add_completion=False,
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"infra-provisioner {__version__}")
        raise typer.Exit


_LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"
_VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _log_level(verbose: int) -> int | None:
    """Engine log level for ``-v`` count or ``INFRA_LOG``; ``None`` leaves logging off.

    INFO carries the run milestones: the loaded config, plan totals, how many
    operations an apply walks, readiness waits and in-place updates caused by
    changed outputs.  DEBUG adds one line per operation and per reconciler
    classification, readiness polls, lock waits and every state read or write.
    """
    env_level = os.environ.get("INFRA_LOG", "").upper()
    if env_level:
        if env_level not in _VALID_LEVELS:
            print(
                f"WARNING: invalid INFRA_LOG level '{env_level}', "
                f"expected one of {', '.join(sorted(_VALID_LEVELS))}; defaulting to INFO",
                file=sys.stderr,
            )
            return logging.INFO
        return int(getattr(logging, env_level))
    if verbose >= 2:
        return logging.DEBUG
    if verbose == 1:
        return logging.INFO
    return None


def _configure_logging(verbose: int) -> None:
    level = _log_level(verbose)
    if level is None:
        return
    # Third-party loggers stay at WARNING; only the engine follows -v.
    logging.basicConfig(
        level=logging.WARNING,
        format=_LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )
    logging.getLogger("infra_provisioner").setLevel(level)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Log engine progress to stderr: -v plan/apply milestones, -vv every operation.",
    ),
) -> None:
    """Dependency-aware, Terraform-style infrastructure provisioning."""
    _ = version
    _configure_logging(verbose)


# Register commands after app is created to avoid circular imports.
from infra_provisioner.cli import commands as _commands  # noqa: E402, F401
