"""Plan and apply output rendering (Terraform-style)."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, NamedTuple

import typer

from infra_provisioner.engine.types import Action
from infra_provisioner.resources.refs import UNKNOWN

if TYPE_CHECKING:
    from collections.abc import Callable

    from infra_provisioner.engine.scheduler import Schedule
    from infra_provisioner.engine.types import Plan, ResourceChange


class _ActionStyle(NamedTuple):
    color: str
    progress_verb: str
    done_verb: str


_ACTION_STYLES: dict[str, _ActionStyle] = {
    "create": _ActionStyle("green", "Creating", "Creation complete"),
    "update": _ActionStyle("yellow", "Updating", "Update complete"),
    "replace": _ActionStyle("magenta", "Replacing", "Replacement complete"),
    "delete": _ActionStyle("red", "Destroying", "Destroy complete"),
    "no-op": _ActionStyle("bright_black", "", ""),
}

_ACTION_DESC: dict[str, str] = {
    "create": "will be created",
    "update": "will be updated in-place",
    "replace": "must be replaced",
    "delete": "will be destroyed",
    "no-op": "is up-to-date",
}


def style_key(change: ResourceChange) -> str:
    """Key into the style tables; replacements get their own style."""
    return "replace" if change.replace else change.action.value


def styler(color: bool) -> Callable[..., str]:
    """Return ``typer.style`` when *color* is True, otherwise a passthrough."""
    if color:
        return typer.style
    return lambda text, **_kw: text


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def has_actionable_changes(plan: Plan) -> bool:
    """Return True if the plan contains any non-NOOP changes."""
    return any(c.action != Action.NOOP for c in plan.changes)


def _align_values(items: dict[str, str]) -> list[tuple[str, str]]:
    """Right-pad keys so ``=`` signs align."""
    if not items:
        return []
    max_key = max(len(k) for k in items)
    return [(k.ljust(max_key), v) for k, v in items.items()]


def _format_value(value: Any) -> str:
    """Format a value for display in a plan diff block (JSON literals)."""
    if value == repr(UNKNOWN):
        return value
    if isinstance(value, str):
        return f'"{value}"'
    return json.dumps(value, sort_keys=True, default=str)


# ---------------------------------------------------------------------------
# Plan rendering
# ---------------------------------------------------------------------------


def _change_attrs(change: ResourceChange) -> dict[str, str]:
    """Extract displayable ``key → formatted value`` pairs from a change."""
    if change.action == Action.CREATE and change.planned:
        return {k: _format_value(v) for k, v in change.planned.items()}
    if change.action == Action.UPDATE and change.diff:
        attrs = {}
        for k, d in change.diff.items():
            line = f"{_format_value(d['from'])} -> {_format_value(d['to'])}"
            if k in change.forces_replacement:
                line += " # forces replacement"
            attrs[k] = line
        return attrs
    return {}


def format_change(change: ResourceChange, *, color: bool = True) -> str:
    """Render a single ResourceChange as a Terraform-style block."""
    style = styler(color)
    key = style_key(change)
    sc = {"fg": _ACTION_STYLES[key].color}
    symbol = change.symbol
    attr_symbol = "~" if change.action == Action.UPDATE else symbol

    name = change.address.split(".", 1)[1] if "." in change.address else change.address
    lines = [
        style(f"  # {change.address} {_ACTION_DESC[key]}", bold=True, **sc),
        style(f'  {symbol} resource "{change.kind}" "{name}" {{', **sc),
        *[
            style(f"      {attr_symbol} {k} = {v}", **sc)
            for k, v in _align_values(_change_attrs(change))
        ],
        style("    }", **sc),
    ]
    return "\n".join(lines)


def format_changes(changes: list[ResourceChange], *, color: bool = True) -> str:
    """Render a list of changes as Terraform-style diff blocks."""
    blocks = [format_change(c, color=color) for c in changes if c.action != Action.NOOP]
    if not blocks:
        return "No changes. Resources are up-to-date."
    return "\n\n".join(blocks)


def format_plan(plan: Plan, *, color: bool = True) -> str:
    """Render the full plan output with per-change diff blocks."""
    return format_changes(plan.changes, color=color)


def format_schedule(sched: Schedule) -> str:
    """Render apply order, destroy order and each resource's dependencies."""
    lines = ["Apply order:"]
    lines += [f"  {i}. {a}" for i, a in enumerate(sched.apply_order, start=1)]
    lines += ["", "Destroy order:"]
    lines += [f"  {i}. {a}" for i, a in enumerate(sched.destroy_order, start=1)]
    lines += ["", "Dependencies:"]
    for address in sched.apply_order:
        deps = sched.graph.dependencies_of(address)
        lines.append(f"  {address} <- {', '.join(deps) if deps else '(none)'}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------

_PLAN_VERBS = ("to add", "to change", "to destroy")
_APPLY_VERBS = ("added", "changed", "destroyed")
_SUMMARY_COLORS = ("green", "yellow", "red")


def _format_summary(summary: dict[str, int], verbs: tuple[str, ...], *, color: bool) -> str:
    """Build the ``N verb, N verb, N verb`` part of a summary line."""
    style = styler(color)
    counts = (summary.get("create", 0), summary.get("update", 0), summary.get("delete", 0))
    parts = [
        style(f"{n} {verb}", fg=fg) if n and color else f"{n} {verb}"
        for n, verb, fg in zip(counts, verbs, _SUMMARY_COLORS, strict=True)
    ]
    return ", ".join(parts)


def changes_summary(changes: list[ResourceChange]) -> dict[str, int]:
    """Count changes by action type (create/update/delete)."""
    summary: dict[str, int] = {"create": 0, "update": 0, "delete": 0}
    for c in changes:
        if c.action != Action.NOOP:
            summary[c.action.value] += 1
    return summary


def format_plan_summary(
    summary: dict[str, int], *, color: bool = True, header: str = "Plan"
) -> str:
    """Render ``Plan: 2 to add, 1 to change, 0 to destroy.``"""
    return f"{header}: {_format_summary(summary, _PLAN_VERBS, color=color)}."


def format_apply_summary(summary: dict[str, int], *, color: bool = True) -> str:
    """Render ``Apply complete! Resources: 2 added, 0 changed, 0 destroyed.``"""
    style = styler(color)
    header = style("Apply complete!", fg="green", bold=True)
    return f"{header} Resources: {_format_summary(summary, _APPLY_VERBS, color=color)}."
