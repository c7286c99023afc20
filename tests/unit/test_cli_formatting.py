from __future__ import annotations

import re

from infra_provisioner.cli.formatting import (
    changes_summary,
    format_apply_summary,
    format_change,
    format_changes,
    format_plan,
    format_plan_summary,
    format_schedule,
    has_actionable_changes,
)
from infra_provisioner.engine.scheduler import schedule_specs
from infra_provisioner.engine.types import Action, Plan, PlanMetadata, ResourceChange
from infra_provisioner.resources import ResourceSpec

_META = PlanMetadata(
    destroy=False,
    state_lineage="lineage-1",
    state_serial=0,
    state_digest="digest",
    config_digest="cdigest",
    engine_version="0.1.0",
)


def _strip_ansi(text: str) -> str:
    return re.sub(r"\x1b\[[0-9;]*m", "", text)


class TestFormatPlanSummary:
    def test_all_zeros(self) -> None:
        result = format_plan_summary({"create": 0, "update": 0, "delete": 0}, color=False)
        assert result == "Plan: 0 to add, 0 to change, 0 to destroy."

    def test_with_counts(self) -> None:
        result = format_plan_summary({"create": 2, "update": 1, "delete": 3}, color=False)
        assert result == "Plan: 2 to add, 1 to change, 3 to destroy."

    def test_noop_count_ignored(self) -> None:
        summary = {"create": 1, "update": 0, "delete": 0, "no-op": 5}
        result = format_plan_summary(summary, color=False)
        assert result == "Plan: 1 to add, 0 to change, 0 to destroy."

    def test_custom_header(self) -> None:
        result = format_plan_summary({"update": 2}, color=False, header="Refresh")
        assert result == "Refresh: 0 to add, 2 to change, 0 to destroy."

    def test_color_mode_contains_ansi(self) -> None:
        result = format_plan_summary({"create": 1, "update": 0, "delete": 0}, color=True)
        assert "\x1b[" in result
        assert "1 to add" in _strip_ansi(result)


class TestFormatApplySummary:
    def test_with_counts(self) -> None:
        result = format_apply_summary({"create": 1, "update": 2, "delete": 0}, color=False)
        assert result == "Apply complete! Resources: 1 added, 2 changed, 0 destroyed."

    def test_color_mode_contains_ansi(self) -> None:
        result = format_apply_summary({"create": 1, "update": 0, "delete": 0}, color=True)
        assert "\x1b[" in result


class TestFormatChange:
    def test_create(self) -> None:
        change = ResourceChange(
            address="cluster.main",
            kind="cluster",
            action=Action.CREATE,
            planned={"version": "1.29", "subnet": "(known after apply)", "nodes": 3},
        )
        result = format_change(change, color=False)
        assert result.splitlines() == [
            "  # cluster.main will be created",
            '  + resource "cluster" "main" {',
            '      + version = "1.29"',
            "      + subnet  = (known after apply)",
            "      + nodes   = 3",
            "    }",
        ]

    def test_update(self) -> None:
        change = ResourceChange(
            address="addon.x",
            kind="addon",
            action=Action.UPDATE,
            diff={"mode": {"from": "default", "to": "strict"}, "tags": {"from": "a", "to": None}},
        )
        result = format_change(change, color=False)
        assert "addon.x will be updated in-place" in result
        assert '  ~ resource "addon" "x" {' in result
        assert '~ mode = "default" -> "strict"' in result
        assert '~ tags = "a" -> null' in result

    def test_replace(self) -> None:
        change = ResourceChange(
            address="network.main",
            kind="network",
            action=Action.UPDATE,
            replace=True,
            diff={
                "cidr": {"from": "10.0.0.0/16", "to": "10.1.0.0/16"},
                "name": {"from": "a", "to": "b"},
            },
            forces_replacement=["cidr"],
        )
        result = format_change(change, color=False)
        assert "network.main must be replaced" in result
        assert '-/+ resource "network" "main" {' in result
        assert '~ cidr = "10.0.0.0/16" -> "10.1.0.0/16" # forces replacement' in result
        assert result.splitlines()[3] == '      ~ name = "a" -> "b"'

    def test_delete(self) -> None:
        change = ResourceChange(
            address="role.old", kind="role", action=Action.DELETE, prior={"policy": "x"}
        )
        result = format_change(change, color=False)
        assert "role.old will be destroyed" in result
        assert '  - resource "role" "old" {' in result
        assert "policy" not in result

    def test_values_render_as_json_literals(self) -> None:
        change = ResourceChange(
            address="bucket.logs",
            kind="bucket",
            action=Action.CREATE,
            planned={"enabled": True, "tags": {"b": 1, "a": "x"}, "zones": ["a"], "owner": None},
        )
        assert format_change(change, color=False).splitlines()[2:6] == [
            "      + enabled = true",
            '      + tags    = {"a": "x", "b": 1}',
            '      + zones   = ["a"]',
            "      + owner   = null",
        ]

    def test_color_mode(self) -> None:
        change = ResourceChange(address="role.old", kind="role", action=Action.DELETE)
        result = format_change(change, color=True)
        assert "\x1b[" in result
        assert "role.old will be destroyed" in _strip_ansi(result)


class TestFormatPlan:
    def test_noops_hidden(self) -> None:
        plan = Plan(
            metadata=_META,
            changes=[
                ResourceChange(address="network.ok", kind="network", action=Action.NOOP),
                ResourceChange(address="role.new", kind="role", action=Action.CREATE),
            ],
        )
        result = format_plan(plan, color=False)
        assert "network.ok" not in result
        assert "role.new will be created" in result
        assert has_actionable_changes(plan)

    def test_only_noops(self) -> None:
        plan = Plan(
            metadata=_META,
            changes=[ResourceChange(address="network.ok", kind="network", action=Action.NOOP)],
        )
        assert format_plan(plan, color=False) == "No changes. Resources are up-to-date."
        assert not has_actionable_changes(plan)

    def test_blocks_separated_by_blank_line(self) -> None:
        changes = [
            ResourceChange(address="a.x", kind="a", action=Action.CREATE),
            ResourceChange(address="b.x", kind="b", action=Action.DELETE),
        ]
        assert "    }\n\n  # b.x" in format_changes(changes, color=False)


class TestChangesSummary:
    def test_counts_by_action(self) -> None:
        changes = [
            ResourceChange(address="a.x", kind="a", action=Action.UPDATE),
            ResourceChange(address="a.y", kind="a", action=Action.UPDATE),
            ResourceChange(address="b.x", kind="b", action=Action.DELETE),
            ResourceChange(address="c.x", kind="c", action=Action.NOOP),
        ]
        assert changes_summary(changes) == {"create": 0, "update": 2, "delete": 1}


class TestFormatSchedule:
    def test_orders_and_dependencies(self) -> None:
        sched = schedule_specs(
            [
                ResourceSpec(kind="app", name="web", depends_on=["db.main"]),
                ResourceSpec(kind="db", name="main"),
            ]
        )
        assert format_schedule(sched).splitlines() == [
            "Apply order:",
            "  1. db.main",
            "  2. app.web",
            "",
            "Destroy order:",
            "  1. app.web",
            "  2. db.main",
            "",
            "Dependencies:",
            "  db.main <- (none)",
            "  app.web <- db.main",
        ]
