from __future__ import annotations

import pytest

from infra_provisioner.cli.errors import handle_error
from infra_provisioner.config.loader import ConfigError
from infra_provisioner.engine.errors import (
    ApplyCanceled,
    ApplyError,
    ConflictError,
    CycleError,
    StalePlanError,
    StateLockError,
    UnknownResourceKindError,
    ValidationError,
)
from infra_provisioner.engine.types import Action, ActionResult, ActionStatus


def _result(address: str, action: Action, status: ActionStatus) -> ActionResult:
    return ActionResult(address=address, action=action, status=status)


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (ConfigError("bad yaml"), "Configuration error: bad yaml"),
        (CycleError(["a.x", "b.x", "a.x"]), "Dependency cycle: a.x -> b.x -> a.x"),
        (UnknownResourceKindError("bucket"), "Configuration error: Unknown resource kind: bucket"),
        (StalePlanError("State serial changed; re-run plan"), "Plan is stale: State serial"),
        (StateLockError("held by pid 42"), "State lock error: held by pid 42"),
        (ConflictError("network.main", "gone"), "Conflict on network.main: gone"),
        (RuntimeError("boom"), "Error: boom"),
    ],
)
def test_messages(exc: Exception, expected: str, capsys: pytest.CaptureFixture[str]) -> None:
    assert handle_error(exc, color=False) == 1
    assert expected in capsys.readouterr().err


def test_validation_errors_listed(capsys: pytest.CaptureFixture[str]) -> None:
    errors = ["a.x: missing required attribute 'size'", "b.y: bad"]
    handle_error(ValidationError(errors), color=False)

    assert capsys.readouterr().err.splitlines() == [
        "Validation failed:",
        "  - a.x: missing required attribute 'size'",
        "  - b.y: bad",
    ]


def test_apply_error_reports_partial_result(capsys: pytest.CaptureFixture[str]) -> None:
    exc = ApplyError(
        results=[
            _result("network.main", Action.CREATE, ActionStatus.APPLIED),
            _result("role.old", Action.DELETE, ActionStatus.APPLIED),
            _result("role.x", Action.NOOP, ActionStatus.NOOP),
            _result("cluster.main", Action.CREATE, ActionStatus.FAILED),
        ],
        address="cluster.main",
        message="Timed out after 600s",
    )

    handle_error(exc, color=False)

    assert capsys.readouterr().err.splitlines() == [
        "Apply failed on cluster.main: Timed out after 600s",
        "  Partial result: 1 added, 1 destroyed.",
    ]


def test_cancel_without_progress(capsys: pytest.CaptureFixture[str]) -> None:
    handle_error(ApplyCanceled(), color=False)
    assert capsys.readouterr().err == "Apply canceled.\n"
