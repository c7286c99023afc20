"""Tests for CLI log-level selection and the engine's INFO milestones."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest

from infra_provisioner.cli import _configure_logging, _log_level

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from infra_provisioner.engine import ProvisioningEngine
    from infra_provisioner.resources import ResourceSpec


@pytest.fixture
def engine_logger() -> Iterator[logging.Logger]:
    logger = logging.getLogger("infra_provisioner")
    level = logger.level
    yield logger
    logger.setLevel(level)


@pytest.mark.parametrize(
    ("verbose", "expected"),
    [(0, None), (1, logging.INFO), (2, logging.DEBUG), (3, logging.DEBUG)],
)
def test_level_from_verbose_count(verbose: int, expected: int | None) -> None:
    assert _log_level(verbose) == expected


def test_env_level_wins_over_flags(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("INFRA_LOG", "warning")
    assert _log_level(2) == logging.WARNING


def test_invalid_env_level_falls_back_to_info(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("INFRA_LOG", "chatty")
    assert _log_level(0) == logging.INFO
    assert "invalid INFRA_LOG level 'CHATTY'" in capsys.readouterr().err


def test_only_engine_logger_follows_verbosity(engine_logger: logging.Logger) -> None:
    with patch("infra_provisioner.cli.logging.basicConfig") as basic:
        _configure_logging(2)

    assert basic.call_args.kwargs["level"] == logging.WARNING
    assert engine_logger.level == logging.DEBUG


def test_quiet_by_default() -> None:
    with patch("infra_provisioner.cli.logging.basicConfig") as basic:
        _configure_logging(0)
    basic.assert_not_called()


def test_apply_logs_milestones_at_info(
    caplog: pytest.LogCaptureFixture,
    make_engine: Callable[..., ProvisioningEngine],
    make_topology: Callable[..., list[ResourceSpec]],
) -> None:
    with caplog.at_level(logging.INFO, logger="infra_provisioner"):
        make_engine().apply(make_topology())

    info = [r.getMessage() for r in caplog.records if r.levelno == logging.INFO]
    assert "Planning 4 resources (destroy=False)" in info
    assert "Plan: 4 create" in info
    assert "Applying 4 operations (parallelism=1)" in info
    assert "Waiting for cluster.main to become ready (output oidc_issuer)" in info
