"""Tests for the YAML configuration loader."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from infra_provisioner.config.loader import (
    ConfigError,
    _resolve_provider,
    _validate_unique_addresses,
    load_config,
)
from infra_provisioner.resources import ResourceSpec

if TYPE_CHECKING:
    from collections.abc import Callable

    from infra_provisioner.config.schema import Config

    ConfigFactory = Callable[..., Config]

_FULL_YAML = """\
provider:
  backend: memory
  region: eu-west-1
  options:
    kinds:
      cluster:
        ready_after: 2

state_path: custom-state.json
readiness_timeout: 30
parallelism: 4
lock_timeout: 15

resources:
  - kind: network
    name: main
    attributes:
      cidr: 10.0.0.0/16
  - kind: cluster
    name: main
    attributes:
      subnet: ${network.main.id}
    depends_on: [network.main]
"""


class TestLoadConfig:
    def test_full_yaml_parses(self, make_config: ConfigFactory) -> None:
        config = make_config(_FULL_YAML)

        assert config.provider.backend == "memory"
        assert config.provider.region == "eu-west-1"
        assert config.provider.options["kinds"]["cluster"] == {"ready_after": 2}
        assert str(config.state_path) == "custom-state.json"
        assert config.readiness_timeout == 30
        assert config.parallelism == 4
        assert config.lock_timeout == 15
        assert [r.address for r in config.resources] == ["network.main", "cluster.main"]
        assert config.resources[1].attributes == {"subnet": "${network.main.id}"}
        assert config.kinds() == {"network", "cluster"}

    def test_defaults(self, make_config: ConfigFactory) -> None:
        config = make_config("resources:\n")

        assert config.provider.backend == "memory"
        assert config.resources == []
        assert str(config.state_path) == ".infra-state.json"
        assert config.parallelism == 1
        assert config.lock_timeout is None

    def test_empty_file(self, make_config: ConfigFactory) -> None:
        assert make_config("").resources == []

    def test_config_dir_set_to_parent(self, tmp_path: Path) -> None:
        f = tmp_path / "sub" / "config.yaml"
        f.parent.mkdir()
        f.write_text("state_path: state.json\n")

        config = load_config(f)

        assert config.config_dir == f.parent
        assert config.resolved_state_path == f.parent / "state.json"

    def test_absolute_state_path_kept(self, tmp_path: Path, make_config: ConfigFactory) -> None:
        target = tmp_path / "elsewhere" / "state.json"
        config = make_config(f"state_path: {target}\n")
        assert config.resolved_state_path == target

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Failed to read"):
            load_config(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, make_config: ConfigFactory) -> None:
        with pytest.raises(ConfigError, match="Failed to read"):
            make_config("resources: [\n")

    def test_non_mapping_top_level(self, make_config: ConfigFactory) -> None:
        with pytest.raises(ConfigError, match="must be a mapping"):
            make_config("- a\n- b\n")

    def test_unknown_top_level_key(self, make_config: ConfigFactory) -> None:
        with pytest.raises(ConfigError, match="bogus"):
            make_config("bogus: 1\n")

    def test_invalid_resource_kind(self, make_config: ConfigFactory) -> None:
        with pytest.raises(ConfigError, match="kind"):
            make_config("resources:\n  - kind: Network\n    name: main\n")

    def test_invalid_depends_on_address(self, make_config: ConfigFactory) -> None:
        yaml = "resources:\n  - kind: network\n    name: main\n    depends_on: [nodot]\n"
        with pytest.raises(ConfigError):
            make_config(yaml)

    def test_non_positive_parallelism(self, make_config: ConfigFactory) -> None:
        with pytest.raises(ConfigError, match="parallelism"):
            make_config("parallelism: 0\n")

    def test_duplicate_addresses(self, make_config: ConfigFactory) -> None:
        yaml = "resources:\n  - kind: network\n    name: main\n  - kind: network\n    name: main\n"
        with pytest.raises(ConfigError, match="Duplicate resource address 'network.main'"):
            make_config(yaml)


class TestValidateUniqueAddresses:
    def test_reports_both_positions(self) -> None:
        specs = [
            ResourceSpec(kind="network", name="a"),
            ResourceSpec(kind="role", name="a"),
            ResourceSpec(kind="network", name="a"),
        ]
        assert _validate_unique_addresses(specs) == [
            "Duplicate resource address 'network.a': found at resources[0] and resources[2]"
        ]

    def test_same_name_different_kind_is_fine(self) -> None:
        specs = [ResourceSpec(kind="network", name="a"), ResourceSpec(kind="role", name="a")]
        assert _validate_unique_addresses(specs) == []


class TestProviderResolution:
    def test_yaml_wins_over_env_and_dotenv(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("INFRA_REGION", "from-env")
        (tmp_path / ".env").write_text("INFRA_REGION=from-dotenv\n")

        resolved = _resolve_provider({"region": "from-yaml"}, tmp_path)

        assert resolved["region"] == "from-yaml"

    def test_env_wins_over_dotenv(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("INFRA_REGION", "from-env")
        (tmp_path / ".env").write_text("INFRA_REGION=from-dotenv\n")

        assert _resolve_provider({}, tmp_path)["region"] == "from-env"

    def test_dotenv_used_last(self, tmp_path: Path) -> None:
        (tmp_path / ".env").write_text("INFRA_REGION=from-dotenv\nINFRA_PROFILE=ops\n")

        resolved = _resolve_provider({}, tmp_path)

        assert resolved == {"region": "from-dotenv", "profile": "ops"}

    def test_options_pass_through(self, tmp_path: Path) -> None:
        resolved = _resolve_provider({"options": {"path": "cloud.json"}}, tmp_path)
        assert resolved == {"options": {"path": "cloud.json"}}

    def test_secret_from_dotenv_is_masked(self, make_config: ConfigFactory) -> None:
        config = make_config("resources:\n", dotenv="INFRA_SECRET_KEY=s3cr3t\n")

        assert config.provider.secret_key is not None
        assert config.provider.secret_key.get_secret_value() == "s3cr3t"
        assert "s3cr3t" not in repr(config.provider)

    def test_backend_from_env(
        self, make_config: ConfigFactory, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("INFRA_BACKEND", "plugins:registry")
        assert make_config("resources:\n").provider.backend == "plugins:registry"
