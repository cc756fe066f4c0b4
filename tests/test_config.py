"""Unit tests for simharness.config — SimHarnessConfig and CI detection."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from simharness.config import (
    CI_LAUNCH_RETRIES,
    CI_TIMEOUT,
    LOCAL_LAUNCH_RETRIES,
    LOCAL_TIMEOUT,
    SimHarnessConfig,
    SimHarnessConfigError,
    is_ci,
)


# ---------------------------------------------------------------------------
# 1. CI detection
# ---------------------------------------------------------------------------

class TestIsCI:
    """is_ci() should recognize the common CI environment variables."""

    def test_empty_environment_is_local(self):
        assert is_ci({}) is False

    @pytest.mark.parametrize("name", ["CI", "JENKINS_HOME", "TRAVIS", "CIRCLECI", "GITHUB_ACTIONS"])
    def test_known_variables_mean_ci(self, name: str):
        assert is_ci({name: "true"}) is True

    @pytest.mark.parametrize("value", ["0", "false", "False", "no", ""])
    def test_falsey_values_are_ignored(self, value: str):
        assert is_ci({"CI": value}) is False

    def test_reads_process_environment_by_default(self, monkeypatch: pytest.MonkeyPatch):
        for name in ("CI", "JENKINS_HOME", "TRAVIS", "CIRCLECI", "TEAMCITY_PROJECT_NAME", "GITLAB_CI", "GITHUB_ACTIONS"):
            monkeypatch.delenv(name, raising=False)
        assert is_ci() is False
        monkeypatch.setenv("GITLAB_CI", "1")
        assert is_ci() is True


# ---------------------------------------------------------------------------
# 2. Defaults
# ---------------------------------------------------------------------------

class TestDefaults:
    """Local and CI defaults differ only in timeouts and retry count."""

    def test_local_timeouts(self):
        cfg = SimHarnessConfig.defaults(ci=False)
        assert cfg.install_app_timeout == LOCAL_TIMEOUT == 30.0
        assert cfg.uninstall_app_timeout == LOCAL_TIMEOUT
        assert cfg.launch_app_timeout == LOCAL_TIMEOUT
        assert cfg.wait_for_state_timeout == LOCAL_TIMEOUT
        assert cfg.app_launch_retries == LOCAL_LAUNCH_RETRIES == 3

    def test_ci_timeouts(self):
        cfg = SimHarnessConfig.defaults(ci=True)
        assert cfg.install_app_timeout == CI_TIMEOUT == 120.0
        assert cfg.launch_app_timeout == CI_TIMEOUT
        assert cfg.app_launch_retries == CI_LAUNCH_RETRIES == 5

    def test_polling_defaults(self):
        cfg = SimHarnessConfig.defaults(ci=False)
        assert cfg.wait_for_state_interval == 0.1
        assert cfg.terminate_timeout == 0.5
        assert cfg.simulator_launch_timeout == 5.0
        assert cfg.app_launch_verify_timeout == 10.0
        assert cfg.launch_retry_delay == 0.5

    def test_core_simulator_dir_under_home(self):
        cfg = SimHarnessConfig()
        assert cfg.core_simulator_dir.parts[-4:] == ("Library", "Developer", "CoreSimulator", "Devices")

    def test_config_is_frozen(self):
        cfg = SimHarnessConfig()
        with pytest.raises(AttributeError):
            cfg.app_launch_retries = 10  # type: ignore[misc]

    def test_with_overrides_returns_copy(self):
        cfg = SimHarnessConfig.defaults(ci=False)
        changed = cfg.with_overrides(app_launch_retries=7)
        assert changed.app_launch_retries == 7
        assert cfg.app_launch_retries == 3

    def test_with_overrides_rejects_unknown_field(self):
        with pytest.raises(SimHarnessConfigError):
            SimHarnessConfig().with_overrides(no_such_option=1)

    @pytest.mark.parametrize("retries", [0, -2])
    def test_with_overrides_rejects_retry_bound_below_one(self, retries: int):
        with pytest.raises(SimHarnessConfigError, match="at least 1"):
            SimHarnessConfig.defaults(ci=False).with_overrides(app_launch_retries=retries)

    def test_constructor_rejects_zero_retries(self):
        with pytest.raises(SimHarnessConfigError, match="at least 1"):
            SimHarnessConfig(app_launch_retries=0)

    def test_constructor_rejects_non_integer_retries(self):
        with pytest.raises(SimHarnessConfigError, match="integer"):
            SimHarnessConfig(app_launch_retries=2.5)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# 3. from_file()
# ---------------------------------------------------------------------------

class TestFromFile:
    """SimHarnessConfig.from_file() layers YAML values over the defaults."""

    def test_values_override_defaults(self, tmp_path: Path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            yaml.dump({"launch_app_timeout": 45, "app_launch_retries": 4}),
            encoding="utf-8",
        )
        cfg = SimHarnessConfig.from_file(config_file, ci=False)
        assert cfg.launch_app_timeout == 45.0
        assert isinstance(cfg.launch_app_timeout, float)
        assert cfg.app_launch_retries == 4
        assert cfg.install_app_timeout == LOCAL_TIMEOUT

    def test_ci_defaults_apply_to_unset_keys(self, tmp_path: Path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("launch_app_timeout: 10\n", encoding="utf-8")
        cfg = SimHarnessConfig.from_file(config_file, ci=True)
        assert cfg.launch_app_timeout == 10.0
        assert cfg.install_app_timeout == CI_TIMEOUT

    def test_relative_paths_resolve_against_config_dir(self, tmp_path: Path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("core_simulator_dir: sims\n", encoding="utf-8")
        cfg = SimHarnessConfig.from_file(config_file, ci=False)
        assert cfg.core_simulator_dir == tmp_path / "sims"

    def test_empty_file_gives_defaults(self, tmp_path: Path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("", encoding="utf-8")
        assert SimHarnessConfig.from_file(config_file, ci=False) == SimHarnessConfig.defaults(ci=False)

    def test_missing_file_has_fix_hint(self, tmp_path: Path):
        with pytest.raises(SimHarnessConfigError, match="To fix"):
            SimHarnessConfig.from_file(tmp_path / "absent.yaml")

    def test_invalid_yaml(self, tmp_path: Path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("launch_app_timeout: [unclosed\n", encoding="utf-8")
        with pytest.raises(SimHarnessConfigError, match="Invalid YAML"):
            SimHarnessConfig.from_file(config_file)

    def test_top_level_must_be_mapping(self, tmp_path: Path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("- 1\n- 2\n", encoding="utf-8")
        with pytest.raises(SimHarnessConfigError, match="mapping"):
            SimHarnessConfig.from_file(config_file)


# ---------------------------------------------------------------------------
# 4. Validation
# ---------------------------------------------------------------------------

class TestValidation:
    """_from_dict() should reject anything it cannot use."""

    def test_unknown_key(self, tmp_path: Path):
        with pytest.raises(SimHarnessConfigError, match="Unknown config key: launch_timeout"):
            SimHarnessConfig._from_dict({"launch_timeout": 5}, tmp_path, ci=False)

    @pytest.mark.parametrize("value", ["soon", True, None, [1]])
    def test_non_numeric_timeout(self, tmp_path: Path, value):
        with pytest.raises(SimHarnessConfigError, match="must be a number"):
            SimHarnessConfig._from_dict({"launch_app_timeout": value}, tmp_path, ci=False)

    def test_negative_timeout(self, tmp_path: Path):
        with pytest.raises(SimHarnessConfigError, match="must not be negative"):
            SimHarnessConfig._from_dict({"terminate_timeout": -1}, tmp_path, ci=False)

    def test_retries_must_be_positive(self, tmp_path: Path):
        with pytest.raises(SimHarnessConfigError, match="at least 1"):
            SimHarnessConfig._from_dict({"app_launch_retries": 0}, tmp_path, ci=False)

    def test_developer_dir_may_be_null(self, tmp_path: Path):
        cfg = SimHarnessConfig._from_dict({"developer_dir": None}, tmp_path, ci=False)
        assert cfg.developer_dir is None

    def test_as_dict_renders_paths_as_strings(self, tmp_path: Path):
        cfg = SimHarnessConfig._from_dict({"core_simulator_dir": str(tmp_path)}, tmp_path, ci=False)
        data = cfg.as_dict()
        assert data["core_simulator_dir"] == str(tmp_path)
        assert data["developer_dir"] is None
        assert data["app_launch_retries"] == 3
