"""Tests for configuration loading and validation."""

import os

import pytest

from repo_compliance.config import ScanConfig, load_config
from repo_compliance.exceptions import ConfigurationError, ErrorCode


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """No global/project config files and no REPO_COMPLIANCE_* variables."""
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)
    for key in list(os.environ):
        if key.startswith("REPO_COMPLIANCE_"):
            monkeypatch.delenv(key)


class TestScanConfigDefaults:
    def test_defaults(self):
        config = ScanConfig()
        assert config.workers == 4
        assert config.run_timeout_seconds == 600
        assert config.snippet_length == 100
        assert config.findings_default_limit == 50
        assert config.findings_max_limit == 100
        assert config.verbosity == "normal"

    def test_max_file_size_bytes(self):
        assert ScanConfig(max_file_size_mb=2.0).max_file_size_bytes == 2 * 1024 * 1024

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"workers": 0},
            {"run_timeout_seconds": 0},
            {"max_file_size_mb": 0},
            {"snippet_length": 4},
            {"findings_default_limit": 200},
            {"verbosity": "loud"},
        ],
    )
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            ScanConfig(**kwargs)


class TestLoadConfig:
    def test_no_sources_gives_defaults(self):
        assert load_config() == ScanConfig()

    def test_overrides_win(self):
        config = load_config(workers=2, db_path=None)
        assert config.workers == 2
        assert config.db_path == ScanConfig().db_path

    def test_verbose_flag_maps_to_verbosity(self):
        assert load_config(verbose=True, quiet=False).verbosity == "verbose"
        assert load_config(verbose=False, quiet=True).verbosity == "quiet"

    def test_project_file_with_table(self, tmp_path):
        (tmp_path / "repo-compliance.toml").write_text(
            '[repo-compliance]\nworkers = 3\nexclude_patterns = ["fixtures/*"]\n'
        )
        config = load_config()
        assert config.workers == 3
        assert config.exclude_patterns == ["fixtures/*"]

    def test_explicit_file_beats_project_file(self, tmp_path):
        (tmp_path / "repo-compliance.toml").write_text("workers = 3\n")
        explicit = tmp_path / "explicit.toml"
        explicit.write_text("workers = 5\n")
        assert load_config(config_file=explicit).workers == 5

    def test_env_beats_files(self, tmp_path, monkeypatch):
        (tmp_path / "repo-compliance.toml").write_text("run_timeout_seconds = 30\n")
        monkeypatch.setenv("REPO_COMPLIANCE_RUN_TIMEOUT_SECONDS", "45")
        monkeypatch.setenv("REPO_COMPLIANCE_FOLLOW_SYMLINKS", "yes")
        config = load_config()
        assert config.run_timeout_seconds == 45
        assert config.follow_symlinks is True

    def test_bad_env_value(self, monkeypatch):
        monkeypatch.setenv("REPO_COMPLIANCE_ALLOW_HIDDEN_FILES", "maybe")
        with pytest.raises(ConfigurationError):
            load_config()

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(config_file=tmp_path / "nope.toml")
        assert exc_info.value.code is ErrorCode.INVALID_CONFIG

    def test_malformed_toml(self, tmp_path):
        bad = tmp_path / "bad.toml"
        bad.write_text("workers = [unclosed\n")
        with pytest.raises(ConfigurationError):
            load_config(config_file=bad)

    def test_invalid_value_wrapped(self):
        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            load_config(workers=0)

    def test_unknown_key_wrapped(self, tmp_path):
        cfg = tmp_path / "unknown.toml"
        cfg.write_text("colour = 'blue'\n")
        with pytest.raises(ConfigurationError):
            load_config(config_file=cfg)
