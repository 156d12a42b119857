"""Configuration loading and management for Repo Compliance.

Configuration sources are merged in priority order:
    1. Defaults (defined in ScanConfig)
    2. Global config (~/.repo-compliance.toml)
    3. Project config (./repo-compliance.toml)
    4. Explicit config file
    5. Environment variables (REPO_COMPLIANCE_* prefix)
    6. CLI overrides (passed as kwargs)

Example:
    >>> config = load_config(verbose=True, workers=2)
    >>> config.verbosity
    'verbose'
    >>> config.workers
    2
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, Optional, get_type_hints

from .exceptions import ConfigurationError

Verbosity = Literal["quiet", "normal", "verbose"]

ENV_PREFIX = "REPO_COMPLIANCE_"


@dataclass(frozen=True)
class ScanConfig:
    """Configuration for scanning, analysis runs and findings retrieval.

    Attributes:
        Storage:
            db_path: SQLite database holding snapshots, runs, findings, tasks

        Execution:
            workers: Maximum analysis runs executing concurrently
            run_timeout_seconds: Wall-clock budget for a single analysis run

        File filtering:
            max_file_size_mb: Files above this size are skipped, not scanned
            max_files: Maximum number of files inventoried per snapshot
            exclude_patterns: Glob patterns (relative paths) never inventoried
            include_hidden_patterns: Hidden paths kept even when hidden files
                are disallowed (CI definitions, env files)
            allow_hidden_files: Inventory every hidden file/directory
            follow_symlinks: Follow symbolic links during inventory

        Evidence:
            snippet_length: Maximum characters kept per evidence snippet

        Findings retrieval:
            findings_default_limit: Page size when the caller gives none
            findings_max_limit: Hard upper bound on page size

        Output control:
            verbosity: Logging verbosity level
            log_file: Optional file receiving a copy of all log records
    """

    # Storage
    db_path: str = ".repo-compliance/compliance.db"

    # Execution
    workers: int = 4
    run_timeout_seconds: int = 600

    # File filtering
    max_file_size_mb: float = 1.0
    max_files: int = 50000
    exclude_patterns: list[str] = field(
        default_factory=lambda: [
            "node_modules/*",
            "vendor/*",
            "dist/*",
            "build/*",
            ".git/*",
            "venv/*",
            ".venv/*",
            "__pycache__/*",
            ".tox/*",
            ".mypy_cache/*",
            ".pytest_cache/*",
            "coverage/*",
            "*.min.js",
            "*.bundle.js",
            "*.map",
            "*.lock",
        ]
    )
    include_hidden_patterns: list[str] = field(
        default_factory=lambda: [
            ".github/*",
            ".gitlab-ci.yml",
            ".gitlab-ci/*",
            ".circleci/*",
            ".travis.yml",
            ".azure-pipelines/*",
            ".env",
            ".env.*",
        ]
    )
    allow_hidden_files: bool = False
    follow_symlinks: bool = False

    # Evidence
    snippet_length: int = 100

    # Findings retrieval
    findings_default_limit: int = 50
    findings_max_limit: int = 100

    # Output control
    verbosity: Verbosity = "normal"
    log_file: Optional[str] = None

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if self.workers < 1:
            raise ValueError("workers must be at least 1")
        if self.run_timeout_seconds < 1:
            raise ValueError("run_timeout_seconds must be at least 1")
        if self.max_file_size_mb <= 0:
            raise ValueError("max_file_size_mb must be positive")
        if self.max_files < 1:
            raise ValueError("max_files must be at least 1")
        if self.snippet_length < 8:
            raise ValueError("snippet_length must be at least 8")
        if self.findings_max_limit < 1:
            raise ValueError("findings_max_limit must be at least 1")
        if not 1 <= self.findings_default_limit <= self.findings_max_limit:
            raise ValueError("findings_default_limit must be between 1 and findings_max_limit")
        if self.verbosity not in ("quiet", "normal", "verbose"):
            raise ValueError(f"unknown verbosity '{self.verbosity}'")

    @property
    def max_file_size_bytes(self) -> int:
        """Get max file size in bytes."""
        return int(self.max_file_size_mb * 1024 * 1024)


def load_config(config_file: Optional[Path] = None, **overrides) -> ScanConfig:
    """Load configuration with auto-discovery and merging.

    Args:
        config_file: Optional explicit config file path
        **overrides: Direct overrides (typically from CLI flags)

    Returns:
        Validated ScanConfig instance

    Raises:
        ConfigurationError: If a config file or value is invalid
    """
    merged: dict = {}

    global_config = Path.home() / ".repo-compliance.toml"
    if global_config.exists():
        merged.update(_load_toml_file(global_config))

    project_config = Path.cwd() / "repo-compliance.toml"
    if project_config.exists():
        merged.update(_load_toml_file(project_config))

    if config_file is not None:
        if not config_file.exists():
            raise ConfigurationError(f"Config file not found: {config_file}")
        merged.update(_load_toml_file(config_file))

    merged.update(_load_env_vars())

    # Convert verbosity boolean flags to string
    if "verbose" in overrides:
        if overrides["verbose"]:
            overrides["verbosity"] = "verbose"
        del overrides["verbose"]
    if "quiet" in overrides:
        if overrides["quiet"]:
            overrides["verbosity"] = "quiet"
        del overrides["quiet"]

    merged.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return ScanConfig(**merged)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid configuration: {e}")


def _load_env_vars() -> dict[str, Any]:
    """Load configuration from REPO_COMPLIANCE_* environment variables.

    List fields (exclude_patterns, include_hidden_patterns) are not read from
    the environment.
    """
    type_hints = get_type_hints(ScanConfig)
    result: dict[str, Any] = {}

    for field_name in ScanConfig.__dataclass_fields__:
        env_key = f"{ENV_PREFIX}{field_name.upper()}"
        env_value = os.environ.get(env_key)
        if env_value is None:
            continue

        type_hint = type_hints.get(field_name)
        if type_hint is None:
            continue

        try:
            parsed = _parse_env_value(env_value, type_hint)
        except ValueError as e:
            raise ConfigurationError(f"Invalid {env_key}: {e}")
        if parsed is not None:
            result[field_name] = parsed

    return result


def _parse_env_value(value: str, type_hint: Any) -> Any:
    """Parse an environment variable string to the field's type."""
    origin = getattr(type_hint, "__origin__", None)

    # Optional[X] is Union[X, None]
    args = getattr(type_hint, "__args__", ())
    if type(None) in args:
        non_none_types = [t for t in args if t is not type(None)]
        if non_none_types:
            type_hint = non_none_types[0]
            origin = getattr(type_hint, "__origin__", None)

    if origin is list or type_hint is list:
        return None

    if type_hint is bool:
        lower = value.lower()
        if lower in ("true", "1", "yes", "on"):
            return True
        if lower in ("false", "0", "no", "off"):
            return False
        raise ValueError(f"expected true/false, got '{value}'")

    if type_hint is int:
        return int(value)

    if type_hint is float:
        return float(value)

    if type_hint is str or origin is Literal:
        return value

    return None


def _load_toml_file(path: Path) -> dict:
    """Load a TOML file, accepting an optional [repo-compliance] table."""
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigurationError(f"Invalid config file '{path}': {e}")
    return data.get("repo-compliance", data)
