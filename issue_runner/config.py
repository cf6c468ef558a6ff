"""
Configuration loading and validation for the issue runner.

This module handles:
- Loading config.yaml from the project directory
- Environment variable resolution (${VAR} syntax)
- Validation of required fields
- Default values for optional fields
- Caching of the loaded configuration
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


class ConfigError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""
    pass


@dataclass
class OperationConfig:
    """One named operation and the remote statuses tied to it."""
    name: str
    prompt_file: str                           # Template under prompts/
    required_status: Optional[str] = None      # Remote status expected before publish
    success_status: Optional[str] = None       # Status set when the report is Complete
    blocked_status: Optional[str] = None       # Status set when the report is Blocked


@dataclass
class AgentConfig:
    """Coding agent CLI configuration."""
    binary: str = "claude"                     # Name on PATH or absolute path
    timeout_seconds: Optional[int] = None      # None means wait forever
    skip_permissions: bool = True              # Pass --dangerously-skip-permissions


@dataclass
class TrackerConfig:
    """Issue tracker (Linear) configuration."""
    api_url: str = "https://api.linear.app/graphql"
    api_key_env_var: str = "LINEAR_API_KEY"    # Environment variable holding the key
    timeout_seconds: int = 30                  # HTTP request timeout

    def get_api_key(self) -> str:
        """Get the API key from the environment, empty if unset."""
        return os.environ.get(self.api_key_env_var, "")


@dataclass
class StateCacheConfig:
    """Workflow-state cache configuration."""
    filename: str = "state-mappings.json"
    stale_threshold_minutes: int = 90
    lock_timeout_seconds: int = 10


@dataclass
class SyncConfig:
    """Publish behaviour."""
    continuous_save: bool = False              # Agent saves as it goes; skip comment/body publish
    report_suffix: str = "sequence"            # "sequence" or "timestamp"


@dataclass
class RunnerConfig:
    """
    Main configuration for the issue runner.

    This is the top-level config loaded from config.yaml.
    """
    # Paths
    repo_root: str = "."
    runner_dir: str = ".issue-runner"

    issue_prefixes: list[str] = field(default_factory=list)
    general_prompt: str = "general.md"
    operations: dict[str, OperationConfig] = field(default_factory=dict)

    # Nested configurations
    agent: AgentConfig = field(default_factory=AgentConfig)
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    state_cache: StateCacheConfig = field(default_factory=StateCacheConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)

    def __post_init__(self) -> None:
        """Convert paths to absolute paths based on repo_root."""
        self.repo_root = str(Path(self.repo_root).absolute())

    @property
    def runner_path(self) -> Path:
        """Absolute path to the runner directory."""
        return Path(self.repo_root) / self.runner_dir

    @property
    def work_path(self) -> Path:
        """Root under which item-<id>/op-* working folders live."""
        return self.runner_path / "work"

    @property
    def prompts_path(self) -> Path:
        """Absolute path to the prompt templates."""
        return self.runner_path / "prompts"

    @property
    def logs_path(self) -> Path:
        """Absolute path to the JSONL event logs."""
        return self.runner_path / "logs"

    @property
    def state_cache_path(self) -> Path:
        """Absolute path to the workflow-state cache file."""
        return self.runner_path / self.state_cache.filename

    def get_operation(self, name: str) -> Optional[OperationConfig]:
        """Look up an operation by name, ignoring case."""
        if name in self.operations:
            return self.operations[name]
        for key, op in self.operations.items():
            if key.lower() == name.lower():
                return op
        return None


# Module-level cache for the loaded configuration
_config_cache: Optional[RunnerConfig] = None


def _resolve_env_vars(value: Any) -> Any:
    """
    Resolve environment variables in a value.

    Supports ${VAR} syntax for environment variable substitution.
    Returns the original value if it's not a string.
    """
    if isinstance(value, str):
        pattern = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}')

        def replace(match: re.Match) -> str:
            var_name = match.group(1)
            env_value = os.environ.get(var_name)
            if env_value is None:
                raise ConfigError(f"Environment variable ${{{var_name}}} is not set")
            return env_value

        return pattern.sub(replace, value)

    if isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [_resolve_env_vars(item) for item in value]

    return value


def _parse_operations(data: dict[str, Any]) -> dict[str, OperationConfig]:
    """Parse the operations mapping."""
    if not isinstance(data, dict) or not data:
        raise ConfigError("At least one operation must be configured under 'operations'")

    operations: dict[str, OperationConfig] = {}
    for name, entry in data.items():
        entry = entry or {}
        if not entry.get("prompt_file"):
            raise ConfigError(f"operations.{name}.prompt_file is required")
        operations[name] = OperationConfig(
            name=name,
            prompt_file=entry["prompt_file"],
            required_status=entry.get("required_status"),
            success_status=entry.get("success_status"),
            blocked_status=entry.get("blocked_status"),
        )
    return operations


def _parse_agent_config(data: dict[str, Any]) -> AgentConfig:
    """Parse agent configuration from dict."""
    return AgentConfig(
        binary=data.get("binary", "claude"),
        timeout_seconds=data.get("timeout_seconds"),
        skip_permissions=data.get("skip_permissions", True),
    )


def _parse_tracker_config(data: dict[str, Any]) -> TrackerConfig:
    """Parse tracker configuration from dict."""
    return TrackerConfig(
        api_url=data.get("api_url", "https://api.linear.app/graphql"),
        api_key_env_var=data.get("api_key_env_var", "LINEAR_API_KEY"),
        timeout_seconds=data.get("timeout_seconds", 30),
    )


def _parse_state_cache_config(data: dict[str, Any]) -> StateCacheConfig:
    """Parse state cache configuration from dict."""
    return StateCacheConfig(
        filename=data.get("filename", "state-mappings.json"),
        stale_threshold_minutes=data.get("stale_threshold_minutes", 90),
        lock_timeout_seconds=data.get("lock_timeout_seconds", 10),
    )


def _parse_sync_config(data: dict[str, Any]) -> SyncConfig:
    """Parse sync configuration from dict."""
    report_suffix = data.get("report_suffix", "sequence")
    if report_suffix not in ("sequence", "timestamp"):
        raise ConfigError(
            f"sync.report_suffix must be 'sequence' or 'timestamp', got '{report_suffix}'"
        )
    return SyncConfig(
        continuous_save=data.get("continuous_save", False),
        report_suffix=report_suffix,
    )


def load_config(config_path: Optional[str] = None) -> RunnerConfig:
    """
    Load configuration from config.yaml.

    Args:
        config_path: Optional path to config file. If not provided,
                     looks for config.yaml in current directory.

    Returns:
        RunnerConfig: Loaded and validated configuration.

    Raises:
        ConfigError: If config is invalid or cannot be loaded.
    """
    if config_path is None:
        config_path = "config.yaml"

    path = Path(config_path)
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(path, "r") as f:
            raw_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}")

    if not raw_data:
        raise ConfigError("Configuration file is empty")

    data = _resolve_env_vars(raw_data)

    if "operations" not in data:
        raise ConfigError("Missing required section: operations")

    prefixes = data.get("issue_prefixes", [])
    if isinstance(prefixes, str):
        prefixes = [prefixes]

    return RunnerConfig(
        repo_root=data.get("repo_root", str(path.parent)),
        runner_dir=data.get("runner_dir", ".issue-runner"),
        issue_prefixes=list(prefixes),
        general_prompt=data.get("general_prompt", "general.md"),
        operations=_parse_operations(data["operations"]),
        agent=_parse_agent_config(data.get("agent") or {}),
        tracker=_parse_tracker_config(data.get("tracker") or {}),
        state_cache=_parse_state_cache_config(data.get("state_cache") or {}),
        sync=_parse_sync_config(data.get("sync") or {}),
    )


def get_config(config_path: Optional[str] = None, force_reload: bool = False) -> RunnerConfig:
    """
    Get the cached configuration, loading it if necessary.

    Args:
        config_path: Optional path to config file.
        force_reload: If True, reload configuration even if cached.

    Returns:
        RunnerConfig: The loaded configuration.

    Raises:
        ConfigError: If config is invalid or cannot be loaded.
    """
    global _config_cache

    if _config_cache is None or force_reload:
        _config_cache = load_config(config_path)

    return _config_cache


def clear_config_cache() -> None:
    """Clear the configuration cache. Useful for testing."""
    global _config_cache
    _config_cache = None
