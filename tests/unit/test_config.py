"""Tests for config.yaml loading.

Verifies that load_config:
- Applies defaults for optional sections
- Resolves ${VAR} references from the environment
- Rejects configs without usable operations
"""
import pytest

from issue_runner.config import (
    ConfigError,
    RunnerConfig,
    OperationConfig,
    clear_config_cache,
    get_config,
    load_config,
)


@pytest.fixture(autouse=True)
def _clear_cache():
    clear_config_cache()
    yield
    clear_config_cache()


class TestLoadConfig:
    """Tests for load_config()."""

    def test_minimal_config_gets_defaults(self, tmp_path, config_yaml):
        """A config with only operations is complete after loading."""
        config = load_config(str(config_yaml(tmp_path)))

        assert config.repo_root == str(tmp_path.absolute())
        assert config.issue_prefixes == ["ENG-"]
        assert config.agent.binary == "claude"
        assert config.agent.timeout_seconds is None
        assert config.tracker.api_key_env_var == "LINEAR_API_KEY"
        assert config.state_cache.stale_threshold_minutes == 90
        assert config.state_cache.lock_timeout_seconds == 10
        assert config.sync.report_suffix == "sequence"
        assert config.sync.continuous_save is False

    def test_operation_fields(self, tmp_path, config_yaml):
        op = load_config(str(config_yaml(tmp_path))).operations["Review"]
        assert op == OperationConfig(
            name="Review",
            prompt_file="review.md",
            required_status="In Review",
            success_status="Done",
            blocked_status="Blocked",
        )

    def test_paths_derive_from_repo_root(self, tmp_path, config_yaml):
        config = load_config(str(config_yaml(tmp_path)))
        assert config.work_path == tmp_path / ".issue-runner" / "work"
        assert config.prompts_path == tmp_path / ".issue-runner" / "prompts"
        assert config.state_cache_path == tmp_path / ".issue-runner" / "state-mappings.json"

    def test_env_var_substitution(self, tmp_path, config_yaml, monkeypatch):
        """${VAR} references are replaced from the environment."""
        monkeypatch.setenv("RUNNER_AGENT_BIN", "/opt/agent")
        path = config_yaml(tmp_path, "agent:\n  binary: ${RUNNER_AGENT_BIN}\n")
        assert load_config(str(path)).agent.binary == "/opt/agent"

    def test_missing_env_var(self, tmp_path, config_yaml, monkeypatch):
        monkeypatch.delenv("RUNNER_MISSING_VAR", raising=False)
        path = config_yaml(tmp_path, "agent:\n  binary: ${RUNNER_MISSING_VAR}\n")
        with pytest.raises(ConfigError, match="RUNNER_MISSING_VAR"):
            load_config(str(path))

    def test_single_prefix_string(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("issue_prefixes: OPS-\noperations:\n  Groom:\n    prompt_file: groom.md\n")
        assert load_config(str(path)).issue_prefixes == ["OPS-"]


class TestInvalidConfig:
    """Tests for configs load_config must reject."""

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(str(tmp_path / "config.yaml"))

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        with pytest.raises(ConfigError, match="empty"):
            load_config(str(path))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("operations: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(str(path))

    def test_missing_operations(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("issue_prefixes: [ENG-]\n")
        with pytest.raises(ConfigError, match="operations"):
            load_config(str(path))

    def test_operation_without_prompt(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("operations:\n  Review:\n    required_status: Todo\n")
        with pytest.raises(ConfigError, match="operations.Review.prompt_file"):
            load_config(str(path))

    def test_bad_report_suffix(self, tmp_path, config_yaml):
        path = config_yaml(tmp_path, "sync:\n  report_suffix: uuid\n")
        with pytest.raises(ConfigError, match="report_suffix"):
            load_config(str(path))


class TestConfigAccess:

    def test_get_operation_ignores_case(self):
        config = RunnerConfig(operations={"Review": OperationConfig(name="Review", prompt_file="r.md")})
        assert config.get_operation("review").name == "Review"
        assert config.get_operation("Deliver") is None

    def test_get_config_caches(self, tmp_path, config_yaml):
        path = str(config_yaml(tmp_path))
        first = get_config(path)
        assert get_config() is first
        assert get_config(path, force_reload=True) is not first
