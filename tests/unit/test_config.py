"""Unit tests for configuration management."""

import os
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest.mock import patch

import pytest
from agentpad.infrastructure.config import AIConfig, Config, ConfigManager
from agentpad.infrastructure.exceptions import MissingAPIKeyError
from pydantic import ValidationError


class TestConfig:
    """Tests for Config model."""

    def test_default_config(self) -> None:
        """Test creating a config with defaults."""
        config = Config()

        assert config.log_level == "INFO"
        assert config.ai.enabled is True
        assert config.ai.api_type == "anthropic"
        assert config.ai.timeout_seconds == 120
        assert config.ai.soft_deadline_seconds == 25
        assert config.ai.max_concurrent_runs is None
        assert config.scratchpad.max_tasks == 6
        assert config.scratchpad.id_generation_attempts == 1000
        assert config.tasks.max_traversal_depth == 1000

    def test_model_and_endpoint_quotes_stripped(self) -> None:
        ai = AIConfig(model=' "gpt-5-mini" ', base_url='"http://localhost:8080/v1"')

        assert ai.model == "gpt-5-mini"
        assert ai.base_url == "http://localhost:8080/v1"

    def test_blank_model_is_unset(self) -> None:
        assert AIConfig(model="  ").model is None

    def test_api_type_normalized(self) -> None:
        assert AIConfig(api_type=" OpenAI ").api_type == "openai"

    @pytest.mark.parametrize(
        ("timeout", "soft_deadline"),
        [(5, 25), (10, 10)],
    )
    def test_soft_deadline_must_precede_timeout(self, timeout: float, soft_deadline: float) -> None:
        with pytest.raises(ValidationError, match="soft_deadline_seconds"):
            AIConfig(timeout_seconds=timeout, soft_deadline_seconds=soft_deadline)

    def test_short_timeout_from_env_rejected(self) -> None:
        """Test a timeout below the default soft deadline fails at load time."""
        with TemporaryDirectory() as tmpdir, patch.dict(os.environ, {"AI_TIMEOUT": "5"}, clear=True):
            with patch.object(Path, "home", return_value=Path(tmpdir) / "home"):
                with pytest.raises(ValidationError):
                    ConfigManager(project_root=Path(tmpdir)).load_config()


class TestConfigManager:
    """Tests for ConfigManager."""

    def test_load_default_config(self) -> None:
        with TemporaryDirectory() as tmpdir, patch.dict(os.environ, {}, clear=True):
            manager = ConfigManager(project_root=Path(tmpdir))
            with patch.object(Path, "home", return_value=Path(tmpdir) / "home"):
                config = manager.load_config()

        assert config.ai.api_type == "anthropic"

    def test_project_yaml_then_local_override(self) -> None:
        """Test local.yaml overrides the project config."""
        with TemporaryDirectory() as tmpdir, patch.dict(os.environ, {}, clear=True):
            root = Path(tmpdir)
            (root / ".agentpad").mkdir()
            (root / ".agentpad" / "config.yaml").write_text(
                "log_level: DEBUG\nai:\n  api_type: openai\n  timeout_seconds: 60\n"
            )
            (root / ".agentpad" / "local.yaml").write_text("ai:\n  timeout_seconds: 30\n")

            with patch.object(Path, "home", return_value=root / "home"):
                config = ConfigManager(project_root=root).load_config()

        assert config.log_level == "DEBUG"
        assert config.ai.api_type == "openai"
        assert config.ai.timeout_seconds == 30

    def test_env_vars_override_files(self) -> None:
        env = {
            "AI_API_TYPE": "mcp",
            "AI_TIMEOUT": "45",
            "AI_SOFT_DEADLINE": "2.5",
            "AI_MODEL": '"claude-test"',
            "USE_EXTERNAL_AI": "false",
            "MCP_SKIP_SERVERS": "true",
            "AI_MAX_CONCURRENT_RUNS": "3",
        }
        with TemporaryDirectory() as tmpdir, patch.dict(os.environ, env, clear=True):
            root = Path(tmpdir)
            (root / ".agentpad").mkdir()
            (root / ".agentpad" / "config.yaml").write_text("ai:\n  api_type: openai\n")
            with patch.object(Path, "home", return_value=root / "home"):
                config = ConfigManager(project_root=root).load_config()

        assert config.ai.api_type == "mcp"
        assert config.ai.timeout_seconds == 45
        assert config.ai.soft_deadline_seconds == 2.5
        assert config.ai.model == "claude-test"
        assert config.ai.enabled is False
        assert config.ai.mcp_skip_servers is True
        assert config.ai.max_concurrent_runs == 3

    def test_blank_env_var_ignored(self) -> None:
        with TemporaryDirectory() as tmpdir, patch.dict(os.environ, {"AI_API_TYPE": "  "}, clear=True):
            with patch.object(Path, "home", return_value=Path(tmpdir) / "home"):
                config = ConfigManager(project_root=Path(tmpdir)).load_config()

        assert config.ai.api_type == "anthropic"

    def test_api_key_from_env(self) -> None:
        with patch.dict(os.environ, {"AI_API_KEY": " sk-env "}):
            assert ConfigManager().get_api_key() == "sk-env"

    def test_api_key_from_env_file(self) -> None:
        with TemporaryDirectory() as tmpdir, patch.dict(os.environ, {}, clear=True):
            root = Path(tmpdir)
            (root / ".env").write_text('OTHER=1\nAI_API_KEY="sk-file"\n')
            with patch("agentpad.infrastructure.config.keyring.get_password", return_value=None):
                assert ConfigManager(project_root=root).get_api_key() == "sk-file"

    def test_api_key_from_keychain(self) -> None:
        with TemporaryDirectory() as tmpdir, patch.dict(os.environ, {}, clear=True):
            with patch(
                "agentpad.infrastructure.config.keyring.get_password", return_value="sk-keychain"
            ):
                assert ConfigManager(project_root=Path(tmpdir)).get_api_key() == "sk-keychain"

    def test_missing_api_key(self) -> None:
        with TemporaryDirectory() as tmpdir, patch.dict(os.environ, {}, clear=True):
            with patch("agentpad.infrastructure.config.keyring.get_password", return_value=None):
                with pytest.raises(MissingAPIKeyError) as exc_info:
                    ConfigManager(project_root=Path(tmpdir)).get_api_key()

        assert "Remediation" in str(exc_info.value)
        assert MissingAPIKeyError.code == "missing_api_key (set AI_API_KEY)"

    def test_set_api_key_to_env_file(self) -> None:
        with TemporaryDirectory() as tmpdir:
            manager = ConfigManager(project_root=Path(tmpdir))
            manager.set_api_key("sk-new", use_keychain=False)

            assert "AI_API_KEY=sk-new" in (Path(tmpdir) / ".env").read_text()

    def test_database_path_default_and_override(self) -> None:
        with TemporaryDirectory() as tmpdir, patch.dict(os.environ, {}, clear=True):
            root = Path(tmpdir)
            with patch.object(Path, "home", return_value=root / "home"):
                assert ConfigManager(project_root=root).get_database_path() == (
                    root / ".agentpad" / "agentpad.db"
                )

            custom = root / "custom.db"
            with patch.dict(os.environ, {"AGENTPAD_DATABASE_PATH": str(custom)}):
                with patch.object(Path, "home", return_value=root / "home"):
                    assert ConfigManager(project_root=root).get_database_path() == custom
