"""Configuration management with hierarchical loading."""

import os
from pathlib import Path
from typing import Any

import keyring
import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from agentpad.infrastructure.exceptions import MissingAPIKeyError
from agentpad.infrastructure.logger import get_logger

logger = get_logger(__name__)

KEYRING_SERVICE = "agentpad"
KEYRING_API_KEY_NAME = "ai_api_key"


class AIConfig(BaseModel):
    """External inference configuration."""

    enabled: bool = True
    api_type: str = "anthropic"
    model: str | None = None
    base_url: str | None = None
    timeout_seconds: float = Field(default=120.0, gt=0)
    soft_deadline_seconds: float = Field(default=25.0, gt=0)
    attachment_text_limit: int = 120_000  # Negative means unlimited
    max_concurrent_runs: int | None = Field(default=None, ge=1)
    mcp_skip_servers: bool = False

    @field_validator("model", "base_url")
    @classmethod
    def strip_quotes(cls, v: str | None) -> str | None:
        """Strip whitespace and surrounding double quotes; blank means unset."""
        if v is None:
            return None
        v = v.strip()
        if len(v) >= 2 and v.startswith('"') and v.endswith('"'):
            v = v[1:-1]
        return v or None

    @field_validator("api_type")
    @classmethod
    def normalize_api_type(cls, v: str) -> str:
        return v.strip().lower()

    @model_validator(mode="after")
    def check_deadlines(self) -> "AIConfig":
        """The soft deadline must expire before the hard timeout."""
        if self.soft_deadline_seconds >= self.timeout_seconds:
            raise ValueError(
                f"soft_deadline_seconds ({self.soft_deadline_seconds:g}) must be less than "
                f"timeout_seconds ({self.timeout_seconds:g})"
            )
        return self


class ScratchpadConfig(BaseModel):
    """Scratchpad store configuration."""

    max_tasks: int = Field(default=6, ge=1)
    id_generation_attempts: int = Field(default=1000, ge=1)


class TaskConfig(BaseModel):
    """Task hierarchy configuration."""

    max_traversal_depth: int = Field(default=1000, ge=1)


class Config(BaseModel):
    """Main configuration model."""

    version: str = "0.1.0"
    log_level: str = "INFO"
    database_path: Path | None = None
    ai: AIConfig = Field(default_factory=AIConfig)
    scratchpad: ScratchpadConfig = Field(default_factory=ScratchpadConfig)
    tasks: TaskConfig = Field(default_factory=TaskConfig)


class ConfigManager:
    """Manage configuration loading from multiple sources with hierarchy."""

    def __init__(self, project_root: Path | None = None) -> None:
        """Initialize config manager.

        Args:
            project_root: Root directory of the project (default: current directory)
        """
        self.project_root = project_root or Path.cwd()
        self._config: Config | None = None

    def load_config(self) -> Config:
        """Load configuration from all sources in hierarchy order.

        Configuration hierarchy (highest priority last):
        1. System defaults (embedded in Config model)
        2. Project defaults (.agentpad/config.yaml)
        3. User overrides (~/.agentpad/config.yaml)
        4. Project local overrides (.agentpad/local.yaml)
        5. Environment variables

        Returns:
            Merged configuration
        """
        if self._config is not None:
            return self._config

        config_dict: dict[str, Any] = {}

        for path in (
            self.project_root / ".agentpad" / "config.yaml",
            Path.home() / ".agentpad" / "config.yaml",
            self.project_root / ".agentpad" / "local.yaml",
        ):
            if path.exists():
                config_dict = self._merge_dicts(config_dict, self._load_yaml(path))

        config_dict = self._apply_env_vars(config_dict)

        self._config = Config(**config_dict)
        return self._config

    def _load_yaml(self, path: Path) -> dict[str, Any]:
        """Load YAML configuration file."""
        with open(path) as f:
            return yaml.safe_load(f) or {}

    def _merge_dicts(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Recursively merge two dictionaries."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_dicts(result[key], value)
            else:
                result[key] = value
        return result

    def _apply_env_vars(self, config_dict: dict[str, Any]) -> dict[str, Any]:
        """Apply environment variable overrides."""
        env_mappings = {
            "AGENTPAD_LOG_LEVEL": ["log_level"],
            "AGENTPAD_DATABASE_PATH": ["database_path"],
            "AI_API_TYPE": ["ai", "api_type"],
            "AI_MODEL": ["ai", "model"],
            "AI_BASE_ENDPOINT": ["ai", "base_url"],
            "AI_TIMEOUT": ["ai", "timeout_seconds"],
            "AI_SOFT_DEADLINE": ["ai", "soft_deadline_seconds"],
            "AI_ATTACHMENT_TEXT_LIMIT": ["ai", "attachment_text_limit"],
            "AI_MAX_CONCURRENT_RUNS": ["ai", "max_concurrent_runs"],
            "USE_EXTERNAL_AI": ["ai", "enabled"],
            "MCP_SKIP_SERVERS": ["ai", "mcp_skip_servers"],
        }

        for env_var, path in env_mappings.items():
            value = os.getenv(env_var)
            if value is None or not value.strip():
                continue
            current = config_dict
            for key in path[:-1]:
                if key not in current:
                    current[key] = {}
                current = current[key]
            # Numeric strings become numbers; pydantic coerces the rest
            try:
                current[path[-1]] = int(value)
            except ValueError:
                try:
                    current[path[-1]] = float(value)
                except ValueError:
                    current[path[-1]] = value

        return config_dict

    def get_api_key(self) -> str:
        """Get the inference API key from environment, keychain, or .env file.

        Priority:
        1. AI_API_KEY environment variable
        2. System keychain
        3. .env file

        Returns:
            API key

        Raises:
            MissingAPIKeyError: If API key not found
        """
        if key := os.getenv("AI_API_KEY"):
            return key.strip()

        try:
            key = keyring.get_password(KEYRING_SERVICE, KEYRING_API_KEY_NAME)
            if key:
                return key
        except Exception as e:
            logger.debug("keychain_read_failed", error=str(e))

        env_file = self.project_root / ".env"
        if env_file.exists():
            with open(env_file) as f:
                for line in f:
                    line = line.strip()
                    if line.startswith("AI_API_KEY="):
                        value = line.split("=", 1)[1].strip().strip('"').strip("'")
                        if value:
                            return value

        raise MissingAPIKeyError()

    def set_api_key(self, api_key: str, use_keychain: bool = True) -> None:
        """Store API key in keychain or .env file.

        Args:
            api_key: The API key to store
            use_keychain: If True, store in keychain; otherwise in .env file
        """
        if use_keychain:
            try:
                keyring.set_password(KEYRING_SERVICE, KEYRING_API_KEY_NAME, api_key)
                return
            except Exception as e:
                raise ValueError(f"Failed to store API key in keychain: {e}") from e
        env_file = self.project_root / ".env"
        with open(env_file, "a") as f:
            f.write(f"\nAI_API_KEY={api_key}\n")

    def get_database_path(self) -> Path:
        """Get path to SQLite database."""
        config = self.load_config()
        if config.database_path is not None:
            return config.database_path
        db_dir = self.project_root / ".agentpad"
        db_dir.mkdir(exist_ok=True)
        return db_dir / "agentpad.db"

    def get_log_dir(self) -> Path:
        """Get path to log directory."""
        log_dir = self.project_root / ".agentpad" / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        return log_dir
