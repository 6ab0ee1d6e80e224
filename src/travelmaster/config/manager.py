"""
Configuration Manager - Settings and preferences.

Handles YAML/JSON configuration with environment overrides.
"""

import json
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml
from loguru import logger

from travelmaster.config.models import (
    AgentSettings,
    FlowSettings,
    LLMConfig,
    MemorySettings,
    RouterSettings,
)


class ConfigManager:
    """
    Configuration manager for TravelMaster.

    Features:
    - YAML/JSON configuration files
    - Environment variable overrides
    - Dot-notation access
    - Typed section views
    - Default values
    """

    DEFAULT_CONFIG = {
        "app": {
            "name": "TravelMaster",
            "version": "0.1.0",
            "debug": False,
        },
        "llm": LLMConfig().model_dump(),
        "memory": MemorySettings().model_dump(),
        "agent": AgentSettings().model_dump(),
        "router": RouterSettings().model_dump(mode="json"),
        "flow": FlowSettings().model_dump(mode="json"),
        "logging": {
            "level": "INFO",
            "file": "logs/travelmaster.log",
        },
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to configuration file
        """
        self._config_path = Path(config_path) if config_path else Path("config.yaml")
        self._config: Dict[str, Any] = self._deep_copy(self.DEFAULT_CONFIG)
        self._watchers: List[Callable[[str, Any], None]] = []
        self._loaded = False

    @property
    def path(self) -> Path:
        return self._config_path

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def load(self, create_if_missing: bool = False) -> None:
        """Load configuration from file."""
        self._config = self._deep_copy(self.DEFAULT_CONFIG)

        if self._config_path.exists():
            try:
                content = self._config_path.read_text(encoding="utf-8")

                if self._config_path.suffix in [".yaml", ".yml"]:
                    file_config = yaml.safe_load(content) or {}
                else:
                    file_config = json.loads(content)

                self._deep_merge(self._config, file_config)
                logger.info(f"Configuration loaded from {self._config_path}")

            except (OSError, ValueError, yaml.YAMLError) as e:
                logger.warning(f"Failed to load config: {e}, using defaults")
        elif create_if_missing:
            await self.save()
            logger.info("Created default configuration file")

        self._apply_env_overrides()

        self._loaded = True

    async def save(self) -> None:
        """Save configuration to file."""
        try:
            self._config_path.parent.mkdir(parents=True, exist_ok=True)

            if self._config_path.suffix in [".yaml", ".yml"]:
                content = yaml.safe_dump(self._config, default_flow_style=False, sort_keys=False, allow_unicode=True)
            else:
                content = json.dumps(self._config, indent=2, ensure_ascii=False)

            self._config_path.write_text(content, encoding="utf-8")
            logger.debug(f"Configuration saved to {self._config_path}")

        except OSError as e:
            logger.error(f"Failed to save config: {e}")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value.

        Args:
            key: Dot-notation key (e.g., "llm.model")
            default: Default value if not found

        Returns:
            Configuration value
        """
        value: Any = self._config
        for part in key.split("."):
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return default
        return value

    def set(self, key: str, value: Any) -> None:
        """
        Set a configuration value.

        Args:
            key: Dot-notation key
            value: Value to set
        """
        parts = key.split(".")
        config = self._config

        for part in parts[:-1]:
            if not isinstance(config.get(part), dict):
                config[part] = {}
            config = config[part]

        config[parts[-1]] = value

        for watcher in self._watchers:
            try:
                watcher(key, value)
            except Exception as e:
                logger.warning(f"Config watcher error: {e}")

    def watch(self, callback: Callable[[str, Any], None]) -> None:
        """Register a configuration change watcher."""
        self._watchers.append(callback)

    def unwatch(self, callback: Callable[[str, Any], None]) -> None:
        """Unregister a watcher."""
        if callback in self._watchers:
            self._watchers.remove(callback)

    # Typed views

    def llm_config(self) -> LLMConfig:
        return LLMConfig(**self._section("llm"))

    def memory_settings(self) -> MemorySettings:
        return MemorySettings(**self._section("memory"))

    def agent_settings(self) -> AgentSettings:
        return AgentSettings(**self._section("agent"))

    def router_settings(self) -> RouterSettings:
        return RouterSettings(**self._section("router"))

    def flow_settings(self) -> FlowSettings:
        return FlowSettings(**self._section("flow"))

    def _section(self, name: str) -> Dict[str, Any]:
        section = self.get(name, {})
        return dict(section) if isinstance(section, dict) else {}

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides."""
        env_mappings = {
            "TRAVELMASTER_DEBUG": ("app.debug", lambda x: x.lower() == "true"),
            "TRAVELMASTER_LOG_LEVEL": ("logging.level", str.upper),
            "OPENAI_API_KEY": ("llm.api_key", str),
            "TRAVELMASTER_API_KEY": ("llm.api_key", str),
            "TRAVELMASTER_BASE_URL": ("llm.base_url", str),
            "TRAVELMASTER_MODEL": ("llm.model", str),
        }

        # Later entries win, so TRAVELMASTER_API_KEY overrides OPENAI_API_KEY
        for env_var, (config_key, converter) in env_mappings.items():
            value = os.getenv(env_var)
            if value:
                self.set(config_key, converter(value))
                logger.debug(f"Applied env override: {env_var}")

    def _deep_merge(self, base: dict, override: dict) -> None:
        """Deep merge override into base dict."""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def _deep_copy(self, obj: Any) -> Any:
        """Deep copy a dictionary."""
        if isinstance(obj, dict):
            return {k: self._deep_copy(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [self._deep_copy(item) for item in obj]
        return obj

    @property
    def all(self) -> Dict[str, Any]:
        """Get all configuration."""
        return self._deep_copy(self._config)
