"""Provider configuration holder backed by a JSON file."""

import os
import json
import logging
from pathlib import Path

from pydantic import ValidationError

from framespeak.models import ProviderConfig, ProviderKind

logger = logging.getLogger(__name__)


def default_provider_config() -> ProviderConfig:
    """Local Ollama defaults, overridable through the environment."""
    return ProviderConfig(
        endpoint=os.environ.get("FRAMESPEAK_LLM_ENDPOINT", "http://localhost:11434/api/chat"),
        model=os.environ.get("FRAMESPEAK_LLM_MODEL", "llava:latest"),
        api_key=os.environ.get("FRAMESPEAK_LLM_API_KEY") or None,
        temperature=0.7,
        max_tokens=4096,
        provider=os.environ.get("FRAMESPEAK_LLM_PROVIDER", ProviderKind.OLLAMA.value),
    )


class ConfigStore:
    """Holds the current ProviderConfig and persists user changes."""

    def __init__(self, config_path: str):
        self.config_path = Path(config_path)
        self._config = self.load()

    @property
    def config(self) -> ProviderConfig:
        return self._config

    def load(self) -> ProviderConfig:
        """Read the saved config, falling back to defaults."""
        if not self.config_path.exists():
            return default_provider_config()
        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                return ProviderConfig(**json.load(f))
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"Failed to load config: {e}, using defaults")
            return default_provider_config()

    def save(self, config: ProviderConfig) -> None:
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, "w", encoding="utf-8") as f:
            json.dump(config.model_dump(), f, ensure_ascii=False, indent=2)
        self._config = config
        logger.info(f"Saved {config.provider} config for model {config.model}")

    def update(self, **changes) -> ProviderConfig:
        """Validate and save a copy of the current config with changes applied."""
        config = ProviderConfig(**{**self._config.model_dump(), **changes})
        self.save(config)
        return config

    def reset(self) -> ProviderConfig:
        if self.config_path.exists():
            self.config_path.unlink()
        self._config = default_provider_config()
        return self._config
