"""Configuration service — loads, saves and provides access to AppConfig."""
from __future__ import annotations

import json
import logging
import os

from pydantic import ValidationError

from iptv_cache.database import DB_NAME
from iptv_cache.models.config import AppConfig

logger = logging.getLogger(__name__)


class ConfigService:
    """Manages application configuration with file persistence.

    The config is kept in-memory after first load and re-read on explicit
    ``load()`` calls. Invalid files fall back to defaults.
    """

    def __init__(self, data_dir: str):
        self.data_dir = data_dir
        self.config_file = os.path.join(data_dir, "config.json")
        self.db_path = os.path.join(data_dir, DB_NAME)
        self._config = AppConfig()

    def load(self) -> AppConfig:
        """Load configuration from disk, applying defaults."""
        if os.path.exists(self.config_file):
            try:
                with open(self.config_file) as f:
                    self._config = AppConfig.model_validate(json.load(f))
                return self._config
            except (OSError, json.JSONDecodeError, ValidationError) as e:
                logger.error(f"Error loading config: {e}")

        self._config = AppConfig()
        return self._config

    def save(self, config: AppConfig | None = None) -> None:
        """Persist the config to disk."""
        if config is not None:
            self._config = config
        os.makedirs(self.data_dir, exist_ok=True)
        with open(self.config_file, "w") as f:
            json.dump(self._config.model_dump(), f, indent=2)

    @property
    def config(self) -> AppConfig:
        return self._config

    # ------------------------------------------------------------------
    # Convenience accessors
    # ------------------------------------------------------------------

    def get_request_timeout(self) -> float:
        return self._config.options.request_timeout

    def get_user_agent(self) -> str:
        return self._config.options.user_agent

    def get_api_path(self) -> str:
        return self._config.options.api_path

    def get_default_episode_container(self) -> str:
        return self._config.options.default_episode_container
