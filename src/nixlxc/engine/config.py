"""Configuration loading."""

import asyncio
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from nixlxc.exceptions import ConfigError
from nixlxc.models.config import NixLxcConfig


logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "NIXLXC_CONFIG"
DEFAULT_CONFIG_FILE = Path("/etc/nixlxc/config.yaml")


class ConfigManager:
    """Locates, reads and validates the configuration file."""

    def __init__(self, config_file: Optional[Path] = None):
        """Initialize configuration manager.

        The file is taken from the argument, then ``NIXLXC_CONFIG``, then the
        system default. Only the system default may be absent.
        """
        self.explicit = config_file is not None or bool(os.environ.get(CONFIG_ENV_VAR))
        if config_file is None:
            config_file = os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_FILE
        self.config_file = Path(config_file).expanduser()
        self.yaml = YAML(typ="safe")
        self.config: Optional[NixLxcConfig] = None

    async def load(self) -> NixLxcConfig:
        """Load configuration, falling back to built-in defaults."""
        exists = await asyncio.to_thread(self.config_file.is_file)
        if not exists:
            if self.explicit:
                raise ConfigError(f"Config file not found: {self.config_file}")
            logger.debug(f"No config file at {self.config_file}, using defaults")
            self.config = NixLxcConfig()
            return self.config

        logger.debug(f"Loading configuration from {self.config_file}")
        data = await self._read_yaml(self.config_file)

        try:
            self.config = NixLxcConfig(**data)
        except ValidationError as e:
            logger.error(f"Invalid config {self.config_file}: {e}")
            raise ConfigError(f"Invalid config {self.config_file}: {e}") from e

        return self.config

    async def _read_yaml(self, file_path: Path) -> Dict[str, Any]:
        """Read and parse YAML file."""
        try:
            content = await asyncio.to_thread(file_path.read_text)
            data = self.yaml.load(content)
        except (OSError, YAMLError) as e:
            raise ConfigError(f"Cannot read config {file_path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config {file_path} must be a mapping")
        return data
