"""Server registry file: load with environment substitution, append new servers."""

import json
import logging
import os
from pathlib import Path
from string import Template
from typing import Any, Dict, Optional, Tuple

import aiofiles
import yaml
from pydantic import ValidationError

from ..models.config import ServerConfig, ServerRegistryConfig
from .error_handler import ConfigurationError
from .server_paths import normalize_server_id

logger = logging.getLogger(__name__)


class ServerConfigManager:
    """Owns the ``{"mcpServers": {...}}`` registry file.

    ``${VAR}`` references are substituted when the file is read; writes go
    back from the unsubstituted document so secrets stay in the environment.
    """

    def __init__(self, config_path: str = "mcp_config.json"):
        self.config_path = Path(config_path)
        self._raw: Dict[str, Any] = {"mcpServers": {}}
        self._config = ServerRegistryConfig()

    @property
    def is_yaml(self) -> bool:
        return self.config_path.suffix.lower() in (".yaml", ".yml")

    @property
    def servers(self) -> Dict[str, ServerConfig]:
        return self._config.mcp_servers

    def load(self) -> ServerRegistryConfig:
        """Read and validate the registry file; a missing file means no servers."""
        if not self.config_path.exists():
            logger.info(f"Server registry {self.config_path} not found, starting with no servers")
            self._raw = {"mcpServers": {}}
            self._config = ServerRegistryConfig()
            return self._config

        try:
            raw_content = self.config_path.read_text(encoding="utf-8")
            raw_data = self._parse(raw_content) or {}
            data = self._parse(self._substitute_env_vars(raw_content)) or {}
            config = ServerRegistryConfig(**data)
        except ValidationError as e:
            logger.error(f"Server registry validation failed: {e}")
            raise ConfigurationError(f"Invalid server registry {self.config_path}: {e}") from e
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            logger.error(f"Server registry parsing failed: {e}")
            raise ConfigurationError(f"Invalid server registry format in {self.config_path}: {e}") from e

        raw_data.setdefault("mcpServers", {})
        self._raw = raw_data
        self._config = config
        logger.info(f"Loaded {len(config.mcp_servers)} servers from {self.config_path}")
        for name, server in config.mcp_servers.items():
            logger.debug(f"  Server {name}: command={server.command}, enabled={server.enabled}")
        return config

    def get(self, server_id: str) -> Optional[Tuple[str, ServerConfig]]:
        """``(display_id, config)`` for any spelling of ``server_id``."""
        norm = normalize_server_id(server_id)
        for name, server in self._config.mcp_servers.items():
            if normalize_server_id(name) == norm:
                return name, server
        return None

    async def add_server(self, server_id: str, server: ServerConfig) -> bool:
        """Append a server and persist; returns False if the id is already present."""
        if self.get(server_id) is not None:
            return False

        self._config.mcp_servers[server_id] = server
        self._raw["mcpServers"][server_id] = server.model_dump(exclude_none=True, exclude={"description"})
        await self.save()
        logger.info(f"Added server {server_id} to {self.config_path}")
        return True

    async def save(self) -> None:
        """Write the registry file in the format its suffix implies."""
        if self.is_yaml:
            content = yaml.dump(self._raw, default_flow_style=False, indent=2, allow_unicode=True)
        else:
            content = json.dumps(self._raw, indent=2, ensure_ascii=False)

        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(self.config_path, "w", encoding="utf-8") as f:
            await f.write(content)

    def _parse(self, content: str) -> Any:
        if self.is_yaml:
            return yaml.safe_load(content)
        return json.loads(content)

    def _substitute_env_vars(self, content: str) -> str:
        """Substitute environment variables in configuration content."""
        return Template(content).safe_substitute(dict(os.environ))
