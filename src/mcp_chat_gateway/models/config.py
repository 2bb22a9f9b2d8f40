"""Configuration models for the MCP server registry file."""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SpawnSpec(BaseModel):
    """How to start a stdio MCP server process."""

    model_config = ConfigDict(frozen=True)

    command: str = Field(..., min_length=1)
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)

    def describe(self) -> str:
        return " ".join([self.command, *self.args])


class ServerConfig(BaseModel):
    """One entry of the ``mcpServers`` table."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    enabled: bool = True
    command: str
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    description: Optional[str] = None

    @field_validator("command")
    @classmethod
    def validate_command(cls, v: str) -> str:
        """A server entry must name something to execute."""
        if not v or not v.strip():
            raise ValueError("command is required for stdio servers")
        return v

    @field_validator("args", mode="before")
    @classmethod
    def coerce_args(cls, v):
        return [] if v is None else [str(a) for a in v]

    @field_validator("env", mode="before")
    @classmethod
    def coerce_env(cls, v):
        return {} if v is None else {str(k): str(val) for k, val in v.items()}

    def to_spawn_spec(self) -> SpawnSpec:
        return SpawnSpec(command=self.command, args=list(self.args), env=dict(self.env))


class ServerRegistryConfig(BaseModel):
    """Complete contents of the server registry file."""

    model_config = ConfigDict(populate_by_name=True)

    mcp_servers: Dict[str, ServerConfig] = Field(default_factory=dict, alias="mcpServers")

    @field_validator("mcp_servers")
    @classmethod
    def validate_server_names(cls, v: Dict[str, ServerConfig]) -> Dict[str, ServerConfig]:
        """Server ids become URL and log keys, so keep them simple."""
        for name in v.keys():
            if not name.replace("_", "").replace("-", "").replace(".", "").isalnum():
                raise ValueError(
                    f'Server name "{name}" must be alphanumeric with underscores/hyphens/dots only'
                )
        return v
