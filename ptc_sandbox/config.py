"""
Configuration dataclasses

Every component takes its configuration as a dataclass with working
defaults. Deployment overrides come from ``PTC_*`` environment variables.
"""

import os
from dataclasses import dataclass, field
from typing import Mapping

ENV_PREFIX = "PTC_"


def _env_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(f"{ENV_PREFIX}{name}")
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}")


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(f"{ENV_PREFIX}{name}")
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}")


def _env_str(environ: Mapping[str, str], name: str, default: str) -> str:
    raw = environ.get(f"{ENV_PREFIX}{name}")
    return raw.strip() if raw and raw.strip() else default


@dataclass
class SandboxConfig:
    """Sandbox evaluator and governor configuration"""
    timeout_seconds: float = 25.0
    max_output_size: int = 100000  # Max characters of captured print() output

    def __post_init__(self):
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "SandboxConfig":
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            timeout_seconds=_env_float(env, "TIMEOUT_SECONDS", defaults.timeout_seconds),
            max_output_size=_env_int(env, "MAX_OUTPUT_SIZE", defaults.max_output_size),
        )


@dataclass
class McpServerConfig:
    """One MCP server launched over stdio"""
    name: str
    command: str
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, name: str, data: Mapping) -> "McpServerConfig":
        """Build from the ``mcpServers`` entry format used by MCP clients"""
        if "command" not in data:
            raise ValueError(f"MCP server '{name}' has no command")
        return cls(
            name=name,
            command=data["command"],
            args=list(data.get("args", [])),
            env=dict(data.get("env", {})),
        )


@dataclass
class BridgeConfig:
    """Capability bridge configuration"""
    name_prefix: str = "mcp_"
    init_timeout_seconds: float = 30.0
    servers: list[McpServerConfig] = field(default_factory=list)


@dataclass
class ContextWindowConfig:
    """Context window manager configuration"""
    max_context_tokens: int = 60000
    keep_recent_messages: int = 6
    max_tool_result_chars: int = 2000
    chars_per_token: int = 4


@dataclass
class OrchestratorConfig:
    """Model loop configuration"""
    model: str = "claude-sonnet-4-5-20250929"
    max_tokens: int = 4096
    max_iterations: int = 10  # Guards against endless tool loops
    sandbox_config: SandboxConfig = field(default_factory=SandboxConfig)
    context_config: ContextWindowConfig = field(default_factory=ContextWindowConfig)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "OrchestratorConfig":
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            model=_env_str(env, "MODEL", defaults.model),
            max_tokens=_env_int(env, "MAX_TOKENS", defaults.max_tokens),
            max_iterations=_env_int(env, "MAX_ITERATIONS", defaults.max_iterations),
            sandbox_config=SandboxConfig.from_env(env),
        )
