"""
Capability bridge - exposes capabilities discovered from external MCP servers

Every bridged tool is wrapped into the same one-argument-object calling
convention local capabilities use, and every result is normalized into a
``Success`` or ``Failure`` at this boundary, so nothing downstream has to
inspect result shapes.
"""

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping

from .capabilities import Capability, CapabilityOrigin, CapabilityRegistry
from .config import BridgeConfig, McpServerConfig
from .exceptions import CapabilityInitializationError

logger = logging.getLogger(__name__)


# ==================== Normalized results ====================

@dataclass(frozen=True)
class Success:
    """A bridged call that produced data"""
    data: Any = None
    success: ClassVar[bool] = True
    error_text: ClassVar[None] = None

    def to_payload(self) -> dict:
        return {"success": True, "data": self.data, "error_text": None}


@dataclass(frozen=True)
class Failure:
    """A bridged call the remote side (or the transport) reported as failed"""
    error_text: str
    success: ClassVar[bool] = False
    data: ClassVar[None] = None

    def to_payload(self) -> dict:
        return {"success": False, "data": None, "error_text": self.error_text}


BridgedResult = Success | Failure


def _maybe_json(text: str) -> Any:
    stripped = text.strip()
    if stripped[:1] in ("{", "[") or stripped in ("true", "false", "null"):
        try:
            return json.loads(stripped)
        except ValueError:
            return text
    return text


def _normalize_content_result(raw: Mapping) -> BridgedResult:
    texts = []
    others = []
    for item in raw.get("content") or []:
        if isinstance(item, Mapping) and item.get("type") == "text":
            texts.append(item.get("text", ""))
        elif isinstance(item, Mapping):
            # Binary payloads are not useful inside a script, keep the metadata only
            others.append({k: v for k, v in item.items() if k != "data"})
        else:
            others.append(item)

    if raw.get("isError"):
        message = "\n".join(texts).strip()
        return Failure(message or "Capability reported an error")

    structured = raw.get("structuredContent")
    if structured is not None:
        return Success(structured)

    parsed = [_maybe_json(t) for t in texts] + others
    if not parsed:
        return Success(None)
    if len(parsed) == 1:
        return Success(parsed[0])
    return Success(parsed)


def normalize_result(raw: Any) -> BridgedResult:
    """
    Normalize a raw bridged result into ``Success`` or ``Failure``.

    Understands MCP ``CallToolResult`` objects and their dict form
    (``content``/``isError``/``structuredContent``), dicts that already carry
    a ``success`` flag, and bare values.
    """
    if isinstance(raw, (Success, Failure)):
        return raw

    if hasattr(raw, "model_dump"):
        raw = raw.model_dump()

    if isinstance(raw, Mapping):
        if "content" in raw or "isError" in raw:
            return _normalize_content_result(raw)
        if "success" in raw:
            if raw["success"]:
                return Success(raw.get("data", {k: v for k, v in raw.items() if k != "success"}))
            error = raw.get("error_text") or raw.get("errorText") or raw.get("error")
            return Failure(str(error) if error else "Capability reported an error")

    return Success(raw)


# ==================== Sources ====================

@dataclass(frozen=True)
class ToolSpec:
    """A tool advertised by a capability source"""
    name: str
    description: str = ""
    input_schema: dict = field(default_factory=lambda: {"type": "object", "properties": {}})


class CapabilitySource(ABC):
    """An external, protocol-described provider of capabilities"""

    name: str

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def list_tools(self) -> list[ToolSpec]:
        ...

    @abstractmethod
    async def call_tool(self, name: str, arguments: dict) -> Any:
        """Return the raw result; ``normalize_result`` handles the shape"""
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class McpStdioSource(CapabilitySource):
    """
    MCP server launched as a subprocess and spoken to over stdio.

    The transport is opened in ``connect`` and must be closed from the same
    task that opened it.
    """

    def __init__(self, config: McpServerConfig):
        self.name = config.name
        self.config = config
        self._stack: AsyncExitStack | None = None
        self._session = None

    async def connect(self) -> None:
        from mcp import ClientSession, StdioServerParameters
        from mcp.client.stdio import stdio_client

        server_params = StdioServerParameters(
            command=self.config.command,
            args=self.config.args,
            env={**os.environ, **self.config.env},
        )

        logger.info(f"Starting MCP server '{self.name}': {self.config.command} {' '.join(self.config.args)}")
        stack = AsyncExitStack()
        try:
            read, write = await stack.enter_async_context(stdio_client(server_params))
            session = await stack.enter_async_context(ClientSession(read, write))
            await session.initialize()
        except BaseException:
            await stack.aclose()
            raise

        self._stack = stack
        self._session = session

    async def list_tools(self) -> list[ToolSpec]:
        if self._session is None:
            raise RuntimeError(f"MCP source '{self.name}' is not connected")
        response = await self._session.list_tools()
        return [
            ToolSpec(
                name=tool.name,
                description=tool.description or "",
                input_schema=tool.inputSchema or {"type": "object", "properties": {}},
            )
            for tool in response.tools
        ]

    async def call_tool(self, name: str, arguments: dict) -> Any:
        if self._session is None:
            raise RuntimeError(f"MCP source '{self.name}' is not connected")
        return await self._session.call_tool(name, arguments)

    async def close(self) -> None:
        stack, self._stack, self._session = self._stack, None, None
        if stack is not None:
            await stack.aclose()
            logger.info(f"MCP server '{self.name}' closed")


# ==================== Bridge ====================

class CapabilityBridge:
    """
    Capability bridge

    Discovers tools from every source, wraps them as bridged capabilities
    named ``<prefix><tool name>`` and registers them into a registry.

    - A source that fails to initialize is skipped; the failure is logged
      and kept in ``init_failures``.
    - When two sources expose the same tool name the source registered
      last wins. Every call record names its source, so the winner shows
      up in traces.
    - A bridged name that clashes with a local capability is skipped.
    """

    def __init__(
        self,
        sources: list[CapabilitySource] | None = None,
        config: BridgeConfig | None = None
    ):
        self.config = config or BridgeConfig()
        self.sources: list[CapabilitySource] = list(sources or [])
        self.sources.extend(McpStdioSource(server) for server in self.config.servers)
        self.init_failures: list[CapabilityInitializationError] = []
        self._connected: list[CapabilitySource] = []
        self._capabilities: dict[str, Capability] = {}
        self._initialized = False

    @property
    def capabilities(self) -> list[Capability]:
        return list(self._capabilities.values())

    def tool_names(self) -> list[str]:
        return list(self._capabilities)

    async def initialize(self) -> list[Capability]:
        """Connect every source and collect its capabilities"""
        if self._initialized:
            return self.capabilities
        self._initialized = True

        # Sources connect one at a time; stdio transports are bound to the
        # task that opened them.
        for source in self.sources:
            try:
                specs = await asyncio.wait_for(
                    self._discover(source),
                    timeout=self.config.init_timeout_seconds
                )
            except Exception as e:
                error = CapabilityInitializationError(
                    source.name, f"{type(e).__name__}: {e}", e
                )
                self.init_failures.append(error)
                logger.warning(str(error))
                await self._close_source(source)
                continue

            self._connected.append(source)
            for spec in specs:
                capability = self._wrap(source, spec)
                previous = self._capabilities.get(capability.name)
                if previous is not None:
                    logger.warning(
                        f"Bridged capability '{capability.name}' from '{source.name}' "
                        f"replaces the one from '{previous.source}'"
                    )
                self._capabilities[capability.name] = capability

            logger.info(f"Capability source '{source.name}' provided {len(specs)} tools")

        return self.capabilities

    def register_into(self, registry: CapabilityRegistry) -> int:
        """Add bridged capabilities to ``registry``, returns the count added"""
        added = 0
        for capability in self._capabilities.values():
            existing = registry.get(capability.name)
            if existing is not None and not existing.is_bridged:
                logger.warning(
                    f"Bridged capability '{capability.name}' from '{capability.source}' "
                    f"clashes with a local capability, skipped"
                )
                continue
            registry.register_capability(capability)
            added += 1
        return added

    async def close(self) -> None:
        """Close connected sources in reverse order"""
        while self._connected:
            await self._close_source(self._connected.pop())

    async def _discover(self, source: CapabilitySource) -> list[ToolSpec]:
        await source.connect()
        return await source.list_tools()

    async def _close_source(self, source: CapabilitySource) -> None:
        try:
            await source.close()
        except Exception as e:
            logger.warning(f"Failed to close capability source '{source.name}': {e}")

    def _wrap(self, source: CapabilitySource, spec: ToolSpec) -> Capability:
        tool_name = spec.name

        async def execute(args: dict) -> BridgedResult:
            try:
                raw = await source.call_tool(tool_name, args)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Bridged call {source.name}/{tool_name} failed: {e}")
                return Failure(f"{type(e).__name__}: {e}")
            return normalize_result(raw)

        return Capability(
            name=f"{self.config.name_prefix}{tool_name}",
            description=spec.description or f"Bridged tool {tool_name} from {source.name}",
            execute=execute,
            input_schema=spec.input_schema,
            origin=CapabilityOrigin.BRIDGED,
            source=source.name,
        )
