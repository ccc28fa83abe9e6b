"""
Sandbox runtime - composition root for one session

Owns the session's capability registry and the bridged sources behind it.
Request handlers receive the runtime (or a caller created from it) by
reference; nothing is kept in module-level state.
"""

import logging

from .bridge import CapabilityBridge, CapabilitySource
from .caller import ProgrammaticToolCaller
from .capabilities import CapabilityRegistry
from .config import BridgeConfig, SandboxConfig
from .exceptions import CapabilityInitializationError, SandboxError
from .savings import TokenCostModel

logger = logging.getLogger(__name__)


class SandboxRuntime:
    """
    Sandbox runtime

    Usage:
        local = CapabilityRegistry()

        @local.register(description="Double a number")
        async def double(x: int) -> int:
            return 2 * x

        async with SandboxRuntime(local, sources=[McpStdioSource(...)]) as runtime:
            caller = runtime.create_caller()
            result = await caller.execute_code("return await double(x=4)")

    ``start`` and ``close`` must run in the same task when stdio MCP
    sources are used, which ``async with`` guarantees.
    """

    def __init__(
        self,
        local_registry: CapabilityRegistry | None = None,
        sources: list[CapabilitySource] | None = None,
        bridge_config: BridgeConfig | None = None,
        sandbox_config: SandboxConfig | None = None,
        cost_model: TokenCostModel | None = None
    ):
        self.local_registry = local_registry or CapabilityRegistry()
        self.bridge = CapabilityBridge(sources, bridge_config)
        self.sandbox_config = sandbox_config or SandboxConfig()
        self.cost_model = cost_model or TokenCostModel()
        self._registry: CapabilityRegistry | None = None

    @property
    def registry(self) -> CapabilityRegistry:
        if self._registry is None:
            raise SandboxError("Runtime not started, use 'async with' or call start()")
        return self._registry

    @property
    def started(self) -> bool:
        return self._registry is not None

    @property
    def init_failures(self) -> list[CapabilityInitializationError]:
        return list(self.bridge.init_failures)

    async def start(self) -> "SandboxRuntime":
        if self._registry is not None:
            return self

        registry = CapabilityRegistry()
        for capability in self.local_registry:
            registry.register_capability(capability)

        await self.bridge.initialize()
        bridged = self.bridge.register_into(registry)
        registry.freeze()
        self._registry = registry

        logger.info(
            f"Runtime started with {len(registry) - bridged} local and {bridged} bridged capabilities"
            + (f", {len(self.bridge.init_failures)} sources failed" if self.bridge.init_failures else "")
        )
        return self

    async def close(self) -> None:
        await self.bridge.close()
        self._registry = None
        logger.info("Runtime closed")

    async def __aenter__(self) -> "SandboxRuntime":
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def create_caller(self) -> ProgrammaticToolCaller:
        """A caller with its own evaluator, for one request"""
        return ProgrammaticToolCaller(self.registry, self.sandbox_config, self.cost_model)
