# Programmatic Tool Calling sandbox
# Runs model-written orchestration scripts against local and MCP-bridged
# capabilities, traces every call and estimates the tokens saved

from .orchestrator import ProgrammaticToolOrchestrator, OrchestratorResult
from .runtime import SandboxRuntime
from .caller import ProgrammaticToolCaller, CodeExecutionResult, CODE_EXECUTION_TOOL_NAME
from .evaluator import SandboxEvaluator, SandboxRun, RunStatus
from .governor import ExecutionGovernor
from .capabilities import Capability, CapabilityOrigin, CapabilityRegistry
from .bridge import (
    CapabilityBridge,
    CapabilitySource,
    McpStdioSource,
    ToolSpec,
    Success,
    Failure,
    normalize_result
)
from .tracer import CallTracer, CapabilityCallRecord
from .savings import TokenCostModel, TokenSavingsEstimate, estimate_token_savings
from .context_window import ContextWindow, ContextWindowManager
from .config import (
    SandboxConfig,
    BridgeConfig,
    McpServerConfig,
    ContextWindowConfig,
    OrchestratorConfig
)
from .exceptions import (
    SandboxError,
    SandboxBusyError,
    CapabilityInitializationError,
    CapabilityExecutionError,
    SerializationError,
    TimeoutError,
    ScriptError
)

__all__ = [
    # Core
    "ProgrammaticToolOrchestrator",
    "OrchestratorResult",
    "SandboxRuntime",
    "ProgrammaticToolCaller",
    "CodeExecutionResult",
    "CODE_EXECUTION_TOOL_NAME",
    # Execution
    "SandboxEvaluator",
    "SandboxRun",
    "RunStatus",
    "ExecutionGovernor",
    # Capabilities
    "Capability",
    "CapabilityOrigin",
    "CapabilityRegistry",
    "CapabilityBridge",
    "CapabilitySource",
    "McpStdioSource",
    "ToolSpec",
    "Success",
    "Failure",
    "normalize_result",
    # Tracing and accounting
    "CallTracer",
    "CapabilityCallRecord",
    "TokenCostModel",
    "TokenSavingsEstimate",
    "estimate_token_savings",
    "ContextWindow",
    "ContextWindowManager",
    # Configuration
    "SandboxConfig",
    "BridgeConfig",
    "McpServerConfig",
    "ContextWindowConfig",
    "OrchestratorConfig",
    # Exceptions
    "SandboxError",
    "SandboxBusyError",
    "CapabilityInitializationError",
    "CapabilityExecutionError",
    "SerializationError",
    "TimeoutError",
    "ScriptError"
]
