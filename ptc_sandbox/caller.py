"""
Programmatic tool caller - the ``code_execution`` tool offered to the model
"""

import logging
from dataclasses import dataclass
from typing import Any

from .capabilities import CapabilityRegistry
from .config import SandboxConfig
from .evaluator import SandboxEvaluator, SandboxRun
from .governor import ExecutionGovernor
from .helpers import SCRIPT_HELPERS
from .savings import TokenCostModel, TokenSavingsEstimate, estimate_token_savings

logger = logging.getLogger(__name__)

CODE_EXECUTION_TOOL_NAME = "code_execution"


def _unique(names: list[str]) -> list[str]:
    return list(dict.fromkeys(names))


def build_run_metadata(run: SandboxRun, savings: TokenSavingsEstimate) -> dict:
    """Metadata payload of a finished run"""
    local_calls = [r for r in run.trace if not r.is_bridged]
    bridged_calls = [r for r in run.trace if r.is_bridged]
    metadata = {
        "runId": run.id,
        "toolCallCount": len(run.trace),
        "localCount": len(local_calls),
        "bridgedCount": len(bridged_calls),
        "tokenSavingsBreakdown": savings.to_dict(),
        "totalTokensSaved": savings.total,
        "savingsExplanation": savings.breakdown,
        "toolsUsed": _unique([r.capability for r in run.trace]),
        "localToolsUsed": _unique([r.capability for r in local_calls]),
        "bridgedToolsUsed": _unique([r.capability for r in bridged_calls]),
        "executionTimeMs": run.execution_time_ms,
        "perCallTrace": [r.to_dict() for r in run.trace],
    }
    if run.stdout:
        metadata["stdout"] = run.stdout
    return metadata


@dataclass
class CodeExecutionResult:
    """Final result of one ``code_execution`` call"""
    output: Any
    metadata: dict
    run: SandboxRun
    savings: TokenSavingsEstimate

    def to_dict(self) -> dict:
        return {"output": self.output, "metadata": self.metadata}


class ProgrammaticToolCaller:
    """
    Programmatic tool caller

    Owns one evaluator and its governor. Callers are cheap; create one per
    request so concurrent requests never share a run.

    Usage:
        caller = ProgrammaticToolCaller(registry)
        result = await caller.execute_code("return await double(x=4)")
        result.output                         # 8
        result.metadata["toolCallCount"]      # 1
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        config: SandboxConfig | None = None,
        cost_model: TokenCostModel | None = None
    ):
        self.registry = registry
        self.config = config or SandboxConfig()
        self.cost_model = cost_model or TokenCostModel()
        self.evaluator = SandboxEvaluator(registry, self.config)
        self.governor = ExecutionGovernor(self.evaluator, self.config)

    async def execute_code(self, code: str) -> CodeExecutionResult:
        """
        Run an orchestration script and assemble ``{output, metadata}``.

        ``ScriptError``, ``TimeoutError`` and ``SandboxBusyError`` propagate;
        the partial run is attached to the error.
        """
        run = await self.governor.run(code)

        savings = estimate_token_savings(run.trace, self.cost_model)
        metadata = build_run_metadata(run, savings)

        logger.info(
            f"Code execution completed in {run.execution_time_ms:.0f}ms, "
            f"{metadata['toolCallCount']} tool calls "
            f"({metadata['localCount']} local, {metadata['bridgedCount']} bridged), "
            f"~{savings.total} tokens saved"
        )

        return CodeExecutionResult(
            output=run.output,
            metadata=metadata,
            run=run,
            savings=savings,
        )

    def generate_tool_documentation(self) -> str:
        return self.registry.generate_documentation()

    def create_code_execution_tool(self) -> dict:
        """Anthropic tool definition for ``code_execution``"""
        local_names = ", ".join(self.registry.local_names()) or "none"
        bridged_names = ", ".join(self.registry.bridged_names()) or "none"
        helpers = ", ".join(SCRIPT_HELPERS)

        return {
            "name": CODE_EXECUTION_TOOL_NAME,
            "description": f"""Execute a Python orchestration script that calls several tools in one step. \
USE THIS TOOL when a task needs 2+ tool calls, iteration over items, or filtering/aggregating results.

The script is the body of an async function:
- call tools with `await`, passing one dict or keyword arguments: `await get_user({{"id": "u1"}})` or `await get_user(id="u1")`
- run independent calls concurrently with `await asyncio.gather(...)`
- `return` the final value; only the returned value comes back to you
- imports are not available

Available tools:
- Local tools: {local_names}
- Bridged (MCP) tools: {bridged_names}

Bridged tools always return {{"success": bool, "data": ..., "error_text": str | None}}.

Defensive helpers (always available): {helpers}
- safe_get(obj, "path.to.0.prop", default) for nested values that may be missing
- to_array(value) / safe_map(value, fn) / safe_filter(value, fn) for values that may not be lists
- is_success(r), extract_data(r), extract_text(r, default), get_command_output(r) for tool responses

Time budget: {self.config.timeout_seconds:g} seconds per script.""",
            "input_schema": {
                "type": "object",
                "properties": {
                    "code": {
                        "type": "string",
                        "description": "Python script body. Use await to call tools and return the final result."
                    }
                },
                "required": ["code"]
            }
        }
