"""
Programmatic Tool Calling orchestrator

Responsibilities:
1. Talk to the Claude API
2. Offer the ``code_execution`` tool next to the plain capabilities
3. Route tool calls to the sandbox or straight to the registry
4. Keep the conversation inside the context window
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

import anthropic

from .bridge import normalize_result
from .caller import CODE_EXECUTION_TOOL_NAME, ProgrammaticToolCaller
from .config import OrchestratorConfig
from .context_window import ContextWindowManager
from .exceptions import SandboxError
from .runtime import SandboxRuntime

logger = logging.getLogger(__name__)

FINAL_STOP_REASONS = ("end_turn", "stop_sequence", "max_tokens")


@dataclass
class OrchestratorResult:
    """Final reply of one ``run`` plus the session metadata"""
    text: str
    metadata: dict
    messages: list[dict] = field(default_factory=list)


@dataclass
class SessionUsage:
    """Counters accumulated over one ``run``"""
    input_tokens: int = 0
    output_tokens: int = 0
    direct_tool_calls: int = 0
    code_executions: list[dict] = field(default_factory=list)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def tool_call_count(self) -> int:
        return self.direct_tool_calls + sum(
            e["metadata"]["toolCallCount"] for e in self.code_executions
        )


def _dump(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, indent=2, default=str)


class ProgrammaticToolOrchestrator:
    """
    Programmatic Tool Calling orchestrator

    Usage:
        async with SandboxRuntime(local_registry) as runtime:
            orchestrator = ProgrammaticToolOrchestrator(runtime)
            result = await orchestrator.run("Which team members are over budget?")
            print(result.text)
            print(result.metadata["tokensSaved"])

    Without an API key the client falls back to Bedrock credentials.
    """

    def __init__(
        self,
        runtime: SandboxRuntime,
        config: OrchestratorConfig | None = None,
        api_key: str | None = None,
        client: Any = None
    ):
        self.runtime = runtime
        self.config = config or OrchestratorConfig()
        self.api_key = api_key
        self._client = client

    @property
    def client(self):
        """Lazily created Anthropic client"""
        if self._client is None:
            if self.api_key:
                self._client = anthropic.Anthropic(api_key=self.api_key)
            else:
                self._client = anthropic.AnthropicBedrock()
        return self._client

    def _build_system_prompt(self, caller: ProgrammaticToolCaller) -> str:
        tools_doc = caller.generate_tool_documentation()

        return f"""You are a capable assistant that completes multi-step tasks by writing code.

## Code execution environment

The `{CODE_EXECUTION_TOOL_NAME}` tool runs a Python script in which these async tools are predefined:

{tools_doc}

## Rules

1. **Every tool call needs `await`**, e.g. `user = await get_user(id="u1")`
2. **`return` the final value.** Only the returned value is sent back to you; intermediate results stay in the sandbox
3. Filter, aggregate and branch inside the script instead of asking for raw data
4. Independent calls can run concurrently: `a, b = await asyncio.gather(get_a(), get_b())`
5. Tools whose name starts with `mcp_` come from external servers and return
   `{{"success": bool, "data": ..., "error_text": ...}}`; check `success` before using `data`

## Patterns

Batch several lookups:
```python
totals = {{}}
for region in ["East", "West", "Central"]:
    rows = await query_sales(region=region)
    totals[region] = sum(safe_map(rows, lambda r: r["revenue"]))
return totals
```

Stop early once the answer is found:
```python
for server in ["us-east", "eu-west", "ap-south"]:
    status = await check_health(server_id=server)
    if safe_get(status, "healthy", False):
        return server
return None
```

## Notes

- Scripts cannot import modules or reach the network or filesystem except through the tools
- A script has {caller.config.timeout_seconds:g} seconds before it is stopped
"""

    def _get_all_tools(self, caller: ProgrammaticToolCaller) -> list[dict]:
        return [caller.create_code_execution_tool()] + caller.registry.to_claude_tools()

    def create_context_manager(self) -> ContextWindowManager:
        return ContextWindowManager(self.config.context_config)

    def session_metadata(
        self,
        usage: SessionUsage,
        context_manager: ContextWindowManager
    ) -> dict:
        """
        Session payload. ``tokensSaved`` counts context trimming only; each
        entry of ``codeExecutions`` carries its own sandbox estimate.
        """
        return {
            "tokensSaved": context_manager.tokens_saved,
            "totalTokens": usage.total_tokens,
            "inputTokens": usage.input_tokens,
            "outputTokens": usage.output_tokens,
            "toolCallCount": usage.tool_call_count,
            "codeExecutions": list(usage.code_executions),
        }

    async def run(
        self,
        user_message: str,
        conversation_history: list[dict] | None = None
    ) -> OrchestratorResult:
        """
        Answer one user request.

        Args:
            user_message: the user's input
            conversation_history: optional earlier messages

        Returns:
            the final reply and the session metadata
        """
        messages = conversation_history.copy() if conversation_history else []
        messages.append({"role": "user", "content": user_message})

        # One caller and context manager per request, so concurrent requests
        # never share a run or a saved-token counter
        caller = self.runtime.create_caller()
        context_manager = self.create_context_manager()
        usage = SessionUsage()
        system_prompt = self._build_system_prompt(caller)
        tools = self._get_all_tools(caller)

        for iteration in range(1, self.config.max_iterations + 1):
            logger.info(f"Iteration {iteration}: calling Claude API")

            response = await asyncio.to_thread(
                self.client.messages.create,
                model=self.config.model,
                max_tokens=self.config.max_tokens,
                system=system_prompt,
                messages=context_manager.manage(messages),
                tools=tools
            )

            if response.usage is not None:
                usage.input_tokens += response.usage.input_tokens
                usage.output_tokens += response.usage.output_tokens

            if response.stop_reason in FINAL_STOP_REASONS:
                text_content = "".join(
                    block.text for block in response.content if block.type == "text"
                )
                messages.append({"role": "assistant", "content": text_content})
                return OrchestratorResult(
                    text=text_content,
                    metadata=self.session_metadata(usage, context_manager),
                    messages=messages,
                )

            if response.stop_reason != "tool_use":
                logger.warning(f"Unknown stop reason: {response.stop_reason}")
                break

            assistant_content = []
            tool_results = []
            for block in response.content:
                if block.type == "text":
                    assistant_content.append({"type": "text", "text": block.text})
                elif block.type == "tool_use":
                    assistant_content.append({
                        "type": "tool_use",
                        "id": block.id,
                        "name": block.name,
                        "input": block.input
                    })
                    tool_results.append(
                        await self._execute_tool(caller, usage, block.name, block.input, block.id)
                    )

            messages.append({"role": "assistant", "content": assistant_content})
            messages.append({"role": "user", "content": tool_results})

        raise SandboxError(f"Exceeded maximum iterations ({self.config.max_iterations})")

    async def _execute_tool(
        self,
        caller: ProgrammaticToolCaller,
        usage: SessionUsage,
        tool_name: str,
        tool_input: dict,
        tool_use_id: str
    ) -> dict:
        if tool_name == CODE_EXECUTION_TOOL_NAME:
            return await self._execute_code(caller, usage, tool_input, tool_use_id)

        usage.direct_tool_calls += 1
        capability = caller.registry.get(tool_name)
        try:
            result = await caller.registry.execute(tool_name, tool_input)
        except Exception as e:
            logger.error(f"Tool {tool_name} failed: {e}")
            return {
                "type": "tool_result",
                "tool_use_id": tool_use_id,
                "content": f"Tool execution error: {e}",
                "is_error": True
            }

        if capability is not None and capability.is_bridged:
            result = normalize_result(result).to_payload()

        return {
            "type": "tool_result",
            "tool_use_id": tool_use_id,
            "content": _dump(result)
        }

    async def _execute_code(
        self,
        caller: ProgrammaticToolCaller,
        usage: SessionUsage,
        tool_input: dict,
        tool_use_id: str
    ) -> dict:
        code = tool_input.get("code", "")
        logger.info(f"Executing code in sandbox:\n{code}")

        try:
            result = await caller.execute_code(code)
        except SandboxError as e:
            logger.error(f"Sandbox error: {e}")
            run = getattr(e, "run", None)
            if run is not None:
                usage.code_executions.append({
                    "code": code,
                    "error": str(e),
                    "metadata": {
                        "runId": run.id,
                        "toolCallCount": len(run.trace),
                        "totalTokensSaved": 0,
                        "executionTimeMs": run.execution_time_ms,
                        "perCallTrace": [r.to_dict() for r in run.trace],
                    },
                })
            return {
                "type": "tool_result",
                "tool_use_id": tool_use_id,
                "content": f"Sandbox execution error: {e}",
                "is_error": True
            }

        usage.code_executions.append({"code": code, **result.to_dict()})

        # The model only needs the output and a short summary
        content = _dump({
            "output": result.output,
            "toolCallCount": result.metadata["toolCallCount"],
            "toolsUsed": result.metadata["toolsUsed"],
            **({"stdout": result.run.stdout} if result.run.stdout else {}),
        })
        logger.info(f"Sandbox execution result: {content[:200]}...")

        return {
            "type": "tool_result",
            "tool_use_id": tool_use_id,
            "content": content
        }
