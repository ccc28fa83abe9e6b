"""
Orchestrator tests

The Anthropic client is replaced by a scripted fake, so these tests cover
the loop itself: routing of tool calls, error reporting to the model and
the session metadata.
"""

import json

import pytest

from fakes import FakeClient, FakeSource, model_response, text_block, text_result, tool_use_block
from ptc_sandbox import (
    CODE_EXECUTION_TOOL_NAME,
    ContextWindowConfig,
    OrchestratorConfig,
    ProgrammaticToolOrchestrator,
    SandboxError,
    SandboxRuntime,
)


def code_call(tool_use_id: str, code: str):
    return tool_use_block(tool_use_id, CODE_EXECUTION_TOOL_NAME, {"code": code})


class TestRun:
    @pytest.mark.asyncio
    async def test_code_execution_round_trip(self, registry):
        client = FakeClient([
            model_response("tool_use", text_block("Let me compute."), code_call("tu_1", "return await double(x=4)")),
            model_response("end_turn", text_block("The answer is 8."), input_tokens=150, output_tokens=10),
        ])

        async with SandboxRuntime(registry) as runtime:
            orchestrator = ProgrammaticToolOrchestrator(runtime, client=client)
            result = await orchestrator.run("Double 4")

        assert result.text == "The answer is 8."
        metadata = result.metadata
        assert metadata["inputTokens"] == 250
        assert metadata["outputTokens"] == 30
        assert metadata["totalTokens"] == 280
        assert metadata["toolCallCount"] == 1
        assert len(metadata["codeExecutions"]) == 1
        assert metadata["codeExecutions"][0]["output"] == 8
        assert metadata["tokensSaved"] == 0
        assert metadata["codeExecutions"][0]["metadata"]["totalTokensSaved"] > 0

        tool_result = client.messages.requests[1]["messages"][-1]["content"][0]
        assert tool_result["tool_use_id"] == "tu_1"
        assert "is_error" not in tool_result
        assert json.loads(tool_result["content"])["output"] == 8

    @pytest.mark.asyncio
    async def test_tools_and_prompt_are_offered(self, registry):
        client = FakeClient([model_response("end_turn", text_block("hi"))])

        async with SandboxRuntime(registry) as runtime:
            await ProgrammaticToolOrchestrator(runtime, client=client).run("hello")

        request = client.messages.requests[0]
        tool_names = [t["name"] for t in request["tools"]]
        assert tool_names[0] == CODE_EXECUTION_TOOL_NAME
        assert "double" in tool_names
        assert "async def double(x: int) -> Any" in request["system"]
        assert request["messages"] == [{"role": "user", "content": "hello"}]

    @pytest.mark.asyncio
    async def test_script_error_is_reported_to_model(self, registry):
        client = FakeClient([
            model_response("tool_use", code_call("tu_1", 'await explode(reason="bad")')),
            model_response("end_turn", text_block("It failed.")),
        ])

        async with SandboxRuntime(registry) as runtime:
            result = await ProgrammaticToolOrchestrator(runtime, client=client).run("try it")

        tool_result = client.messages.requests[1]["messages"][-1]["content"][0]
        assert tool_result["is_error"] is True
        assert "ValueError: bad" in tool_result["content"]
        execution = result.metadata["codeExecutions"][0]
        assert "ValueError: bad" in execution["error"]
        assert execution["metadata"]["toolCallCount"] == 1

    @pytest.mark.asyncio
    async def test_direct_local_and_bridged_calls(self, registry):
        source = FakeSource("kb", {"search": lambda args: text_result('{"hits": 2}')})
        client = FakeClient([
            model_response(
                "tool_use",
                tool_use_block("tu_1", "double", {"x": 5}),
                tool_use_block("tu_2", "mcp_search", {"query": "q"}),
                tool_use_block("tu_3", "missing", {}),
            ),
            model_response("end_turn", text_block("done")),
        ])

        async with SandboxRuntime(registry, sources=[source]) as runtime:
            result = await ProgrammaticToolOrchestrator(runtime, client=client).run("go")

        local, bridged, missing = client.messages.requests[1]["messages"][-1]["content"]
        assert local["content"] == "10"
        assert json.loads(bridged["content"]) == {"success": True, "data": {"hits": 2}, "error_text": None}
        assert missing["is_error"] is True
        assert result.metadata["toolCallCount"] == 3

    @pytest.mark.asyncio
    async def test_iteration_limit(self, registry):
        responses = [
            model_response("tool_use", code_call(f"tu_{i}", "return 1"))
            for i in range(2)
        ]

        async with SandboxRuntime(registry) as runtime:
            orchestrator = ProgrammaticToolOrchestrator(
                runtime,
                config=OrchestratorConfig(max_iterations=2),
                client=FakeClient(responses),
            )
            with pytest.raises(SandboxError, match="maximum iterations"):
                await orchestrator.run("loop forever")

    @pytest.mark.asyncio
    async def test_conversation_history_is_not_mutated(self, registry):
        history = [
            {"role": "user", "content": "earlier"},
            {"role": "assistant", "content": "reply"},
        ]
        client = FakeClient([model_response("end_turn", text_block("ok"))])

        async with SandboxRuntime(registry) as runtime:
            result = await ProgrammaticToolOrchestrator(runtime, client=client).run("now", history)

        assert len(history) == 2
        assert result.messages[-1] == {"role": "assistant", "content": "ok"}
        assert len(client.messages.requests[0]["messages"]) == 3


class TestSessionIsolation:
    @staticmethod
    def long_history():
        return [
            {"role": "user", "content": "find the report"},
            {
                "role": "assistant",
                "content": [{"type": "tool_use", "id": "old_1", "name": CODE_EXECUTION_TOOL_NAME, "input": {"code": "return 1"}}],
            },
            {
                "role": "user",
                "content": [{"type": "tool_result", "tool_use_id": "old_1", "content": "r" * 4000}],
            },
            {"role": "assistant", "content": "Here it is."},
        ]

    @pytest.mark.asyncio
    async def test_tokens_saved_does_not_carry_over(self, registry):
        config = OrchestratorConfig(
            context_config=ContextWindowConfig(keep_recent_messages=2, max_tool_result_chars=100)
        )
        client = FakeClient([
            model_response("end_turn", text_block("first")),
            model_response("end_turn", text_block("second")),
        ])

        async with SandboxRuntime(registry) as runtime:
            orchestrator = ProgrammaticToolOrchestrator(runtime, config=config, client=client)
            first = await orchestrator.run("summarize it", self.long_history())
            second = await orchestrator.run("hi")

        assert first.metadata["tokensSaved"] > 0
        assert second.metadata["tokensSaved"] == 0
