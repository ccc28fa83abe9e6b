"""
Capability bridge tests

Covers:
1. Result normalization into Success / Failure
2. Source initialization failures
3. Naming: prefix, last-registered-wins, clashes with local capabilities
4. Bridged calls from scripts, as seen by the script and by the trace
"""

import logging

import pytest

from fakes import FakeSource, text_result
from ptc_sandbox import (
    BridgeConfig,
    CapabilityBridge,
    CapabilityOrigin,
    CapabilityRegistry,
    Failure,
    SandboxEvaluator,
    Success,
    normalize_result,
)


class DumpableResult:
    """Stands in for a pydantic CallToolResult."""

    def __init__(self, payload: dict):
        self.payload = payload

    def model_dump(self) -> dict:
        return self.payload


class TestNormalizeResult:
    def test_json_text_content_is_parsed(self):
        assert normalize_result(text_result('{"id": 7}')) == Success({"id": 7})

    def test_plain_text_content_is_kept(self):
        assert normalize_result(text_result("hello")) == Success("hello")

    def test_error_flag_becomes_failure(self):
        assert normalize_result(text_result("not found", is_error=True)) == Failure("not found")

    def test_error_without_text_has_default_message(self):
        result = normalize_result({"content": [], "isError": True})

        assert isinstance(result, Failure)
        assert result.error_text

    def test_structured_content_wins_over_text(self):
        raw = {
            "content": [{"type": "text", "text": "summary"}],
            "structuredContent": {"rows": [1, 2]},
            "isError": False,
        }

        assert normalize_result(raw) == Success({"rows": [1, 2]})

    def test_multiple_text_items_become_a_list(self):
        raw = {"content": [{"type": "text", "text": "a"}, {"type": "text", "text": "[1]"}]}

        assert normalize_result(raw) == Success(["a", [1]])

    def test_success_flag_dicts(self):
        assert normalize_result({"success": True, "data": [1]}) == Success([1])
        assert normalize_result({"success": False, "error": "denied"}) == Failure("denied")

    def test_model_dump_objects(self):
        raw = DumpableResult(text_result("oops", is_error=True))

        assert normalize_result(raw) == Failure("oops")

    def test_bare_values(self):
        assert normalize_result(5) == Success(5)
        assert normalize_result(None) == Success(None)

    def test_payload_shape(self):
        assert Success(1).to_payload() == {"success": True, "data": 1, "error_text": None}
        assert Failure("x").to_payload() == {"success": False, "data": None, "error_text": "x"}


class TestInitialization:
    @pytest.mark.asyncio
    async def test_failing_source_is_skipped(self):
        broken = FakeSource("broken", {"read": lambda args: "x"}, fail_connect=True)
        files = FakeSource("files", {"read": lambda args: "content"})
        bridge = CapabilityBridge([broken, files])

        capabilities = await bridge.initialize()

        assert [c.name for c in capabilities] == ["mcp_read"]
        assert capabilities[0].source == "files"
        assert len(bridge.init_failures) == 1
        assert bridge.init_failures[0].source_name == "broken"
        assert broken.closed

    @pytest.mark.asyncio
    async def test_slow_source_times_out(self):
        slow = FakeSource("slow", {"ping": lambda args: "pong"}, connect_delay=1.0)
        bridge = CapabilityBridge([slow], BridgeConfig(init_timeout_seconds=0.05))

        assert await bridge.initialize() == []
        assert bridge.init_failures[0].source_name == "slow"

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self):
        source = FakeSource("files", {"read": lambda args: "content"})
        bridge = CapabilityBridge([source])

        await bridge.initialize()
        await bridge.initialize()

        assert len(bridge.capabilities) == 1

    @pytest.mark.asyncio
    async def test_close_closes_connected_sources(self):
        source = FakeSource("files", {"read": lambda args: "content"})
        bridge = CapabilityBridge([source])
        await bridge.initialize()

        await bridge.close()

        assert source.closed


class TestNaming:
    @pytest.mark.asyncio
    async def test_prefix_and_origin(self):
        bridge = CapabilityBridge([FakeSource("crm", {"lookup": lambda args: {}})])
        capability = (await bridge.initialize())[0]

        assert capability.name == "mcp_lookup"
        assert capability.origin is CapabilityOrigin.BRIDGED
        assert capability.is_bridged

    @pytest.mark.asyncio
    async def test_custom_prefix(self):
        bridge = CapabilityBridge(
            [FakeSource("crm", {"lookup": lambda args: {}})],
            BridgeConfig(name_prefix="crm_"),
        )
        await bridge.initialize()
        assert bridge.tool_names() == ["crm_lookup"]

    @pytest.mark.asyncio
    async def test_last_registered_source_wins(self, caplog):
        first = FakeSource("first", {"search": lambda args: "from first"})
        second = FakeSource("second", {"search": lambda args: "from second"})
        bridge = CapabilityBridge([first, second])

        with caplog.at_level(logging.WARNING, logger="ptc_sandbox.bridge"):
            capabilities = await bridge.initialize()

        assert len(capabilities) == 1
        assert capabilities[0].source == "second"
        assert "replaces the one from 'first'" in caplog.text

    @pytest.mark.asyncio
    async def test_local_capability_is_not_overridden(self, registry):
        bridge = CapabilityBridge(
            [FakeSource("math", {"double": lambda args: "remote"})],
            BridgeConfig(name_prefix=""),
        )
        await bridge.initialize()

        added = bridge.register_into(registry)

        assert added == 0
        assert not registry.get("double").is_bridged


class TestBridgedCalls:
    async def _evaluator(self, registry: CapabilityRegistry, *sources) -> SandboxEvaluator:
        bridge = CapabilityBridge(list(sources))
        await bridge.initialize()
        bridge.register_into(registry)
        return SandboxEvaluator(registry)

    @pytest.mark.asyncio
    async def test_success_payload_and_trace(self, registry):
        crm = FakeSource("crm", {"lookup": lambda args: text_result('{"name": "Ada", "id": %d}' % args["id"])})
        evaluator = await self._evaluator(registry, crm)

        run = await evaluator.execute(
            "user = await mcp_lookup(id=1)\n"
            'return [user["success"], user["data"]["name"], user["error_text"]]'
        )

        assert run.output == [True, "Ada", None]
        record = run.trace[0]
        assert record.is_bridged
        assert record.source == "crm"
        assert record.result == {"name": "Ada", "id": 1}
        assert crm.calls == [("lookup", {"id": 1})]

    @pytest.mark.asyncio
    async def test_remote_error_is_recorded_as_error(self, registry):
        crm = FakeSource("crm", {"lookup": lambda args: text_result("no such user", is_error=True)})
        evaluator = await self._evaluator(registry, crm)

        run = await evaluator.execute(
            "user = await mcp_lookup(id=99)\n"
            'return "missing" if not is_success(user) else "found"'
        )

        assert run.output == "missing"
        assert run.trace[0].error == "no such user"
        assert run.trace[0].result is None

    @pytest.mark.asyncio
    async def test_transport_error_becomes_failure(self, registry):
        def explode(args):
            raise RuntimeError("pipe closed")

        evaluator = await self._evaluator(registry, FakeSource("crm", {"lookup": explode}))

        run = await evaluator.execute("return await mcp_lookup()")

        assert run.output == {"success": False, "data": None, "error_text": "RuntimeError: pipe closed"}
        assert run.trace[0].error == "RuntimeError: pipe closed"

    @pytest.mark.asyncio
    async def test_local_and_bridged_calls_mix(self, registry):
        evaluator = await self._evaluator(
            registry,
            FakeSource("broken", {"x": lambda args: 1}, fail_connect=True),
            FakeSource("stats", {"count": lambda args: text_result('{"count": 3}')}),
        )

        run = await evaluator.execute(
            'count = safe_get(await mcp_count(), "data.count", 0)\n'
            "return await double(x=count)"
        )

        assert run.output == 6
        assert [r.origin for r in run.trace] == [CapabilityOrigin.BRIDGED, CapabilityOrigin.LOCAL]
