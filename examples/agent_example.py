#!/usr/bin/env python3
"""
Programmatic Tool Calling Agent Example

Claude answers questions about team expenses by writing orchestration
scripts. Local tools come from a mock expense API; extra tools can be
bridged in from MCP servers.

Usage:
    # Demo question
    python examples/agent_example.py

    # Interactive mode
    python examples/agent_example.py -i

    # Bridge MCP servers ({"mcpServers": {"name": {"command": ..., "args": [...]}}})
    python examples/agent_example.py --mcp-config mcp.json

    # Verbose logging
    python examples/agent_example.py -v

Requirements:
    pip install -e .
    ANTHROPIC_API_KEY set, or AWS credentials configured (for Bedrock)
"""

import argparse
import asyncio
import json
import logging
import os
import sys

# Add project root to path for imports
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)

from ptc_sandbox import (
    BridgeConfig,
    CapabilityRegistry,
    McpServerConfig,
    OrchestratorConfig,
    ProgrammaticToolOrchestrator,
    SandboxError,
    SandboxRuntime,
)
from utils.visualize import visualize_session

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logging.getLogger('httpcore').setLevel(logging.WARNING)
logging.getLogger('botocore').setLevel(logging.WARNING)
logging.getLogger('anthropic').setLevel(logging.WARNING)
logging.getLogger('httpx').setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

DEMO_QUESTION = (
    "Which engineering team members exceeded their travel budget in Q3? "
    "Standard travel budget is $5,000 per person, but some levels have custom budgets."
)


# ============================================================
# Mock expense API
# ============================================================

TEAMS = {
    "engineering": [
        {"id": "ENG001", "name": "Alice Chen", "level": "senior"},
        {"id": "ENG002", "name": "Bob Martinez", "level": "staff"},
        {"id": "ENG003", "name": "Carol White", "level": "mid"},
        {"id": "ENG004", "name": "David Kim", "level": "principal"},
    ],
    "sales": [
        {"id": "SAL001", "name": "Emma Johnson", "level": "senior"},
        {"id": "SAL002", "name": "Frank Liu", "level": "mid"},
    ],
}

TRAVEL_SPEND = {
    "ENG001": [1200, 2300, 900],
    "ENG002": [3100, 2900, 1500],
    "ENG003": [800, 650],
    "ENG004": [4200, 3900],
    "SAL001": [2500, 2800, 400],
    "SAL002": [1500],
}

CUSTOM_BUDGETS = {"staff": 8000, "principal": 10000}


def create_registry() -> CapabilityRegistry:
    registry = CapabilityRegistry()

    @registry.register(description="List team members of a department: id, name, level.")
    async def get_team_members(department: str) -> list:
        await asyncio.sleep(0.05)
        return TEAMS.get(department.lower(), [])

    @registry.register(description="Expense line items of an employee for a quarter (Q1-Q4). Each item has category and amount.")
    async def get_expenses(employee_id: str, quarter: str) -> list:
        await asyncio.sleep(0.05)
        return [
            {"category": "travel", "amount": amount, "quarter": quarter}
            for amount in TRAVEL_SPEND.get(employee_id, [])
        ]

    @registry.register(description="Custom travel budget for an employee level, or null if the standard budget applies.")
    def get_custom_budget(level: str) -> dict:
        budget = CUSTOM_BUDGETS.get(level)
        return {"level": level, "travel_budget": budget}

    return registry


def load_bridge_config(path: str | None) -> BridgeConfig:
    if not path:
        return BridgeConfig()
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    servers = [
        McpServerConfig.from_dict(name, entry)
        for name, entry in data.get("mcpServers", {}).items()
    ]
    return BridgeConfig(servers=servers)


async def ask(orchestrator: ProgrammaticToolOrchestrator, question: str, show_viz: bool) -> None:
    print(f"\n[User]: {question}\n")
    try:
        result = await orchestrator.run(question)
    except SandboxError as e:
        logger.error(f"Request failed: {e}")
        return

    print(f"[Claude]: {result.text}\n")
    if show_viz:
        visualize_session(result.metadata)


async def run(args: argparse.Namespace) -> None:
    config = OrchestratorConfig.from_env()
    bridge_config = load_bridge_config(args.mcp_config)

    async with SandboxRuntime(
        create_registry(),
        bridge_config=bridge_config,
        sandbox_config=config.sandbox_config
    ) as runtime:
        for failure in runtime.init_failures:
            print(f"Warning: {failure}")

        orchestrator = ProgrammaticToolOrchestrator(
            runtime,
            config=config,
            api_key=os.environ.get("ANTHROPIC_API_KEY")
        )

        if not args.interactive:
            await ask(orchestrator, DEMO_QUESTION, not args.no_viz)
            return

        print("Interactive mode, type 'quit' to exit")
        while True:
            question = (await asyncio.to_thread(input, "> ")).strip()
            if question.lower() in ("quit", "exit"):
                break
            if question:
                await ask(orchestrator, question, not args.no_viz)


def main():
    parser = argparse.ArgumentParser(description="Programmatic Tool Calling Agent Demo")
    parser.add_argument("-i", "--interactive", action="store_true", help="Interactive mode")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    parser.add_argument("--no-viz", action="store_true", help="Disable visualization")
    parser.add_argument("--mcp-config", help="JSON file with an mcpServers section")
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    asyncio.run(run(args))


if __name__ == "__main__":
    main()
