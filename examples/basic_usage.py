#!/usr/bin/env python3
"""
Programmatic Tool Calling basics

Runs hand-written orchestration scripts against mock capabilities, without a
model in the loop. Shows the trace, the fallback output and the token-savings
breakdown of each run.

Usage:
    python examples/basic_usage.py
"""

import asyncio
import logging
import os
import sys

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ptc_sandbox import CapabilityRegistry, SandboxConfig, SandboxRuntime, ScriptError, TimeoutError
from utils.visualize import show_run, visualize

logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)


# ============================================================
# Mock data (replace with real implementations)
# ============================================================

MOCK_SALES_DATA = {
    "East": [
        {"date": "2024-01-15", "product": "Widget A", "revenue": 15000, "units": 150},
        {"date": "2024-01-20", "product": "Widget B", "revenue": 22000, "units": 110},
        {"date": "2024-02-01", "product": "Widget A", "revenue": 18000, "units": 180},
    ],
    "West": [
        {"date": "2024-01-10", "product": "Widget A", "revenue": 25000, "units": 250},
        {"date": "2024-01-25", "product": "Widget C", "revenue": 30000, "units": 100},
        {"date": "2024-02-05", "product": "Widget B", "revenue": 12000, "units": 60},
    ],
    "Central": [
        {"date": "2024-01-12", "product": "Widget B", "revenue": 45000, "units": 225},
        {"date": "2024-01-28", "product": "Widget A", "revenue": 38000, "units": 380},
        {"date": "2024-02-03", "product": "Widget C", "revenue": 52000, "units": 173},
    ],
}

MOCK_SERVERS = {
    "us-east-1": {"status": "degraded", "cpu": 85, "memory": 72},
    "us-west-2": {"status": "healthy", "cpu": 45, "memory": 55},
    "eu-west-1": {"status": "healthy", "cpu": 38, "memory": 48},
    "ap-south-1": {"status": "offline", "cpu": 0, "memory": 0},
}


def create_registry() -> CapabilityRegistry:
    registry = CapabilityRegistry()

    @registry.register(description="Query sales records of a region (East, West, Central).")
    async def query_sales(region: str, start_date: str = None, end_date: str = None) -> list:
        await asyncio.sleep(0.05)
        data = MOCK_SALES_DATA.get(region, [])
        if start_date:
            data = [d for d in data if d["date"] >= start_date]
        if end_date:
            data = [d for d in data if d["date"] <= end_date]
        return data

    @registry.register(description="Health of one server: status (healthy/degraded/offline), cpu %, memory %.")
    def check_server_health(server_id: str) -> dict:
        return MOCK_SERVERS.get(server_id, {"status": "unknown", "cpu": 0, "memory": 0})

    @registry.register(description="List all server IDs.")
    def list_servers() -> list:
        return list(MOCK_SERVERS.keys())

    @registry.register(description="Double a number.")
    async def double(x: int) -> int:
        return 2 * x

    return registry


# ============================================================
# Scripts
# ============================================================

SALES_SCRIPT = """
regions = ["East", "West", "Central"]
rows = await asyncio.gather(*[query_sales(region=r) for r in regions])
totals = {r: sum(safe_map(data, lambda d: d["revenue"])) for r, data in zip(regions, rows)}
best = max(totals, key=totals.get)
return {"totals": totals, "best_region": best}
"""

SERVER_SCRIPT = """
for server in await list_servers():
    health = await check_server_health(server_id=server)
    if safe_get(health, "status") == "healthy":
        print(f"found healthy server {server}")
        return server
return None
"""

# No return: the output falls back to a summary of every call
FALLBACK_SCRIPT = """
await double(x=1)
await double(x=2)
await double(x=3)
"""

FAILING_SCRIPT = """
result = await double(x=4)
return result["value"]
"""

SLOW_SCRIPT = """
await double(x=1)
await asyncio.sleep(10)
"""


async def main():
    print("Programmatic Tool Calling basics")

    viz = visualize(auto_show=True)
    async with SandboxRuntime(create_registry(), sandbox_config=SandboxConfig(timeout_seconds=2.0)) as runtime:
        caller = runtime.create_caller()

        for script in (SALES_SCRIPT, SERVER_SCRIPT, FALLBACK_SCRIPT):
            result = await caller.execute_code(script)
            viz.capture(result)
            print(result.metadata["savingsExplanation"])

        try:
            await caller.execute_code(FAILING_SCRIPT)
        except ScriptError as e:
            print(f"\nScript failed: {e}")
            show_run(e.run)

        try:
            await caller.execute_code(SLOW_SCRIPT)
        except TimeoutError as e:
            print(f"\nScript stopped: {e}")
            show_run(e.run)


if __name__ == "__main__":
    asyncio.run(main())
