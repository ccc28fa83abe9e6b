"""Shared test fixtures for the sandbox test suite."""

import asyncio
import os
import sys

import pytest

# tests/fakes.py is imported as a top-level module
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from ptc_sandbox import CapabilityRegistry, SandboxConfig, SandboxEvaluator


@pytest.fixture
def registry():
    registry = CapabilityRegistry()

    @registry.register(description="Double a number")
    async def double(x: int) -> int:
        return 2 * x

    @registry.register(description="Return the argument object unchanged")
    def echo(args):
        return args

    @registry.register(description="Always raises ValueError")
    async def explode(reason: str = "boom"):
        raise ValueError(reason)

    @registry.register(description="Return a value after a delay")
    async def delayed(value: str, delay: float = 0.01) -> str:
        await asyncio.sleep(delay)
        return value

    return registry


@pytest.fixture
def sandbox_config():
    return SandboxConfig(timeout_seconds=5.0)


@pytest.fixture
def evaluator(registry, sandbox_config):
    return SandboxEvaluator(registry, sandbox_config)
