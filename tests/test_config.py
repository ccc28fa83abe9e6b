"""Configuration tests."""

import pytest

from ptc_sandbox import McpServerConfig, OrchestratorConfig, SandboxConfig


class TestSandboxConfig:
    def test_defaults(self):
        config = SandboxConfig.from_env({})

        assert config.timeout_seconds == 25.0
        assert config.max_output_size == 100000

    def test_environment_overrides(self):
        config = SandboxConfig.from_env({"PTC_TIMEOUT_SECONDS": "10", "PTC_MAX_OUTPUT_SIZE": "50"})

        assert config.timeout_seconds == 10.0
        assert config.max_output_size == 50

    def test_blank_values_use_defaults(self):
        assert SandboxConfig.from_env({"PTC_TIMEOUT_SECONDS": "  "}).timeout_seconds == 25.0

    def test_invalid_number(self):
        with pytest.raises(ValueError, match="PTC_TIMEOUT_SECONDS"):
            SandboxConfig.from_env({"PTC_TIMEOUT_SECONDS": "soon"})

    def test_negative_timeout(self):
        with pytest.raises(ValueError):
            SandboxConfig.from_env({"PTC_TIMEOUT_SECONDS": "-1"})


class TestOrchestratorConfig:
    def test_environment_overrides(self):
        config = OrchestratorConfig.from_env({
            "PTC_MODEL": "claude-test",
            "PTC_MAX_TOKENS": "1024",
            "PTC_MAX_ITERATIONS": "3",
            "PTC_TIMEOUT_SECONDS": "7",
        })

        assert config.model == "claude-test"
        assert config.max_tokens == 1024
        assert config.max_iterations == 3
        assert config.sandbox_config.timeout_seconds == 7.0

    def test_invalid_integer(self):
        with pytest.raises(ValueError, match="PTC_MAX_TOKENS"):
            OrchestratorConfig.from_env({"PTC_MAX_TOKENS": "1.5"})


class TestMcpServerConfig:
    def test_from_dict(self):
        config = McpServerConfig.from_dict(
            "files",
            {"command": "npx", "args": ["-y", "server-filesystem", "/tmp"], "env": {"DEBUG": "1"}},
        )

        assert config.name == "files"
        assert config.command == "npx"
        assert config.args == ["-y", "server-filesystem", "/tmp"]
        assert config.env == {"DEBUG": "1"}

    def test_missing_command(self):
        with pytest.raises(ValueError, match="files"):
            McpServerConfig.from_dict("files", {"args": []})
