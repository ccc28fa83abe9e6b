"""Context window manager tests."""

import copy

from ptc_sandbox import ContextWindowConfig, ContextWindowManager


def tool_use(tool_use_id: str) -> dict:
    return {
        "role": "assistant",
        "content": [{"type": "tool_use", "id": tool_use_id, "name": "code_execution", "input": {"code": "return 1"}}],
    }


def tool_result(tool_use_id: str, text: str) -> dict:
    return {
        "role": "user",
        "content": [{"type": "tool_result", "tool_use_id": tool_use_id, "content": text}],
    }


class TestCompaction:
    def test_old_tool_results_are_previewed(self):
        manager = ContextWindowManager(ContextWindowConfig(keep_recent_messages=2, max_tool_result_chars=10))
        messages = [
            {"role": "user", "content": "question"},
            tool_use("t1"),
            tool_result("t1", "x" * 100),
            tool_use("t2"),
            tool_result("t2", "y" * 100),
        ]
        original = copy.deepcopy(messages)

        trimmed = manager.manage(messages)

        old = trimmed[2]["content"][0]["content"]
        assert old.startswith("x" * 10 + "\n")
        assert "[90 chars of an earlier tool result omitted]" in old
        assert trimmed[4] == messages[4]
        assert messages == original
        assert manager.tokens_saved > 0

    def test_short_history_is_untouched(self):
        manager = ContextWindowManager()
        messages = [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]

        assert manager.manage(messages) == messages
        assert manager.tokens_saved == 0

    def test_text_list_results_are_compacted(self):
        manager = ContextWindowManager(ContextWindowConfig(keep_recent_messages=0, max_tool_result_chars=5))
        message = {
            "role": "user",
            "content": [{"type": "tool_result", "tool_use_id": "t", "content": [{"type": "text", "text": "abcdefghij"}]}],
        }

        trimmed = manager.manage([message])

        assert trimmed[0]["content"][0]["content"].startswith("abcde\n...")


class TestDropping:
    def test_oldest_turns_are_dropped(self):
        manager = ContextWindowManager(ContextWindowConfig(max_context_tokens=50, keep_recent_messages=3))
        messages = [
            {"role": "user", "content": "a" * 100},
            {"role": "assistant", "content": "b" * 100},
            {"role": "user", "content": "c" * 100},
            {"role": "assistant", "content": "d" * 100},
            {"role": "user", "content": "e" * 100},
        ]

        trimmed = manager.manage(messages)

        assert trimmed == messages[2:]
        assert manager.window.turns == trimmed
        assert manager.window.token_estimate == manager.estimate_tokens(trimmed)

    def test_tool_pairs_are_not_split(self):
        manager = ContextWindowManager(ContextWindowConfig(max_context_tokens=10, keep_recent_messages=3))
        messages = [
            {"role": "user", "content": "q" * 400},
            tool_use("t1"),
            tool_result("t1", "result"),
            {"role": "assistant", "content": "done"},
            {"role": "user", "content": "next"},
            {"role": "assistant", "content": "ok"},
            {"role": "user", "content": "last"},
        ]

        trimmed = manager.manage(messages)

        assert trimmed == messages[4:]

    def test_system_messages_are_kept(self):
        manager = ContextWindowManager(ContextWindowConfig(max_context_tokens=10, keep_recent_messages=1))
        messages = [
            {"role": "system", "content": "rules"},
            {"role": "user", "content": "a" * 200},
            {"role": "assistant", "content": "b" * 200},
            {"role": "user", "content": "c"},
        ]

        trimmed = manager.manage(messages)

        assert trimmed == [messages[0], messages[3]]

    def test_savings_accumulate_and_reset(self):
        manager = ContextWindowManager(ContextWindowConfig(max_context_tokens=50, keep_recent_messages=1))
        messages = [{"role": "user", "content": "a" * 400}, {"role": "user", "content": "b"}]

        manager.manage(messages)
        first = manager.tokens_saved
        manager.manage(messages)

        assert first > 0
        assert manager.tokens_saved == 2 * first

        manager.reset()
        assert manager.tokens_saved == 0
        assert manager.window.turns == []
