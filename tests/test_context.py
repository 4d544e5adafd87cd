"""Tests for the run Context."""

from pathlib import Path

from aichain.context import Context, Message, MessageRole
from aichain.errors import ProviderError, ProviderErrorKind


class TestContext:
    def test_defaults_are_empty(self):
        context = Context()

        assert context.conversation_history == []
        assert context.current_files == set()
        assert context.environment == {}
        assert context.metadata == {}

    def test_add_message_appends(self):
        context = Context()
        context.add_message(Message(role=MessageRole.USER, content="hi"))
        context.add_message(Message(role=MessageRole.ASSISTANT, content="hello", provider_id="claude"))

        assert [m.content for m in context.conversation_history] == ["hi", "hello"]
        assert context.conversation_history[1].provider_id == "claude"

    def test_add_file_accepts_str_and_path(self):
        context = Context()
        context.add_file("src/app.py")
        context.add_file(Path("src/app.py"))

        assert context.current_files == {Path("src/app.py")}

    def test_metadata(self):
        context = Context()
        context.set_metadata("task", "cache")

        assert context.get_metadata("task") == "cache"
        assert context.get_metadata("missing", "default") == "default"

    def test_copy_is_independent(self):
        context = Context(metadata={"tags": ["a"]})
        clone = context.copy()
        clone.add_message(Message(role=MessageRole.USER, content="x"))
        clone.metadata["tags"].append("b")

        assert context.conversation_history == []
        assert context.metadata["tags"] == ["a"]

    def test_record_step_error(self):
        context = Context()
        context.record_step_error(2, "gemini", ProviderError(ProviderErrorKind.RATE_LIMITED, "gemini", "slow down"))

        assert context.metadata["step_errors"] == [
            {
                "step": 2,
                "provider": "gemini",
                "error_type": "ProviderError",
                "kind": "rate_limited",
                "message": "gemini: rate_limited: slow down",
            }
        ]

    def test_dict_round_trip(self):
        context = Context(environment={"CI": "1"}, metadata={"n": 1})
        context.add_file("a.py")
        context.add_message(Message(role=MessageRole.SYSTEM, content="be brief"))

        data = context.to_dict()
        restored = Context.from_dict(data)

        assert data["conversation_history"][0]["role"] == "system"
        assert restored == context
