"""Tests for message serialisation and the conversation manager."""

import pytest

from conftest import InMemoryStore

from mcp_copilot.ai.conversation import TRUNCATION_MARKER, build_messages
from mcp_copilot.ai.tools.base import ToolCallRequest
from mcp_copilot.core.conversation import DEFAULT_TITLE, ConversationManager
from mcp_copilot.core.errors import PersistenceFailure
from mcp_copilot.storage.models import Message

CALL = ToolCallRequest("call_1", "ip_lookup", '{"ip": "1.2.3.4"}')


def _history():
    return [
        Message.user("look up 1.2.3.4"),
        Message.assistant("", [CALL]),
        Message.tool(CALL, '{"country": "AU"}'),
        Message.assistant("It is in Australia."),
    ]


class TestBuildMessages:
    def test_openai_format(self):
        messages = build_messages(_history(), system_prompt="sys")

        assert messages[0] == {"role": "system", "content": "sys"}
        assert messages[1] == {"role": "user", "content": "look up 1.2.3.4"}
        assert messages[2] == {
            "role": "assistant",
            "content": None,
            "tool_calls": [
                {
                    "id": "call_1",
                    "type": "function",
                    "function": {"name": "ip_lookup", "arguments": '{"ip": "1.2.3.4"}'},
                }
            ],
        }
        assert messages[3] == {"role": "tool", "tool_call_id": "call_1", "content": '{"country": "AU"}'}
        assert messages[4] == {"role": "assistant", "content": "It is in Australia."}

    def test_window_never_starts_with_orphan_tool_message(self):
        messages = build_messages(_history(), max_history=2)
        assert [m["role"] for m in messages] == ["assistant"]

    def test_window_keeps_last_records(self):
        history = [Message.user(f"q{i}") for i in range(15)]
        messages = build_messages(history, max_history=10)
        assert [m["content"] for m in messages] == [f"q{i}" for i in range(5, 15)]

    def test_tool_results_excluded(self):
        messages = build_messages(_history(), include_tool_results=False)
        assert [m["role"] for m in messages] == ["user", "assistant"]
        assert all("tool_calls" not in m for m in messages)

    def test_long_tool_results_truncated(self):
        history = _history()
        history[2] = Message.tool(CALL, "x" * 50)
        messages = build_messages(history, max_tool_result_length=10)
        assert messages[2]["content"] == "x" * 10 + TRUNCATION_MARKER

    def test_zero_length_disables_truncation(self):
        history = _history()
        history[2] = Message.tool(CALL, "x" * 50)
        assert build_messages(history)[2]["content"] == "x" * 50


class TestConversationManager:
    @pytest.fixture
    def store(self):
        return InMemoryStore()

    @pytest.fixture
    def manager(self, store):
        return ConversationManager(store)

    async def test_create_sets_current_and_persists(self, manager, store):
        conversation = await manager.create()

        assert conversation.title == DEFAULT_TITLE
        assert manager.current() is conversation
        assert store.saves == 1

    async def test_newest_first(self, manager):
        first = await manager.create()
        second = await manager.create()
        assert [c.id for c in manager.all()] == [second.id, first.id]

    async def test_auto_title_only_from_first_user_message(self, manager):
        conversation = await manager.create()
        await manager.append(conversation.id, Message.user("  short question  "))
        await manager.append(conversation.id, Message.user("a different, much longer follow-up"))
        assert conversation.title == "short question"

    async def test_renamed_conversation_keeps_title(self, manager):
        conversation = await manager.create()
        await manager.rename(conversation.id, "Incident 42")
        await manager.append(conversation.id, Message.user("hello"))
        assert conversation.title == "Incident 42"

    async def test_orphan_tool_message_rejected(self, manager):
        conversation = await manager.create()
        with pytest.raises(ValueError):
            await manager.append(conversation.id, Message.tool(CALL, "{}"))

    async def test_save_failure_raises(self, manager, store):
        conversation = await manager.create()
        store.fail = True
        with pytest.raises(PersistenceFailure):
            await manager.append(conversation.id, Message.user("hi"))

    async def test_delete_moves_current(self, manager):
        older = await manager.create()
        newer = await manager.create()

        assert await manager.delete(newer.id)
        assert manager.current_id == older.id
        assert await manager.delete("conv-missing") is False

    async def test_switch(self, manager):
        first = await manager.create()
        await manager.create()

        assert manager.switch(first.id) is first
        assert manager.current_id == first.id
        assert manager.switch("conv-missing") is None

    async def test_metadata(self, manager):
        conversation = await manager.create()
        await manager.set_metadata(conversation.id, "notify", ["soc@example.com"])
        assert manager.get(conversation.id).metadata == {"notify": ["soc@example.com"]}

    async def test_owner_emails_detected_on_append(self, manager, store):
        conversation = await manager.create()
        await manager.append(conversation.id, Message.user("Asset owner: Bob@Corp.Example"))
        await manager.append(
            conversation.id, Message.assistant("负责人 bob@corp.example, owner carol@corp.example")
        )

        assert manager.owner_emails(conversation.id) == ["bob@corp.example", "carol@corp.example"]
        metadata = store.snapshots[-1][0].metadata
        assert metadata["owner_emails"] == ["bob@corp.example", "carol@corp.example"]
        assert "owner_emails_updated_at" in metadata

    async def test_plain_addresses_are_not_owners(self, manager):
        conversation = await manager.create()
        await manager.append(conversation.id, Message.user("mail soc@corp.example about it"))
        assert manager.owner_emails(conversation.id) == []
        assert "owner_emails" not in conversation.metadata

    async def test_load(self, store):
        writer = ConversationManager(store)
        conversation = await writer.create()
        reader = ConversationManager(store)
        loaded = await reader.load()
        assert [c.id for c in loaded] == [conversation.id]
