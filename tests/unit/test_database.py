"""Unit tests for conversation persistence (in-memory SQLite)."""

import pytest

from backend.core import database
from backend.core.database import get_conversation, save_turn
from backend.core.models import ChatMessage, ToolInvocation


@pytest.fixture(autouse=True)
def setup_db(memory_db):
    yield


def user(text):
    return ChatMessage(role="user", content=text)


def assistant(text, tool_calls=()):
    return ChatMessage(role="assistant", content=text, tool_calls=tool_calls)


class TestSaveTurn:

    def test_creates_conversation(self):
        save_turn("c1", "gpt-4o", user("hello"), assistant("hi there"))
        title, messages = get_conversation("c1")
        assert title == "hello"
        assert [m.role for m in messages] == ["user", "assistant"]
        assert messages[1].content == "hi there"

    def test_title_from_first_message_only(self):
        save_turn("c1", "gpt-4o", user("Explain quantum computing in simple terms please"), assistant("ok"))
        save_turn("c1", "gpt-4o", user("second"), assistant("ok"))
        title, messages = get_conversation("c1")
        assert title == "Explain quantum computing in s..."
        assert len(messages) == 4

    def test_insertion_order(self):
        for i in range(3):
            save_turn("c1", "m", user(f"q{i}"), assistant(f"a{i}"))
        _, messages = get_conversation("c1")
        assert [m.content for m in messages] == ["q0", "a0", "q1", "a1", "q2", "a2"]

    def test_tool_calls_round_trip(self):
        call = ToolInvocation(id="t1", tool_name="calculate", arguments={"expression": "1+1"},
                              result={"expression": "1+1", "result": 2})
        save_turn("c1", "m", user("1+1?"), assistant("2", tool_calls=(call,)))
        _, messages = get_conversation("c1")
        assert messages[1].tool_calls == (call,)

    def test_message_ids_preserved(self):
        question, answer = user("q"), assistant("a")
        save_turn("c1", "m", question, answer)
        _, messages = get_conversation("c1")
        assert [m.id for m in messages] == [question.id, answer.id]

    def test_updated_at_refreshed(self):
        save_turn("c1", "m", user("q"), assistant("a"))
        with database.get_session() as session:
            first = session.get(database.ConversationRow, "c1").updated_at
        save_turn("c1", "m2", user("q"), assistant("a"))
        with database.get_session() as session:
            row = session.get(database.ConversationRow, "c1")
            assert row.updated_at >= first
            assert row.model_id == "m2"


class TestIsolation:

    def test_conversations_isolated(self):
        save_turn("c1", "m", user("one"), assistant("a"))
        save_turn("c2", "m", user("two"), assistant("b"))
        assert len(get_conversation("c1")[1]) == 2
        assert get_conversation("c2")[0] == "two"

    def test_unknown_conversation(self):
        assert get_conversation("nope") is None


class TestLifecycle:

    def test_reset_disables(self):
        assert database.is_initialized()
        database.reset()
        assert not database.is_initialized()
        with pytest.raises(RuntimeError):
            database.get_session()
