"""Unit tests for the client-side chat session and stream reader."""

import json

import pytest

from backend.core.models import ChatMessage, ToolInvocation
from frontend.client import (
    ChatClientError,
    ChatTurn,
    StreamAssembler,
    iter_stream_events,
    send,
    to_ui_message,
)
from frontend.store import ChatStore


def frames(*events):
    lines = []
    for event in events:
        lines.append(f"data: {json.dumps(event)}".encode())
        lines.append(b"")
    lines.append(b"data: [DONE]")
    return lines


@pytest.fixture
def fake_post(mocker):
    def factory(status_code=200, lines=(), payload=None):
        resp = mocker.MagicMock()
        resp.status_code = status_code
        resp.iter_lines.return_value = iter(lines)
        resp.json.return_value = payload or {}
        return mocker.patch("frontend.client.requests.post", return_value=resp)
    return factory


class TestIterStreamEvents:

    def test_parses_until_done(self):
        lines = frames({"type": "start"}, {"type": "text-delta", "delta": "a"}) + [b'data: {"type": "late"}']
        assert [e["type"] for e in iter_stream_events(lines)] == ["start", "text-delta"]

    def test_skips_noise(self):
        lines = [": keep-alive", "event: ping", "data: not-json", 'data: {"type": "finish"}', "data: [DONE]"]
        assert list(iter_stream_events(lines)) == [{"type": "finish"}]


class TestToUiMessage:

    def test_plain(self):
        msg = ChatMessage(role="user", content="hi")
        assert to_ui_message(msg) == {"id": msg.id, "role": "user", "content": "hi"}

    def test_tool_calls_become_parts(self):
        call = ToolInvocation(id="t1", tool_name="calculate", arguments={"expression": "1+1"}, result={"result": 2})
        msg = ChatMessage(role="assistant", content="2", tool_calls=(call,))
        parts = to_ui_message(msg)["parts"]
        assert parts[0]["type"] == "tool-calculate"
        assert parts[0]["state"] == "output-available"
        assert parts[-1] == {"type": "text", "text": "2"}


class TestChatTurn:

    def test_from_store(self):
        store = ChatStore()
        store.set_provider("openai")
        store.set_api_key("openai", "enc")
        turn = ChatTurn.from_store(store, api_url="http://api/")
        assert (turn.provider, turn.encrypted_api_key, turn.api_url) == ("openai", "enc", "http://api")

    def test_missing_key_rejected_locally(self):
        turn = ChatTurn(provider="anthropic", model="claude-3-haiku-20240307")
        with pytest.raises(ChatClientError) as exc:
            turn.check_credentials()
        assert exc.value.message == "请先配置 anthropic 的 API Key"

    def test_google_may_omit_key(self):
        ChatTurn(provider="google", model="gemini-2.5-flash").check_credentials()

    def test_fresh_turn_sees_rotated_key(self):
        store = ChatStore()
        store.set_provider("openai")
        store.set_api_key("openai", "old")
        first = ChatTurn.from_store(store)
        store.set_api_key("openai", "new")
        assert first.encrypted_api_key == "old"
        assert ChatTurn.from_store(store).encrypted_api_key == "new"


class TestSend:

    def test_streams_into_store(self, fake_post):
        post = fake_post(lines=frames(
            {"type": "start", "messageId": "m"},
            {"type": "tool-call", "toolCallId": "t1", "toolName": "calculate", "input": {"expression": "1+1"}},
            {"type": "tool-result", "toolCallId": "t1", "toolName": "calculate", "output": {"result": 2}},
            {"type": "text-delta", "delta": "It is "},
            {"type": "text-delta", "delta": "2."},
            {"type": "finish", "finishReason": "stop"},
        ))
        store = ChatStore()
        turn = ChatTurn(provider="google", model="gemini-2.5-flash", api_url="http://api")

        events = list(send(turn, store, "what is 1+1"))

        assert len(events) == 6
        conv = store.active_conversation()
        assert conv.title == "what is 1+1"
        user, assistant = conv.messages
        assert user.content == "what is 1+1"
        assert assistant.content == "It is 2."
        assert assistant.tool_calls[0].result == {"result": 2}

        body = post.call_args.kwargs["json"]
        assert body["provider"] == "google"
        assert body["conversationId"] == conv.id
        assert "encryptedApiKey" not in body
        assert post.call_args.args[0] == "http://api/api/chat"

    def test_error_status_raises(self, fake_post):
        fake_post(status_code=401, payload={"error": "请配置 openai 的 API Key"})
        turn = ChatTurn(provider="openai", model="gpt-4o", encrypted_api_key="enc")
        with pytest.raises(ChatClientError) as exc:
            list(send(turn, ChatStore(), "hi"))
        assert exc.value.status_code == 401
        assert exc.value.message == "请配置 openai 的 API Key"

    def test_500_details_included(self, fake_post):
        fake_post(status_code=500, payload={"error": "Failed to process chat request", "details": "boom"})
        turn = ChatTurn(provider="openai", model="gpt-4o", encrypted_api_key="enc")
        with pytest.raises(ChatClientError) as exc:
            list(send(turn, ChatStore(), "hi"))
        assert exc.value.message == "Failed to process chat request: boom"

    def test_in_band_error_raises_after_stream(self, fake_post):
        fake_post(lines=frames({"type": "text-delta", "delta": "par"}, {"type": "error", "errorText": "reset"}))
        store = ChatStore()
        turn = ChatTurn(provider="google", model="gemini-2.5-flash")
        with pytest.raises(ChatClientError) as exc:
            list(send(turn, store, "hi"))
        assert exc.value.message == "reset"
        assert store.active_conversation().messages[-1].content == "par"

    def test_continues_active_conversation(self, fake_post):
        fake_post(lines=frames({"type": "text-delta", "delta": "ok"}))
        store = ChatStore()
        conv = store.start_conversation("earlier")
        turn = ChatTurn(provider="google", model="gemini-2.5-flash")
        list(send(turn, store, "next"))
        assert len(store.state.conversations) == 1
        assert store.get_conversation(conv.id).messages[0].content == "next"

    def test_stop_closes_response(self, fake_post):
        post = fake_post(lines=frames({"type": "text-delta", "delta": "a"}, {"type": "text-delta", "delta": "b"}))
        store = ChatStore()
        turn = ChatTurn(provider="google", model="gemini-2.5-flash")
        stream = send(turn, store, "hi")
        next(stream)
        stream.close()
        post.return_value.close.assert_called_once()
        assert store.active_conversation().messages[-1].content == "a"


class TestStreamAssembler:

    def test_records_finish_reason(self):
        store = ChatStore()
        conv = store.start_conversation("x")
        msg = ChatMessage(role="assistant")
        store.add_message(conv.id, msg)
        assembler = StreamAssembler(store, conv.id, msg.id)
        assembler.apply({"type": "finish", "finishReason": "max-steps"})
        assembler.apply({"type": "unknown"})
        assert assembler.finish_reason == "max-steps"
        assert assembler.error is None
