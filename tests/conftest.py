"""Shared fixtures for all tests."""

import asyncio
from typing import Any

import pytest
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, AIMessageChunk
from langchain_core.outputs import ChatGeneration, ChatGenerationChunk, ChatResult

from backend.core import database
from backend.core.model_factory import ModelHandle
from backend.core.providers import ProviderId
from backend.core.settings import Settings
from backend.core.vault import Vault

TEST_SECRET = "test-secret"


class ScriptedChatModel(BaseChatModel):
    """Chat model that replays one scripted chunk list per call.

    A script entry that is an exception is raised instead of streamed.
    With ``repeat_last`` the final entry is replayed forever.
    """

    scripts: list[Any] = []
    repeat_last: bool = False
    calls: int = 0
    seen: list[Any] = []
    bound_tools: list[Any] = []
    streams_finished: int = 0
    streams_closed: int = 0

    @property
    def _llm_type(self) -> str:
        return "scripted"

    def _next_script(self, messages):
        self.seen.append(list(messages))
        index = self.calls
        self.calls += 1
        if index >= len(self.scripts):
            if not self.repeat_last:
                raise AssertionError("model called more times than scripted")
            index = len(self.scripts) - 1
        script = self.scripts[index]
        if isinstance(script, Exception):
            raise script
        return script

    def _generate(self, messages, stop=None, run_manager=None, **kwargs):
        chunks = self._next_script(messages)
        merged = chunks[0]
        for chunk in chunks[1:]:
            merged = merged + chunk
        message = AIMessage(content=merged.content, tool_calls=merged.tool_calls)
        return ChatResult(generations=[ChatGeneration(message=message)])

    async def _astream(self, messages, stop=None, run_manager=None, **kwargs):
        try:
            for chunk in self._next_script(messages):
                await asyncio.sleep(0)
                yield ChatGenerationChunk(message=chunk)
            self.streams_finished += 1
        finally:
            self.streams_closed += 1

    def bind_tools(self, tools, **kwargs):
        self.bound_tools = list(tools)
        return self


def text_chunks(*parts: str) -> list[AIMessageChunk]:
    return [AIMessageChunk(content=p) for p in parts]


def tool_call_chunk(name: str, args_json: str, call_id: str | None = "call_1") -> AIMessageChunk:
    return AIMessageChunk(
        content="",
        tool_call_chunks=[{"name": name, "args": args_json, "id": call_id, "index": 0}],
    )


@pytest.fixture
def vault() -> Vault:
    return Vault(TEST_SECRET)


@pytest.fixture
def settings() -> Settings:
    return Settings(vault_secret=TEST_SECRET)


@pytest.fixture
def scripted_model():
    def factory(*scripts, repeat_last=False) -> ScriptedChatModel:
        return ScriptedChatModel(scripts=list(scripts), repeat_last=repeat_last)
    return factory


@pytest.fixture
def memory_db():
    """Fresh in-memory database, torn down after the test."""
    database.init_db("sqlite:///:memory:")
    yield
    database.reset()


@pytest.fixture
def chunks():
    """Builders for scripted stream chunks: ``chunks.text(...)``, ``chunks.tool_call(...)``."""
    class Chunks:
        text = staticmethod(text_chunks)
        tool_call = staticmethod(tool_call_chunk)
    return Chunks


@pytest.fixture
def handle_for():
    def factory(model: BaseChatModel, provider: ProviderId = ProviderId.OPENAI) -> ModelHandle:
        return ModelHandle(provider=provider, model_id="test-model", base_url=None, chat_model=model)
    return factory


@pytest.fixture
def drain():
    """Drain an async generator from sync test code."""
    def run(agen) -> list:
        async def consume():
            return [item async for item in agen]
        return asyncio.run(consume())
    return run
