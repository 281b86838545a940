# pylint: disable=missing-module-docstring,missing-function-docstring
import asyncio
from types import SimpleNamespace

import httpx
import openai
import pytest

from bot.repositories.session_store import SessionStore
from bot.services.llm_gateway import LLMGateway
from queue_manager import BackendError, BackendTimeout

from conftest import make_settings


def run(coro):
    return asyncio.run(coro)


def chunk(content):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


class FakeStream:
    def __init__(self, chunks, pause: float = 0.0) -> None:
        self._chunks = list(chunks)
        self._pause = pause

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._chunks:
            raise StopAsyncIteration
        if self._pause:
            await asyncio.sleep(self._pause)
        return self._chunks.pop(0)


class FakeClient:
    """Stands in for openai.AsyncOpenAI: only chat.completions.create is used."""

    def __init__(self, chunks=(), error: Exception = None, pause: float = 0.0) -> None:
        self.calls: list[dict] = []
        self.closed = False
        self._chunks = chunks
        self._error = error
        self._pause = pause
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    async def _create(self, **kwargs):
        self.calls.append(kwargs)
        if self._error is not None:
            raise self._error
        return FakeStream(self._chunks, self._pause)

    async def close(self):
        self.closed = True


def _request():
    return httpx.Request("POST", "https://llm.test/v1/chat/completions")


def test_streams_partials_and_records_history():
    store = SessionStore(max_messages=10)
    client = FakeClient([chunk("Hel"), chunk(None), chunk("lo"), SimpleNamespace(choices=[]), chunk("!")])
    gateway = LLMGateway(make_settings(), store, client=client)
    partials = []

    async def on_partial(text):
        partials.append(text)

    reply = run(gateway.converse(42, "hi", on_partial))

    assert reply == "Hello!"
    assert partials == ["Hel", "Hello", "Hello!"]
    assert store.get_recent_messages(42) == [("user", "hi"), ("assistant", "Hello!")]

    call = client.calls[0]
    assert call["model"] == "test-model"
    assert call["stream"] is True
    assert call["messages"][0] == {"role": "system", "content": "You are a test bot."}
    assert call["messages"][-1] == {"role": "user", "content": "hi"}


def test_history_is_sent_with_the_next_turn():
    store = SessionStore(max_messages=10)
    store.append_message(42, "user", "my name is Bob")
    store.append_message(42, "assistant", "Hi Bob")
    client = FakeClient([chunk("Bob")])
    gateway = LLMGateway(make_settings(), store, client=client)

    run(gateway.converse(42, "what is my name?"))

    roles = [m["role"] for m in client.calls[0]["messages"]]
    assert roles == ["system", "user", "assistant", "user"]


def test_api_timeout_maps_to_backend_timeout():
    store = SessionStore()
    client = FakeClient(error=openai.APITimeoutError(request=_request()))
    gateway = LLMGateway(make_settings(), store, client=client)

    with pytest.raises(BackendTimeout, match="timed out"):
        run(gateway.converse(42, "hi"))
    assert store.get_recent_messages(42) == []


def test_slow_stream_hits_the_deadline():
    client = FakeClient([chunk("a"), chunk("b")], pause=0.5)
    gateway = LLMGateway(make_settings(openai_timeout_seconds=0.05), SessionStore(), client=client)

    with pytest.raises(BackendTimeout):
        run(gateway.converse(42, "hi"))


def test_connection_error_maps_to_backend_error():
    client = FakeClient(error=openai.APIConnectionError(request=_request()))
    gateway = LLMGateway(make_settings(), SessionStore(), client=client)

    with pytest.raises(BackendError) as info:
        run(gateway.converse(42, "hi"))
    assert not isinstance(info.value, BackendTimeout)


def test_empty_reply_is_an_error():
    store = SessionStore()
    gateway = LLMGateway(make_settings(), store, client=FakeClient([chunk("   ")]))

    with pytest.raises(BackendError, match="empty reply"):
        run(gateway.converse(42, "hi"))
    assert store.get_recent_messages(42) == []


def test_close_releases_client():
    client = FakeClient()
    gateway = LLMGateway(make_settings(), SessionStore(), client=client)
    run(gateway.close())
    assert client.closed is True
