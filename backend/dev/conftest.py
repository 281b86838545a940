# pylint: disable=missing-module-docstring,missing-function-docstring
import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

import pytest

from bot.repositories.session_store import SessionStore
from bot.settings import Settings
from bot.telegram import IncomingMessage, MessageHandle, TransportError


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = dict(
        environment="test",
        host="127.0.0.1",
        port=5000,
        log_level="INFO",
        debug_level=1,
        telegram_bot_token="123:TEST",
        telegram_api_base="https://tg.test",
        telegram_webhook_secret="",
        openai_api_key="sk-test",
        openai_base_url="https://llm.test/v1",
        openai_model_name="test-model",
        openai_timeout_seconds=5.0,
        system_prompt="You are a test bot.",
        max_history_messages=20,
        partial_update_interval_seconds=3.0,
        notification_concurrency=20,
        queue_health_log_interval=60.0,
    )
    values.update(overrides)
    return Settings(**values)


def make_message(chat_id: int, message_id: int = 1, text: str = "hi", reply_text: Optional[str] = None) -> IncomingMessage:
    return IncomingMessage(
        chat_id=chat_id,
        message_id=message_id,
        text=text,
        user_id=chat_id,
        username=f"user{chat_id}",
        reply_text=reply_text,
    )


class FakeTransport:
    """Records every Bot API call; placeholder ids start at 1001."""

    def __init__(self) -> None:
        self.sent: List[tuple] = []
        self.edits: List[tuple] = []
        self.actions: List[tuple] = []
        self.fail_edits = False
        self._next_id = 1000

    async def send_message(self, chat_id: int, text: str, reply_to: Optional[int] = None) -> MessageHandle:
        self._next_id += 1
        self.sent.append((chat_id, text, reply_to))
        return MessageHandle(chat_id, self._next_id, text)

    async def edit_message(self, handle: MessageHandle, text: str) -> MessageHandle:
        if self.fail_edits:
            raise TransportError("editMessageText rejected (400): Bad Request")
        self.edits.append((handle.message_id, text))
        return MessageHandle(handle.chat_id, handle.message_id, text)

    async def send_chat_action(self, chat_id: int, action: str = "typing") -> None:
        self.actions.append((chat_id, action))

    async def close(self) -> None:
        pass

    def edits_for(self, message_id: int) -> List[str]:
        return [text for mid, text in self.edits if mid == message_id]


ConverseFn = Callable[[int, str, Any], Awaitable[str]]


class FakeBackend:
    """Answers `answer <text>` after a short pause unless a script is set for the chat."""

    def __init__(self, delay: float = 0.01) -> None:
        self.delay = delay
        self.calls: List[tuple] = []
        self.scripts: Dict[int, ConverseFn] = {}

    async def converse(self, session_id: int, text: str, on_partial=None) -> str:
        self.calls.append((session_id, text))
        script = self.scripts.get(session_id)
        if script is not None:
            return await script(session_id, text, on_partial)
        await asyncio.sleep(self.delay)
        return f"answer {text}"

    async def close(self) -> None:
        pass


class SpySessionStore(SessionStore):
    def __init__(self, max_messages: int = 20) -> None:
        super().__init__(max_messages)
        self.forgotten: List[int] = []

    def forget(self, session_id: int) -> bool:
        self.forgotten.append(session_id)
        return super().forget(session_id)


@pytest.fixture
def settings() -> Settings:
    return make_settings()
