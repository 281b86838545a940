import asyncio
import logging
from typing import Awaitable, Callable, Optional

import httpx
import openai

from queue_manager.errors import BackendError, BackendTimeout

from ..repositories.session_store import SessionStore
from ..settings import Settings


logger = logging.getLogger("LLMGateway")

PartialFn = Callable[[str], Awaitable[None]]


class LLMGateway:
    """Streaming chat backend; one conversation per Telegram chat."""

    def __init__(
        self,
        settings: Settings,
        session_store: SessionStore,
        client: Optional[openai.AsyncOpenAI] = None,
    ) -> None:
        self.settings = settings
        self.session_store = session_store
        self._client = client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    def _get_client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            self._client = openai.AsyncOpenAI(
                api_key=self.settings.openai_api_key,
                base_url=self.settings.openai_base_url,
                timeout=httpx.Timeout(self.settings.openai_timeout_seconds, connect=10.0),
                max_retries=0,
            )
        return self._client

    def _build_messages(self, session_id: int, text: str) -> list[dict[str, str]]:
        messages = [{"role": "system", "content": self.settings.system_prompt}]
        history = self.session_store.get_recent_messages(
            session_id, limit=self.settings.max_history_messages
        )
        messages.extend({"role": role, "content": content} for role, content in history)
        messages.append({"role": "user", "content": text})
        return messages

    async def converse(
        self,
        session_id: int,
        text: str,
        on_partial: Optional[PartialFn] = None,
    ) -> str:
        """
        Send `text` in the chat's conversation and stream the reply.

        `on_partial` receives the accumulated reply after every streamed delta.

        Raises:
            BackendTimeout: the backend did not finish within OPENAI_TIMEOUT_SECONDS
            BackendError: any other backend failure, including an empty reply
        """
        messages = await asyncio.to_thread(self._build_messages, session_id, text)
        try:
            reply = await asyncio.wait_for(
                self._stream(messages, on_partial),
                timeout=self.settings.openai_timeout_seconds,
            )
        except (openai.APITimeoutError, asyncio.TimeoutError) as exc:
            raise BackendTimeout(f"Request timed out after {self.settings.openai_timeout_seconds}s") from exc
        except (openai.OpenAIError, httpx.HTTPError) as exc:
            raise BackendError(str(exc)) from exc

        if not reply:
            raise BackendError("Backend returned an empty reply")

        await asyncio.to_thread(self.session_store.append_message, session_id, "user", text)
        await asyncio.to_thread(self.session_store.append_message, session_id, "assistant", reply)
        return reply

    async def _stream(self, messages: list[dict[str, str]], on_partial: Optional[PartialFn]) -> str:
        client = self._get_client()
        stream = await client.chat.completions.create(
            model=self.settings.openai_model_name,
            messages=messages,
            stream=True,
        )
        parts: list[str] = []
        async for chunk in stream:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta.content
            if not delta:
                continue
            parts.append(delta)
            if on_partial is not None:
                await on_partial("".join(parts))
        return "".join(parts).strip()
