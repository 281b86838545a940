import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx


logger = logging.getLogger("TelegramTransport")
MAX_MESSAGE_LENGTH = 4096
REPLY_COMMAND = "/reply"


class TransportError(Exception):
    pass


@dataclass(frozen=True)
class MessageHandle:
    chat_id: int
    message_id: int
    text: str = ""


@dataclass
class IncomingMessage:
    chat_id: int
    message_id: int
    text: str
    chat_type: str = "private"
    chat_title: str = ""
    user_id: Optional[int] = None
    username: str = ""
    reply_text: Optional[str] = None

    @property
    def user_info(self) -> str:
        return f"@{self.username} ({self.user_id})"

    @property
    def chat_info(self) -> str:
        if self.chat_type == "private":
            return "private chat"
        return f"group {self.chat_title} ({self.chat_id})"


def parse_update(update: dict[str, Any]) -> Optional[tuple[IncomingMessage, str, bool]]:
    """Return (message, text, is_reply) for a text message update, else None."""
    message = update.get("message")
    if not isinstance(message, dict):
        return None
    raw_text = (message.get("text") or "").strip()
    if not raw_text:
        return None

    chat = message.get("chat") or {}
    sender = message.get("from") or {}
    replied = message.get("reply_to_message") or {}
    reply_text = replied.get("text") or replied.get("caption") or None

    incoming = IncomingMessage(
        chat_id=int(chat.get("id", 0)),
        message_id=int(message.get("message_id", 0)),
        text=raw_text,
        chat_type=str(chat.get("type", "private")),
        chat_title=str(chat.get("title") or ""),
        user_id=sender.get("id"),
        username=str(sender.get("username") or ""),
        reply_text=reply_text,
    )

    command, _, rest = raw_text.partition(" ")
    # "/reply@SomeBot text" in groups
    if command.split("@", 1)[0] == REPLY_COMMAND:
        return incoming, rest.strip(), True
    return incoming, raw_text, False


class TelegramTransport:
    def __init__(
        self,
        token: str,
        api_base: str = "https://api.telegram.org",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
    ) -> None:
        self._base_url = f"{api_base.rstrip('/')}/bot{token}"
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def _call(self, method: str, payload: dict[str, Any]) -> Any:
        url = f"{self._base_url}/{method}"
        try:
            resp = await self._client.post(url, json=payload)
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise TransportError(f"{method} failed: {exc}") from exc
        if not isinstance(data, dict) or not data.get("ok"):
            description = data.get("description") if isinstance(data, dict) else resp.text
            raise TransportError(f"{method} rejected ({resp.status_code}): {description}")
        return data.get("result")

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_to: Optional[int] = None,
    ) -> MessageHandle:
        payload: dict[str, Any] = {"chat_id": chat_id, "text": text[:MAX_MESSAGE_LENGTH]}
        if reply_to is not None:
            payload["reply_to_message_id"] = reply_to
        result = await self._call("sendMessage", payload)
        return MessageHandle(
            chat_id=chat_id,
            message_id=int(result["message_id"]),
            text=result.get("text", payload["text"]),
        )

    async def edit_message(self, handle: MessageHandle, text: str) -> MessageHandle:
        payload = {
            "chat_id": handle.chat_id,
            "message_id": handle.message_id,
            "text": text[:MAX_MESSAGE_LENGTH],
        }
        result = await self._call("editMessageText", payload)
        # Bot API answers `true` instead of a Message for some edits
        if isinstance(result, dict):
            return MessageHandle(
                chat_id=handle.chat_id,
                message_id=int(result.get("message_id", handle.message_id)),
                text=result.get("text", payload["text"]),
            )
        return MessageHandle(handle.chat_id, handle.message_id, payload["text"])

    async def send_chat_action(self, chat_id: int, action: str = "typing") -> None:
        await self._call("sendChatAction", {"chat_id": chat_id, "action": action})
