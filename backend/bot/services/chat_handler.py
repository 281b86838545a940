"""
Chat Handler
Relays Telegram messages to the backend through the admission queue.

- acknowledges every message with a placeholder reply
- keeps the placeholder updated with the sender's place in line
- streams the backend reply into the placeholder (throttled edits)
"""
import asyncio
import functools
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from queue_manager import (
    AdmissionQueue,
    BackendError,
    BackendTimeout,
    DEFAULT_CONCURRENCY,
    LeadingEdgeThrottle,
    NotificationDeliveryError,
    NotificationFanout,
    RequestCoordinator,
    RequestID,
)

from ..repositories.session_store import SessionStore
from ..telegram import IncomingMessage, MessageHandle, TelegramTransport, TransportError
from .llm_gateway import LLMGateway


logger = logging.getLogger("ChatHandler")

WAITING_TEXT = "⌛"
PROCESSING_TEXT = "🤔"
APOLOGY_TEXT = "⚠️ Sorry, I'm having trouble connecting to the server, please try again later."
NOT_A_REPLY_TEXT = "This is not a reply. Use /reply on a message to ask about it."


def position_text(position: int) -> str:
    if position > 0:
        return f"{WAITING_TEXT}: You are #{position} in line."
    return PROCESSING_TEXT


@dataclass(eq=False)
class ReplyContext:
    handle: MessageHandle
    # Set once reply text landed in the placeholder; position notices stop after that
    settled: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class ChatHandler:
    def __init__(
        self,
        transport: TelegramTransport,
        backend: LLMGateway,
        session_store: SessionStore,
        queue: Optional[AdmissionQueue] = None,
        notification_concurrency: int = DEFAULT_CONCURRENCY,
        partial_interval: float = 3.0,
        debug: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.transport = transport
        self.backend = backend
        self.session_store = session_store
        self.partial_interval = partial_interval
        self.debug = debug
        self._clock = clock
        self._contexts: Dict[RequestID, ReplyContext] = {}

        self.queue = queue or AdmissionQueue()
        self.fanout = NotificationFanout(self.notify_position, concurrency=notification_concurrency)
        self.coordinator = RequestCoordinator(self.queue, self.fanout, self.notify_position)

    async def start(self) -> None:
        await self.fanout.start()
        await self.queue.start()

    async def shutdown(self) -> None:
        await self.queue.shutdown()
        await self.fanout.shutdown()

    async def handle(self, message: IncomingMessage, text: str, is_reply: bool = False) -> None:
        if not text:
            return

        chat_id = message.chat_id
        if self.debug >= 1:
            logger.info("📩 Message from %s in %s:\n%s", message.user_info, message.chat_info, text)

        reply_text = message.reply_text
        if is_reply and not reply_text:
            await self.transport.send_message(chat_id, NOT_A_REPLY_TEXT, reply_to=message.message_id)
            return

        placeholder = await self.transport.send_message(chat_id, WAITING_TEXT, reply_to=message.message_id)
        request_id = RequestID(chat_id, placeholder.message_id)
        ctx = ReplyContext(handle=placeholder)
        self._contexts[request_id] = ctx

        body = f"{reply_text}\n{text}" if is_reply else text
        try:
            await self.coordinator.submit(
                request_id, functools.partial(self._send_to_backend, ctx, body)
            )
        finally:
            self._contexts.pop(request_id, None)

    # ───────────────────────────────────────────────────────────────────── #
    # UNIT OF WORK
    # ───────────────────────────────────────────────────────────────────── #
    async def _send_to_backend(self, ctx: ReplyContext, body: str) -> MessageHandle:
        chat_id = ctx.handle.chat_id
        await self._typing(chat_id)

        throttle = LeadingEdgeThrottle(self.partial_interval, clock=self._clock)

        async def on_partial(partial: str) -> None:
            await self._write(ctx, partial)
            await self._typing(chat_id)

        try:
            reply = await self.backend.converse(chat_id, body, throttle.wrap(on_partial))
            await self._write(ctx, reply)
            if self.debug >= 1:
                logger.info("📨 Response:\n%s", reply)
        except BackendError as exc:
            logger.error("⛔️ Backend error chat=%s: %s", chat_id, exc)
            if isinstance(exc, BackendTimeout):
                await asyncio.to_thread(self.session_store.forget, chat_id)
            await self._apologize(chat_id)
        except Exception as exc:
            logger.exception("⛔️ Unexpected error chat=%s: %s", chat_id, exc)
            await self._apologize(chat_id)
        finally:
            ctx.settled = True

        return ctx.handle

    async def _apologize(self, chat_id: int) -> None:
        try:
            await self.transport.send_message(chat_id, APOLOGY_TEXT)
        except TransportError as exc:
            logger.error("⛔️ Apology send failed chat=%s: %s", chat_id, exc)

    async def _write(self, ctx: ReplyContext, text: str) -> None:
        async with ctx.lock:
            if text.strip():
                ctx.settled = True
            ctx.handle = await self._edit_message(ctx.handle, text)

    async def _edit_message(self, handle: MessageHandle, text: str) -> MessageHandle:
        if not text.strip() or handle.text == text:
            return handle
        try:
            return await self.transport.edit_message(handle, text)
        except TransportError as exc:
            logger.error("⛔️ Edit message error: %s", exc)
            return handle

    async def _typing(self, chat_id: int) -> None:
        try:
            await self.transport.send_chat_action(chat_id, "typing")
        except TransportError as exc:
            logger.debug("Chat action failed chat=%s: %s", chat_id, exc)

    # ───────────────────────────────────────────────────────────────────── #
    # POSITION UPDATES
    # ───────────────────────────────────────────────────────────────────── #
    async def notify_position(self, request_id: RequestID, position: int) -> None:
        """Show `position` in the request's placeholder (used by the fanout)."""
        ctx = self._contexts.get(request_id)
        if ctx is None:
            logger.debug("Skipping position update for finished request=%s", request_id)
            return

        async with ctx.lock:
            if ctx.settled:
                return
            text = position_text(position)
            if ctx.handle.text == text:
                return
            try:
                ctx.handle = await self.transport.edit_message(ctx.handle, text)
            except TransportError as exc:
                raise NotificationDeliveryError(
                    f"position update for {request_id} failed: {exc}"
                ) from exc
