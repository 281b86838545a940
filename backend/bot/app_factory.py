import asyncio
import hmac
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse

from queue_manager import AdmissionQueue, QueueConfig

from .repositories.session_store import SessionStore
from .services.chat_handler import ChatHandler
from .services.llm_gateway import LLMGateway
from .settings import Settings, load_settings
from .telegram import TelegramTransport, parse_update


logger = logging.getLogger("BotCore")


def _verify_webhook_secret(expected: str, received: Optional[str]) -> bool:
    if not expected:
        return True
    if not received:
        return False
    return hmac.compare_digest(expected, received)


class BotRuntime:
    def __init__(
        self,
        settings: Settings,
        transport: Optional[TelegramTransport] = None,
        gateway: Optional[LLMGateway] = None,
    ) -> None:
        self.settings = settings
        self.session_store = SessionStore(settings.max_history_messages)
        self.transport = transport or TelegramTransport(
            settings.telegram_bot_token, api_base=settings.telegram_api_base
        )
        self.gateway = gateway or LLMGateway(settings, self.session_store)
        self.chat = ChatHandler(
            self.transport,
            self.gateway,
            self.session_store,
            queue=AdmissionQueue(QueueConfig(health_log_interval=settings.queue_health_log_interval)),
            notification_concurrency=settings.notification_concurrency,
            partial_interval=settings.partial_update_interval_seconds,
            debug=settings.debug_level,
        )
        self._tasks: set[asyncio.Task] = set()

    async def start(self) -> None:
        await self.chat.start()

    async def shutdown(self) -> None:
        await self.chat.shutdown()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.gateway.close()
        await self.transport.close()

    def dispatch_update(self, update: dict[str, Any]) -> bool:
        """Schedule handling of one Telegram update. Returns False when it carries no text."""
        parsed = parse_update(update)
        if parsed is None:
            return False
        message, text, is_reply = parsed
        task = asyncio.create_task(
            self.chat.handle(message, text, is_reply),
            name=f"chat-{message.chat_id}-{message.message_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return True

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Message handling failed task=%s: %s", task.get_name(), exc)

    def readiness_report(self) -> dict[str, Any]:
        checks = {
            "admission_queue": {"ok": self.chat.queue.running},
            "notification_fanout": {"ok": self.chat.fanout.running},
            "backend": {
                "ok": self.settings.backend_configured,
                "detail": self.settings.openai_model_name,
            },
            "telegram": {"ok": bool(self.settings.telegram_bot_token)},
        }
        ok = all(item["ok"] for item in checks.values())
        return {"ok": ok, "environment": self.settings.environment, "checks": checks}


def create_app(settings: Optional[Settings] = None, runtime: Optional[BotRuntime] = None) -> FastAPI:
    settings = settings or load_settings()
    log_level = getattr(logging, settings.log_level, logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    runtime = runtime or BotRuntime(settings)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        errors, warnings = settings.validate()
        if errors:
            for item in errors:
                logger.error("Startup validation error: %s", item)
            raise RuntimeError("Invalid configuration")
        for item in warnings:
            logger.warning("Startup validation warning: %s", item)

        logger.info("Starting bot environment=%s model=%s", settings.environment, settings.openai_model_name)
        await runtime.start()
        try:
            yield
        finally:
            logger.info("Shutting down bot")
            await runtime.shutdown()

    app = FastAPI(title="Chat Relay Bot", version="1.0.0", lifespan=lifespan)
    app.state.runtime = runtime
    app.state.settings = settings

    @app.middleware("http")
    async def request_middleware(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "Unhandled exception request_id=%s method=%s path=%s",
                request_id,
                request.method,
                request.url.path,
            )
            response = JSONResponse(
                {"detail": "internal_error", "request_id": request_id},
                status_code=500,
            )
        elapsed = time.perf_counter() - start
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        logger.info(
            "request_id=%s method=%s path=%s status=%s duration_ms=%.2f",
            request_id,
            request.method,
            request.url.path,
            response.status_code,
            elapsed * 1000,
        )
        return response

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"ok": True, "environment": settings.environment}

    @app.get("/ready")
    async def ready() -> JSONResponse:
        report = runtime.readiness_report()
        return JSONResponse(report, status_code=200 if report["ok"] else 503)

    @app.get("/queue/stats")
    async def queue_stats() -> dict[str, Any]:
        return runtime.chat.coordinator.get_stats()

    @app.post("/telegram/webhook")
    async def telegram_webhook(
        request: Request,
        secret: Optional[str] = Header(default=None, alias="X-Telegram-Bot-Api-Secret-Token"),
    ):
        if not _verify_webhook_secret(settings.telegram_webhook_secret, secret):
            logger.warning("Invalid webhook secret")
            return JSONResponse({"ok": False, "detail": "forbidden"}, status_code=403)

        try:
            update = await request.json()
        except ValueError:
            return JSONResponse({"ok": False, "detail": "invalid_json"}, status_code=400)
        if not isinstance(update, dict):
            return JSONResponse({"ok": False, "detail": "invalid_update"}, status_code=400)

        runtime.dispatch_update(update)
        return {"ok": True}

    return app
