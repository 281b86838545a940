import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant chatting through Telegram. "
    "Answer in the same language as the user and keep replies concise."
)


def _env_float(name: str, default: str) -> float:
    return float(os.getenv(name, default).strip() or default)


def _env_int(name: str, default: str) -> int:
    return int(os.getenv(name, default).strip() or default)


@dataclass
class Settings:
    environment: str
    host: str
    port: int
    log_level: str
    debug_level: int

    telegram_bot_token: str
    telegram_api_base: str
    telegram_webhook_secret: str

    openai_api_key: str
    openai_base_url: str
    openai_model_name: str
    openai_timeout_seconds: float
    system_prompt: str
    max_history_messages: int

    partial_update_interval_seconds: float
    notification_concurrency: int
    queue_health_log_interval: float

    @property
    def is_production(self) -> bool:
        return self.environment in {"prod", "production"}

    @property
    def backend_configured(self) -> bool:
        return bool(self.openai_api_key and self.openai_model_name)

    def validate(self) -> tuple[list[str], list[str]]:
        errors: list[str] = []
        warnings: list[str] = []

        if not self.telegram_bot_token:
            errors.append("TELEGRAM_BOT_TOKEN is missing")
        if not self.backend_configured:
            errors.append("OPENAI_API_KEY / OPENAI_MODEL_NAME are missing")
        if self.openai_timeout_seconds <= 0:
            errors.append("OPENAI_TIMEOUT_SECONDS must be > 0")
        if self.partial_update_interval_seconds < 0:
            errors.append("PARTIAL_UPDATE_INTERVAL_SECONDS must be >= 0")
        if self.notification_concurrency < 1:
            errors.append("NOTIFICATION_CONCURRENCY must be >= 1")
        if self.queue_health_log_interval <= 0:
            errors.append("QUEUE_HEALTH_LOG_INTERVAL must be > 0")
        if self.max_history_messages < 0:
            errors.append("MAX_HISTORY_MESSAGES must be >= 0")

        if not self.telegram_webhook_secret:
            if self.is_production:
                warnings.append("TELEGRAM_WEBHOOK_SECRET is empty in production")
            else:
                warnings.append("TELEGRAM_WEBHOOK_SECRET is empty (webhook is unauthenticated)")
        if self.notification_concurrency > 30:
            warnings.append("NOTIFICATION_CONCURRENCY above 30 may hit Telegram flood limits")

        return errors, warnings


def load_settings() -> Settings:
    backend_dir = Path(__file__).resolve().parents[1]
    load_dotenv(backend_dir / ".env")

    return Settings(
        environment=os.getenv("ENVIRONMENT", "development").strip().lower(),
        host=os.getenv("HOST", "0.0.0.0"),
        port=_env_int("PORT", "5000"),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
        debug_level=_env_int("DEBUG_LEVEL", "1"),
        telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN", "").strip(),
        telegram_api_base=os.getenv("TELEGRAM_API_BASE", "https://api.telegram.org").strip().rstrip("/"),
        telegram_webhook_secret=os.getenv("TELEGRAM_WEBHOOK_SECRET", "").strip(),
        openai_api_key=os.getenv("OPENAI_API_KEY", "").strip(),
        openai_base_url=os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1").strip(),
        openai_model_name=os.getenv("OPENAI_MODEL_NAME", "gpt-4o-mini").strip(),
        openai_timeout_seconds=_env_float("OPENAI_TIMEOUT_SECONDS", "120"),
        system_prompt=os.getenv("SYSTEM_PROMPT", DEFAULT_SYSTEM_PROMPT).strip(),
        max_history_messages=_env_int("MAX_HISTORY_MESSAGES", "20"),
        partial_update_interval_seconds=_env_float("PARTIAL_UPDATE_INTERVAL_SECONDS", "3.0"),
        notification_concurrency=_env_int("NOTIFICATION_CONCURRENCY", "20"),
        queue_health_log_interval=_env_float("QUEUE_HEALTH_LOG_INTERVAL", "60"),
    )
