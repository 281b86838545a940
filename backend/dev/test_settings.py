# pylint: disable=missing-module-docstring,missing-function-docstring
import pytest

from bot import settings as settings_module
from bot.repositories.session_store import SessionStore
from bot.settings import load_settings

from conftest import make_settings


ENV_KEYS = (
    "ENVIRONMENT",
    "PORT",
    "LOG_LEVEL",
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_API_BASE",
    "TELEGRAM_WEBHOOK_SECRET",
    "OPENAI_API_KEY",
    "OPENAI_MODEL_NAME",
    "OPENAI_TIMEOUT_SECONDS",
    "PARTIAL_UPDATE_INTERVAL_SECONDS",
    "NOTIFICATION_CONCURRENCY",
)


@pytest.fixture
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(settings_module, "load_dotenv", lambda *args, **kwargs: False)
    return monkeypatch


def test_defaults(clean_env):
    settings = load_settings()

    assert settings.environment == "development"
    assert settings.port == 5000
    assert settings.telegram_api_base == "https://api.telegram.org"
    assert settings.partial_update_interval_seconds == 3.0
    assert settings.notification_concurrency == 20
    assert settings.is_production is False


def test_environment_overrides(clean_env):
    clean_env.setenv("ENVIRONMENT", " Production ")
    clean_env.setenv("LOG_LEVEL", "debug")
    clean_env.setenv("TELEGRAM_API_BASE", "https://tg.local/")
    clean_env.setenv("OPENAI_TIMEOUT_SECONDS", "30")
    clean_env.setenv("NOTIFICATION_CONCURRENCY", "")

    settings = load_settings()

    assert settings.is_production is True
    assert settings.log_level == "DEBUG"
    assert settings.telegram_api_base == "https://tg.local"
    assert settings.openai_timeout_seconds == 30.0
    assert settings.notification_concurrency == 20


def test_validate_reports_missing_credentials():
    errors, _ = make_settings(telegram_bot_token="", openai_api_key="").validate()
    assert "TELEGRAM_BOT_TOKEN is missing" in errors
    assert any("OPENAI_API_KEY" in item for item in errors)


def test_validate_rejects_bad_numbers():
    errors, _ = make_settings(notification_concurrency=0, openai_timeout_seconds=0).validate()
    assert "NOTIFICATION_CONCURRENCY must be >= 1" in errors
    assert "OPENAI_TIMEOUT_SECONDS must be > 0" in errors


def test_validate_warns_on_open_webhook_in_production():
    errors, warnings = make_settings(environment="production").validate()
    assert errors == []
    assert "TELEGRAM_WEBHOOK_SECRET is empty in production" in warnings


# ---------------------------------------------------------------------
# session store
# ---------------------------------------------------------------------

def test_session_store_keeps_most_recent_turns():
    store = SessionStore(max_messages=3)
    for i in range(5):
        store.append_message(1, "user", f"m{i}")

    assert store.get_recent_messages(1) == [("user", "m2"), ("user", "m3"), ("user", "m4")]
    assert store.get_recent_messages(1, limit=1) == [("user", "m4")]
    assert store.get_recent_messages(2) == []


def test_session_store_forget():
    store = SessionStore()
    store.append_message(1, "user", "hi")

    assert store.forget(1) is True
    assert store.forget(1) is False
    assert store.get_recent_messages(1) == []
