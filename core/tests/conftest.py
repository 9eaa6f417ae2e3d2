"""Shared fixtures for flowengine tests."""

import pytest

from flowengine.observability import clear_trace_context

CREDENTIAL_ENV_VARS = (
    "TWILIO_ACCOUNT_SID",
    "TWILIO_AUTH_TOKEN",
    "TWILIO_FROM_NUMBER",
    "GOOGLE_ACCESS_TOKEN",
    "RESEND_API_KEY",
    "EMAIL_FROM",
    "SLACK_BOT_TOKEN",
    "DISCORD_BOT_TOKEN",
    "DISCORD_WEBHOOK_URL",
    "TELEGRAM_BOT_TOKEN",
    "GEMINI_API_KEY",
    "OPENROUTER_API_KEY",
)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Keep the developer's config file, .env and credentials out of tests."""
    monkeypatch.setenv("FLOWENGINE_CONFIG_FILE", str(tmp_path / "configuration.json"))
    monkeypatch.chdir(tmp_path)
    for name in CREDENTIAL_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield
    clear_trace_context()
