"""
Messaging handlers - SMS, email, Slack, Discord and Telegram.

Each service has a small internal client that makes blocking ``httpx``
calls; the handler runs it with ``asyncio.to_thread``. Credentials come
from the node config first and the environment (or ``.env``) second.

Environment variables:
- TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_FROM_NUMBER
- GOOGLE_ACCESS_TOKEN (Gmail), RESEND_API_KEY, EMAIL_FROM
- SLACK_BOT_TOKEN
- DISCORD_BOT_TOKEN, DISCORD_WEBHOOK_URL
- TELEGRAM_BOT_TOKEN
"""

import asyncio
import base64
import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Literal

import httpx
import resend
from pydantic import Field, field_validator

from flowengine.config import get_credential
from flowengine.errors import ConfigurationError, NodeExecutionError
from flowengine.graph.context import ExecutionContext
from flowengine.handlers.base import (
    HandlerConfig,
    NodeHandler,
    raise_for_api_error,
    require_credential,
)
from flowengine.schemas.workflow import Node

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01/Accounts"
GMAIL_SEND_URL = "https://gmail.googleapis.com/gmail/v1/users/me/messages/send"
SLACK_API_BASE = "https://slack.com/api"
DISCORD_API_BASE = "https://discord.com/api/v10"
TELEGRAM_API_BASE = "https://api.telegram.org/bot"


# === SMS (Twilio) ===


class SendSMSConfig(HandlerConfig):
    account_sid: str | None = None
    auth_token: str | None = None
    to: str = Field(min_length=1)
    from_: str | None = Field(default=None, alias="from")
    body: str = Field(min_length=1)


class _TwilioClient:
    """Internal client wrapping the Twilio Messages API."""

    def __init__(self, account_sid: str, auth_token: str):
        self._account_sid = account_sid
        self._auth_token = auth_token

    def send_sms(self, to: str, from_number: str, body: str) -> dict[str, Any]:
        response = httpx.post(
            f"{TWILIO_API_BASE}/{self._account_sid}/Messages.json",
            auth=(self._account_sid, self._auth_token),
            data={"To": to, "From": from_number, "Body": body},
            timeout=30.0,
        )
        raise_for_api_error(response, "Twilio")
        return response.json()


class SendSMSHandler(NodeHandler):
    config_model = SendSMSConfig

    async def execute(self, node: Node, context: ExecutionContext) -> Any:
        config = self.load_config(node, context)
        account_sid = require_credential(
            config.account_sid, "TWILIO_ACCOUNT_SID", node, "Twilio account SID"
        )
        auth_token = require_credential(
            config.auth_token, "TWILIO_AUTH_TOKEN", node, "Twilio auth token"
        )
        from_number = require_credential(
            config.from_, "TWILIO_FROM_NUMBER", node, "Twilio sender number"
        )

        client = _TwilioClient(account_sid, auth_token)
        data = await asyncio.to_thread(client.send_sms, config.to, from_number, config.body)
        return {
            "success": True,
            "sid": data.get("sid"),
            "status": data.get("status"),
            "to": config.to,
        }


# === EMAIL (Gmail / Resend) ===


class SendEmailConfig(HandlerConfig):
    to: list[str]
    subject: str = Field(min_length=1, max_length=998)
    body: str = Field(min_length=1)
    provider: Literal["gmail", "resend"] | None = None
    access_token: str | None = None
    api_key: str | None = None
    from_email: str | None = None
    cc: list[str] = Field(default_factory=list)
    bcc: list[str] = Field(default_factory=list)

    @field_validator("to", "cc", "bcc", mode="before")
    @classmethod
    def _normalize_recipients(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value


def _send_via_gmail(access_token: str, config: SendEmailConfig) -> dict[str, Any]:
    msg = MIMEMultipart("alternative")
    msg["To"] = ", ".join(config.to)
    msg["Subject"] = config.subject
    if config.from_email:
        msg["From"] = config.from_email
    if config.cc:
        msg["Cc"] = ", ".join(config.cc)
    if config.bcc:
        msg["Bcc"] = ", ".join(config.bcc)
    msg.attach(MIMEText(config.body, "html"))

    raw = base64.urlsafe_b64encode(msg.as_bytes()).decode("ascii")
    response = httpx.post(
        GMAIL_SEND_URL,
        headers={"Authorization": f"Bearer {access_token}"},
        json={"raw": raw},
        timeout=30.0,
    )
    raise_for_api_error(response, "Gmail")
    return {"provider": "gmail", "id": response.json().get("id", "")}


def _send_via_resend(api_key: str, config: SendEmailConfig) -> dict[str, Any]:
    resend.api_key = api_key
    payload: dict[str, Any] = {
        "from": config.from_email,
        "to": config.to,
        "subject": config.subject,
        "html": config.body,
    }
    if config.cc:
        payload["cc"] = config.cc
    if config.bcc:
        payload["bcc"] = config.bcc
    try:
        email = resend.Emails.send(payload)
    except resend.exceptions.ResendError as e:
        raise NodeExecutionError(f"Resend API error: {e}") from e
    return {"provider": "resend", "id": email.get("id", "")}


class SendEmailHandler(NodeHandler):
    """Sends an HTML email through Gmail (OAuth access token) or Resend (API key)."""

    config_model = SendEmailConfig

    async def execute(self, node: Node, context: ExecutionContext) -> Any:
        config = self.load_config(node, context)
        if not config.to:
            raise ConfigurationError("At least one recipient email is required", node_id=node.id)

        provider = config.provider
        if provider is None:
            has_gmail = config.access_token or get_credential("GOOGLE_ACCESS_TOKEN")
            provider = "gmail" if has_gmail else "resend"

        if provider == "gmail":
            token = require_credential(
                config.access_token, "GOOGLE_ACCESS_TOKEN", node, "Gmail access token"
            )
            sent = await asyncio.to_thread(_send_via_gmail, token, config)
        else:
            api_key = require_credential(config.api_key, "RESEND_API_KEY", node, "Resend API key")
            if not config.from_email:
                config.from_email = require_credential(None, "EMAIL_FROM", node, "Sender email")
            sent = await asyncio.to_thread(_send_via_resend, api_key, config)

        logger.info(f"Email sent via {sent['provider']} to {len(config.to)} recipient(s)")
        return {"success": True, **sent, "to": config.to, "subject": config.subject}


# === SLACK ===


class SlackConfig(HandlerConfig):
    access_token: str | None = None
    channel: str = Field(min_length=1)
    text: str = Field(min_length=1)
    username: str | None = None
    icon_emoji: str | None = None
    thread_ts: str | None = None
    blocks: list[dict[str, Any]] | None = None


class _SlackClient:
    """Internal client wrapping Slack Web API calls."""

    def __init__(self, token: str):
        self._token = token

    def post_message(self, payload: dict[str, Any]) -> dict[str, Any]:
        response = httpx.post(
            f"{SLACK_API_BASE}/chat.postMessage",
            headers={"Authorization": f"Bearer {self._token}"},
            json=payload,
            timeout=30.0,
        )
        raise_for_api_error(response, "Slack")
        data = response.json()
        # Slack reports most failures as HTTP 200 with ok=false
        if not data.get("ok"):
            raise NodeExecutionError(f"Slack API error: {data.get('error', 'unknown_error')}")
        return data


class SlackHandler(NodeHandler):
    config_model = SlackConfig

    async def execute(self, node: Node, context: ExecutionContext) -> Any:
        config = self.load_config(node, context)
        token = require_credential(config.access_token, "SLACK_BOT_TOKEN", node, "Slack bot token")

        payload: dict[str, Any] = {"channel": config.channel, "text": config.text}
        if config.username:
            payload["username"] = config.username
        if config.icon_emoji:
            payload["icon_emoji"] = config.icon_emoji
        if config.thread_ts:
            payload["thread_ts"] = config.thread_ts
        if config.blocks:
            payload["blocks"] = config.blocks

        data = await asyncio.to_thread(_SlackClient(token).post_message, payload)
        return {
            "messageId": data.get("ts"),
            "channel": data.get("channel"),
            "timestamp": data.get("ts"),
        }


# === DISCORD ===


class DiscordConfig(HandlerConfig):
    content: str = Field(min_length=1, max_length=2000)
    webhook_url: str | None = None
    channel_id: str | None = None
    api_key: str | None = None
    username: str | None = None


class _DiscordClient:
    """Internal client for Discord webhooks and bot channel messages."""

    def send_webhook(self, url: str, content: str, username: str | None) -> dict[str, Any]:
        payload: dict[str, Any] = {"content": content}
        if username:
            payload["username"] = username
        response = httpx.post(url, json=payload, timeout=30.0)
        raise_for_api_error(response, "Discord webhook")
        return {"success": True}

    def send_channel_message(self, token: str, channel_id: str, content: str) -> dict[str, Any]:
        response = httpx.post(
            f"{DISCORD_API_BASE}/channels/{channel_id}/messages",
            headers={"Authorization": f"Bot {token}"},
            json={"content": content},
            timeout=30.0,
        )
        raise_for_api_error(response, "Discord")
        data = response.json()
        return {"success": True, "messageId": data.get("id"), "channelId": channel_id}


class DiscordHandler(NodeHandler):
    """Posts through a webhook when one is configured, otherwise as a bot to a channel."""

    config_model = DiscordConfig

    async def execute(self, node: Node, context: ExecutionContext) -> Any:
        config = self.load_config(node, context)
        client = _DiscordClient()

        webhook_url = config.webhook_url or (
            None if config.channel_id else get_credential("DISCORD_WEBHOOK_URL")
        )
        if webhook_url:
            return await asyncio.to_thread(
                client.send_webhook, webhook_url, config.content, config.username
            )

        if not config.channel_id:
            raise ConfigurationError(
                "Discord node needs either a webhook URL or a channel ID", node_id=node.id
            )
        token = require_credential(config.api_key, "DISCORD_BOT_TOKEN", node, "Discord bot token")
        return await asyncio.to_thread(
            client.send_channel_message, token, config.channel_id, config.content
        )


# === TELEGRAM ===


class TelegramConfig(HandlerConfig):
    api_key: str | None = None
    chat_id: str = Field(min_length=1)
    text: str = Field(min_length=1, max_length=4096)
    parse_mode: Literal["HTML", "Markdown", "MarkdownV2"] | None = None
    disable_notification: bool = False

    @field_validator("chat_id", mode="before")
    @classmethod
    def _chat_id_as_text(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value


class _TelegramClient:
    """Internal client wrapping Telegram Bot API calls."""

    def __init__(self, bot_token: str):
        self._token = bot_token

    def send_message(
        self,
        chat_id: str,
        text: str,
        parse_mode: str | None = None,
        disable_notification: bool = False,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "disable_notification": disable_notification,
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode

        response = httpx.post(
            f"{TELEGRAM_API_BASE}{self._token}/sendMessage",
            json=payload,
            timeout=30.0,
        )
        if response.status_code == 401:
            raise NodeExecutionError("Invalid Telegram bot token")
        if response.status_code == 404:
            raise NodeExecutionError("Telegram chat not found")
        raise_for_api_error(response, "Telegram")
        return response.json()


class TelegramHandler(NodeHandler):
    config_model = TelegramConfig

    async def execute(self, node: Node, context: ExecutionContext) -> Any:
        config = self.load_config(node, context)
        token = require_credential(config.api_key, "TELEGRAM_BOT_TOKEN", node, "Telegram bot token")
        client = _TelegramClient(token)
        data = await asyncio.to_thread(
            client.send_message,
            config.chat_id,
            config.text,
            config.parse_mode,
            config.disable_notification,
        )
        message = data.get("result", {})
        return {
            "success": True,
            "messageId": message.get("message_id"),
            "chatId": config.chat_id,
        }
