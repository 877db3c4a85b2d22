"""Notification channels alerts are dispatched to.

A channel reports delivery by returning True from ``send``. Returning False
or raising both count as a failed attempt; the dispatcher decides whether
to retry. ``flag`` names the alert column set once delivery is confirmed
(None for channels that keep no record).
"""

from __future__ import annotations

import asyncio
import html
import smtplib

from email.message import EmailMessage
from typing import TYPE_CHECKING

from mantle_indexer.alerts.models import Severity
from mantle_indexer.helpers.config import get_bool_env, get_int_env, get_optional_env
from mantle_indexer.helpers.constants import DEFAULT_DISPATCH_TIMEOUT
from mantle_indexer.helpers.http import create_http_client, post_json
from mantle_indexer.helpers.logging import get_logger


if TYPE_CHECKING:
    import httpx

    from mantle_indexer.alerts.models import Alert


logger = get_logger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"
DEFAULT_EXPLORER_URL = "https://mantlescan.xyz"

SEVERITY_ICONS = {
    Severity.INFO: "ℹ️",
    Severity.WARNING: "⚠️",
    Severity.CRITICAL: "🚨",
}


class NotificationChannel:
    """Base class for channels."""

    name = "channel"
    flag: str | None = None

    async def send(self, alert: Alert) -> bool:
        """Deliver one alert; True once the receiver confirmed it."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release resources held by the channel."""


class LogChannel(NotificationChannel):
    """Writes alerts to the application log. Always available, never flagged."""

    name = "log"

    async def send(self, alert: Alert) -> bool:
        log = logger.warning if alert.severity == Severity.CRITICAL else logger.info
        log("[%s] %s: %s", alert.severity.value.upper(), alert.title, alert.message)
        return True


def _link(explorer_url: str | None, kind: str, value: str) -> str:
    escaped = html.escape(value)
    if not explorer_url:
        return f"<code>{escaped}</code>"
    return f'<a href="{explorer_url}/{kind}/{escaped}">{escaped}</a>'


def format_telegram_message(alert: Alert, explorer_url: str | None = None) -> str:
    """Render an alert as Telegram HTML.

    Every interpolated value is escaped; addresses and hashes link to the
    block explorer when one is configured.
    """
    icon = SEVERITY_ICONS.get(alert.severity, "")
    lines = [
        f"{icon} <b>{html.escape(alert.title)}</b>",
        f"<b>Severity:</b> {alert.severity.value}",
        f"<b>Type:</b> {alert.alert_type.value}",
        "",
        html.escape(alert.message),
    ]
    if alert.block_number is not None:
        lines.append(f"<b>Block:</b> {alert.block_number}")
    if alert.address:
        lines.append(f"<b>Address:</b> {_link(explorer_url, 'address', alert.address)}")
    if alert.tx_hash:
        lines.append(f"<b>Tx:</b> {_link(explorer_url, 'tx', alert.tx_hash)}")
    lines.append(f"<i>{alert.created_at.strftime('%Y-%m-%d %H:%M:%S')} UTC</i>")
    return "\n".join(lines)


class TelegramChannel(NotificationChannel):
    """Telegram Bot API ``sendMessage``."""

    name = "telegram"
    flag = "telegram_sent"

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        *,
        explorer_url: str | None = DEFAULT_EXPLORER_URL,
        timeout: float = DEFAULT_DISPATCH_TIMEOUT,
        client: httpx.AsyncClient | None = None,
        api_url: str = TELEGRAM_API_URL,
    ) -> None:
        """Initialize the channel.

        Args:
            bot_token: Bot API token
            chat_id: Target chat or channel id
            explorer_url: Base URL for address and transaction links
            timeout: Request timeout in seconds
            client: Shared HTTP client; one is created when omitted
            api_url: Bot API base URL
        """
        if not bot_token or not chat_id:
            msg = "Telegram bot token and chat id are required"
            raise ValueError(msg)
        self.url = f"{api_url}/bot{bot_token}/sendMessage"
        self.chat_id = chat_id
        self.explorer_url = explorer_url
        self._owns_client = client is None
        self.client = client or create_http_client(timeout=timeout)

    async def send(self, alert: Alert) -> bool:
        payload = {
            "chat_id": self.chat_id,
            "text": format_telegram_message(alert, self.explorer_url),
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        data = await post_json(self.client, self.url, payload)
        if not data.get("ok"):
            logger.warning("Telegram rejected alert %s: %s", alert.id, data)
            return False
        return True

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()


class EmailChannel(NotificationChannel):
    """Plain-text email over SMTP.

    smtplib is blocking, so the exchange runs in a worker thread.
    """

    name = "email"
    flag = "email_sent"

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        recipients: list[str],
        *,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout: float = DEFAULT_DISPATCH_TIMEOUT,
    ) -> None:
        if not recipients:
            msg = "At least one email recipient is required"
            raise ValueError(msg)
        self.host = host
        self.port = port
        self.sender = sender
        self.recipients = recipients
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def build_message(self, alert: Alert) -> EmailMessage:
        """Compose the email for an alert."""
        message = EmailMessage()
        message["Subject"] = f"[{alert.severity.value.upper()}] {alert.title}"
        message["From"] = self.sender
        message["To"] = ", ".join(self.recipients)

        body = [alert.message, ""]
        if alert.block_number is not None:
            body.append(f"Block: {alert.block_number}")
        if alert.address:
            body.append(f"Address: {alert.address}")
        if alert.tx_hash:
            body.append(f"Transaction: {alert.tx_hash}")
        body.append(f"Alert id: {alert.id}")
        message.set_content("\n".join(body))
        return message

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username and self.password:
                smtp.login(self.username, self.password)
            smtp.send_message(message)

    async def send(self, alert: Alert) -> bool:
        await asyncio.to_thread(self._deliver, self.build_message(alert))
        return True


def build_channels_from_env(
    timeout: float = DEFAULT_DISPATCH_TIMEOUT,
) -> list[NotificationChannel]:
    """Channels configured in the environment, plus the log channel.

    Telegram needs ``TELEGRAM_BOT_TOKEN`` and ``TELEGRAM_CHAT_ID``; email needs
    ``SMTP_HOST`` and ``ALERT_EMAIL_TO`` (comma separated).
    """
    channels: list[NotificationChannel] = [LogChannel()]

    bot_token = get_optional_env("TELEGRAM_BOT_TOKEN")
    chat_id = get_optional_env("TELEGRAM_CHAT_ID")
    if bot_token and chat_id:
        channels.append(
            TelegramChannel(
                bot_token,
                chat_id,
                explorer_url=get_optional_env("EXPLORER_URL", DEFAULT_EXPLORER_URL),
                timeout=timeout,
            )
        )

    smtp_host = get_optional_env("SMTP_HOST")
    raw_recipients = get_optional_env("ALERT_EMAIL_TO") or ""
    recipients = [r.strip() for r in raw_recipients.split(",") if r.strip()]
    if smtp_host and recipients:
        channels.append(
            EmailChannel(
                smtp_host,
                get_int_env("SMTP_PORT", 587),
                get_optional_env("ALERT_EMAIL_FROM") or "indexer@localhost",
                recipients,
                username=get_optional_env("SMTP_USER"),
                password=get_optional_env("SMTP_PASSWORD"),
                use_tls=get_bool_env("SMTP_USE_TLS", default=True),
                timeout=timeout,
            )
        )

    logger.info("Notification channels: %s", ", ".join(c.name for c in channels))
    return channels


__all__ = [
    "EmailChannel",
    "LogChannel",
    "NotificationChannel",
    "TelegramChannel",
    "build_channels_from_env",
    "format_telegram_message",
]
