"""
Delivery senders for the built-in notification channel types.

Every sender raises NotifierDeliveryFailure when the message could not be
delivered; the dispatcher logs it and moves on.
"""
import logging
from datetime import datetime, timedelta, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, Protocol

import aiosmtplib
import httpx

from uptimeguard.config import Settings
from uptimeguard.errors import NotifierDeliveryFailure
from uptimeguard.schemas import Incident, IncidentEvent, Monitor, NotificationChannel

logger = logging.getLogger("uptimeguard.notifications")

SEND_TIMEOUT = 10  # seconds


def format_duration(delta: timedelta) -> str:
    """Render a span with its two largest units, e.g. "2h 30m" or "3d"."""
    seconds = max(0, int(delta.total_seconds()))
    days, seconds = divmod(seconds, 86400)
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)
    if days:
        return f"{days}d {hours}h" if hours else f"{days}d"
    if hours:
        return f"{hours}h {minutes}m" if minutes else f"{hours}h"
    if minutes:
        return f"{minutes}m"
    return f"{seconds}s"


class Sender(Protocol):
    async def send(
        self,
        channel: NotificationChannel,
        monitor: Monitor,
        incident: Incident,
        event: IncidentEvent,
    ) -> None:
        ...


def subject_for(monitor: Monitor, event: IncidentEvent) -> str:
    if event == IncidentEvent.OPENED:
        return f"[UptimeGuard] {monitor.name} is DOWN"
    if event == IncidentEvent.REMINDER:
        return f"[UptimeGuard] {monitor.name} is still DOWN"
    return f"[UptimeGuard] {monitor.name} is back UP"


def text_for(monitor: Monitor, incident: Incident, event: IncidentEvent) -> str:
    now = datetime.now(timezone.utc)
    if event == IncidentEvent.CLOSED and incident.end_time is not None:
        return (
            f"Your monitor '{monitor.name}' has recovered.\n\n"
            f"Target: {monitor.url}\n"
            f"Downtime: {format_duration(incident.end_time - incident.start_time)}\n"
            f"Recovered at: {incident.end_time.strftime('%Y-%m-%d %H:%M:%S UTC')}"
        )
    lead = "is currently down" if event == IncidentEvent.OPENED else "is still down"
    return (
        f"Your monitor '{monitor.name}' {lead}.\n\n"
        f"Target: {monitor.url}\n"
        f"Down since: {incident.start_time.strftime('%Y-%m-%d %H:%M:%S UTC')} "
        f"({format_duration(now - incident.start_time)})\n\n"
        f"We'll notify you when it recovers."
    )


def payload_for(monitor: Monitor, incident: Incident, event: IncidentEvent) -> dict:
    return {
        "event": event.value,
        "monitor": {
            "id": monitor.id,
            "name": monitor.name,
            "url": monitor.url,
            "type": monitor.type.value,
            "tags": monitor.tags,
        },
        "incident": incident.model_dump(mode="json"),
        "message": text_for(monitor, incident, event),
    }


def _required(channel: NotificationChannel, key: str) -> str:
    value = channel.config.get(key)
    if not value:
        raise NotifierDeliveryFailure(
            f"{channel.type.value} channel '{channel.name}' is missing '{key}'"
        )
    return value


async def _post_json(url: str, payload: dict, headers: Optional[dict] = None) -> None:
    try:
        async with httpx.AsyncClient(timeout=httpx.Timeout(SEND_TIMEOUT)) as client:
            response = await client.post(url, json=payload, headers=headers)
            response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise NotifierDeliveryFailure(f"Endpoint answered {e.response.status_code}") from e
    except httpx.HTTPError as e:
        raise NotifierDeliveryFailure(f"Request failed: {str(e)[:200]}") from e


class EmailSender:
    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    async def send(self, channel, monitor, incident, event) -> None:
        to = _required(channel, "to")
        text_body = text_for(monitor, incident, event)

        # Log the alert (actual SMTP sending requires configured server)
        logger.info(f"ALERT -> {to}: {subject_for(monitor, event)}")
        if not (self._settings.smtp_username and self._settings.smtp_password):
            return

        color = "#10b981" if event == IncidentEvent.CLOSED else "#ef4444"
        rows = "".join(
            f'<tr><td style="padding: 8px 0; color: #6b7280; font-size: 14px;">{label}</td>'
            f'<td style="padding: 8px 0; font-size: 14px;">{value}</td></tr>'
            for label, value in _summary_rows(monitor, incident)
        )
        html_body = f"""
        <div style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif; max-width: 600px; margin: 0 auto;">
            <div style="background: {color}; color: white; padding: 20px 24px; border-radius: 12px 12px 0 0;">
                <h2 style="margin: 0; font-size: 18px;">{subject_for(monitor, event)}</h2>
            </div>
            <div style="background: white; padding: 24px; border: 1px solid #e5e7eb; border-top: none; border-radius: 0 0 12px 12px;">
                <table style="width: 100%; border-collapse: collapse;">{rows}</table>
            </div>
        </div>
        """

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject_for(monitor, event)
        msg["From"] = self._settings.smtp_from_email
        msg["To"] = to
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        try:
            await aiosmtplib.send(
                msg,
                hostname=self._settings.smtp_host,
                port=self._settings.smtp_port,
                username=self._settings.smtp_username,
                password=self._settings.smtp_password,
                use_tls=self._settings.smtp_use_tls,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            raise NotifierDeliveryFailure(f"SMTP delivery to {to} failed: {e}") from e


def _summary_rows(monitor: Monitor, incident: Incident) -> list[tuple[str, str]]:
    rows = [
        ("Target", monitor.url),
        ("Down since", incident.start_time.strftime("%Y-%m-%d %H:%M:%S UTC")),
    ]
    if incident.end_time is not None:
        rows.append(("Downtime", format_duration(incident.end_time - incident.start_time)))
    return rows


class WebhookSender:
    async def send(self, channel, monitor, incident, event) -> None:
        url = _required(channel, "url")
        headers = {k[len("header:"):]: v for k, v in channel.config.items() if k.startswith("header:")}
        await _post_json(url, payload_for(monitor, incident, event), headers or None)


class SlackSender:
    async def send(self, channel, monitor, incident, event) -> None:
        url = _required(channel, "webhook_url")
        text = f"*{subject_for(monitor, event)}*\n{text_for(monitor, incident, event)}"
        await _post_json(url, {"text": text})


class DiscordSender:
    async def send(self, channel, monitor, incident, event) -> None:
        url = _required(channel, "webhook_url")
        text = f"**{subject_for(monitor, event)}**\n{text_for(monitor, incident, event)}"
        await _post_json(url, {"content": text[:2000]})


class TelegramSender:
    API_URL = "https://api.telegram.org/bot{token}/sendMessage"

    def __init__(self, settings: Settings) -> None:
        self._default_token = settings.telegram_bot_token

    async def send(self, channel, monitor, incident, event) -> None:
        chat_id = _required(channel, "chat_id")
        token = channel.config.get("bot_token") or self._default_token
        if not token:
            raise NotifierDeliveryFailure(f"Telegram channel '{channel.name}' has no bot token")
        text = f"{subject_for(monitor, event)}\n\n{text_for(monitor, incident, event)}"
        await _post_json(self.API_URL.format(token=token), {"chat_id": chat_id, "text": text})
