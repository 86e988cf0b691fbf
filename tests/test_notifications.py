"""Tests for notification fan-out and the built-in senders."""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from uptimeguard.config import Settings
from uptimeguard.errors import NotifierDeliveryFailure
from uptimeguard.notifications import (
    DiscordSender,
    EmailSender,
    NotificationDispatcher,
    SlackSender,
    TelegramSender,
    WebhookSender,
)
from uptimeguard.notifications.channels import format_duration, subject_for, text_for
from uptimeguard.schemas import (
    Incident,
    IncidentEvent,
    Monitor,
    NotificationChannel,
    NotificationType,
)


START = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_monitor(*channels: NotificationChannel) -> Monitor:
    return Monitor(name="Shop", url="https://shop.example.com", notifications=list(channels))


def make_incident(monitor: Monitor, closed: bool = False) -> Incident:
    return Incident(
        monitor_id=monitor.id,
        start_time=START,
        end_time=START + timedelta(minutes=7) if closed else None,
        resolved=closed,
    )


def mock_http_client(MockClient, response=None, side_effect=None):
    mock_client_instance = AsyncMock()
    mock_client_instance.post = AsyncMock(return_value=response, side_effect=side_effect)
    mock_client_instance.__aenter__ = AsyncMock(return_value=mock_client_instance)
    mock_client_instance.__aexit__ = AsyncMock(return_value=False)
    MockClient.return_value = mock_client_instance
    return mock_client_instance


# --- Dispatcher ---

@pytest.mark.asyncio
async def test_dispatch_fans_out_to_enabled_channels():
    webhook = NotificationChannel(type=NotificationType.WEBHOOK, name="ops", config={"url": "x"})
    slack = NotificationChannel(type=NotificationType.SLACK, name="team", config={}, enabled=False)
    monitor = make_monitor(webhook, slack)
    incident = make_incident(monitor)

    webhook_sender = AsyncMock()
    slack_sender = AsyncMock()
    dispatcher = NotificationDispatcher(
        Settings(_env_file=None),
        senders={NotificationType.WEBHOOK: webhook_sender, NotificationType.SLACK: slack_sender},
    )

    dispatcher.dispatch(monitor, incident, IncidentEvent.OPENED)
    await dispatcher.drain()

    webhook_sender.send.assert_awaited_once_with(webhook, monitor, incident, IncidentEvent.OPENED)
    slack_sender.send.assert_not_called()
    assert dispatcher.pending == 0


@pytest.mark.asyncio
async def test_dispatch_returns_before_delivery():
    channel = NotificationChannel(type=NotificationType.WEBHOOK, name="ops")
    monitor = make_monitor(channel)
    sender = AsyncMock()
    dispatcher = NotificationDispatcher(
        Settings(_env_file=None), senders={NotificationType.WEBHOOK: sender}
    )

    dispatcher.dispatch(monitor, make_incident(monitor), IncidentEvent.OPENED)
    assert dispatcher.pending == 1
    sender.send.assert_not_called()

    await dispatcher.drain()
    sender.send.assert_awaited_once()


@pytest.mark.asyncio
async def test_delivery_failure_is_swallowed():
    failing = NotificationChannel(type=NotificationType.WEBHOOK, name="broken")
    working = NotificationChannel(type=NotificationType.SLACK, name="team")
    monitor = make_monitor(failing, working)

    broken_sender = AsyncMock()
    broken_sender.send.side_effect = NotifierDeliveryFailure("Endpoint answered 500")
    working_sender = AsyncMock()
    dispatcher = NotificationDispatcher(
        Settings(_env_file=None),
        senders={NotificationType.WEBHOOK: broken_sender, NotificationType.SLACK: working_sender},
    )

    dispatcher.dispatch(monitor, make_incident(monitor), IncidentEvent.CLOSED)
    await dispatcher.drain()

    working_sender.send.assert_awaited_once()


@pytest.mark.asyncio
async def test_register_custom_sender_for_push():
    channel = NotificationChannel(type=NotificationType.PUSH, name="phone")
    monitor = make_monitor(channel)
    dispatcher = NotificationDispatcher(Settings(_env_file=None))

    # no built-in PUSH sender: dropped with a warning
    dispatcher.dispatch(monitor, make_incident(monitor), IncidentEvent.OPENED)
    assert dispatcher.pending == 0

    sender = AsyncMock()
    dispatcher.register(NotificationType.PUSH, sender)
    dispatcher.dispatch(monitor, make_incident(monitor), IncidentEvent.OPENED)
    await dispatcher.drain()
    sender.send.assert_awaited_once()


# --- Message formatting ---

def test_subject_per_event():
    monitor = make_monitor()
    assert subject_for(monitor, IncidentEvent.OPENED) == "[UptimeGuard] Shop is DOWN"
    assert subject_for(monitor, IncidentEvent.REMINDER) == "[UptimeGuard] Shop is still DOWN"
    assert subject_for(monitor, IncidentEvent.CLOSED) == "[UptimeGuard] Shop is back UP"


def test_format_duration():
    assert format_duration(timedelta(seconds=45)) == "45s"
    assert format_duration(timedelta(minutes=5)) == "5m"
    assert format_duration(timedelta(hours=2, minutes=30)) == "2h 30m"
    assert format_duration(timedelta(hours=3)) == "3h"
    assert format_duration(timedelta(days=1)) == "1d"
    assert format_duration(timedelta(days=2, hours=4, minutes=10)) == "2d 4h"


def test_recovery_text_includes_downtime():
    monitor = make_monitor()
    text = text_for(monitor, make_incident(monitor, closed=True), IncidentEvent.CLOSED)
    assert "has recovered" in text
    assert "Downtime: 7m" in text


# --- Senders ---

@pytest.mark.asyncio
async def test_webhook_sender_posts_payload():
    channel = NotificationChannel(
        type=NotificationType.WEBHOOK,
        name="ops",
        config={"url": "https://hooks.example.com/uptime", "header:X-Token": "abc"},
    )
    monitor = make_monitor(channel)
    incident = make_incident(monitor)
    response = MagicMock()
    response.raise_for_status = MagicMock()

    with patch("uptimeguard.notifications.channels.httpx.AsyncClient") as MockClient:
        client = mock_http_client(MockClient, response=response)
        await WebhookSender().send(channel, monitor, incident, IncidentEvent.OPENED)

    args, kwargs = client.post.call_args
    assert args == ("https://hooks.example.com/uptime",)
    assert kwargs["json"]["event"] == "opened"
    assert kwargs["json"]["monitor"]["id"] == monitor.id
    assert kwargs["json"]["incident"]["id"] == incident.id
    assert kwargs["headers"] == {"X-Token": "abc"}


@pytest.mark.asyncio
async def test_webhook_sender_requires_url():
    channel = NotificationChannel(type=NotificationType.WEBHOOK, name="ops")
    monitor = make_monitor(channel)
    with pytest.raises(NotifierDeliveryFailure):
        await WebhookSender().send(channel, monitor, make_incident(monitor), IncidentEvent.OPENED)


@pytest.mark.asyncio
async def test_webhook_sender_maps_http_errors():
    channel = NotificationChannel(
        type=NotificationType.WEBHOOK, name="ops", config={"url": "https://hooks.example.com"}
    )
    monitor = make_monitor(channel)
    with patch("uptimeguard.notifications.channels.httpx.AsyncClient") as MockClient:
        mock_http_client(MockClient, side_effect=httpx.ConnectError("refused"))
        with pytest.raises(NotifierDeliveryFailure):
            await WebhookSender().send(channel, monitor, make_incident(monitor), IncidentEvent.OPENED)


@pytest.mark.asyncio
async def test_slack_and_discord_payloads():
    slack = NotificationChannel(
        type=NotificationType.SLACK, name="s", config={"webhook_url": "https://slack.example"}
    )
    discord = NotificationChannel(
        type=NotificationType.DISCORD, name="d", config={"webhook_url": "https://discord.example"}
    )
    monitor = make_monitor(slack, discord)
    incident = make_incident(monitor)

    with patch("uptimeguard.notifications.channels.httpx.AsyncClient") as MockClient:
        client = mock_http_client(MockClient, response=MagicMock())
        await SlackSender().send(slack, monitor, incident, IncidentEvent.OPENED)
        assert "Shop is DOWN" in client.post.call_args.kwargs["json"]["text"]

        await DiscordSender().send(discord, monitor, incident, IncidentEvent.OPENED)
        assert "Shop is DOWN" in client.post.call_args.kwargs["json"]["content"]


@pytest.mark.asyncio
async def test_telegram_sender_uses_configured_token():
    channel = NotificationChannel(
        type=NotificationType.TELEGRAM, name="t", config={"chat_id": "42"}
    )
    monitor = make_monitor(channel)
    settings = Settings(_env_file=None, telegram_bot_token="123:abc")

    with patch("uptimeguard.notifications.channels.httpx.AsyncClient") as MockClient:
        client = mock_http_client(MockClient, response=MagicMock())
        await TelegramSender(settings).send(
            channel, monitor, make_incident(monitor), IncidentEvent.REMINDER
        )

    args, kwargs = client.post.call_args
    assert args == ("https://api.telegram.org/bot123:abc/sendMessage",)
    assert kwargs["json"]["chat_id"] == "42"


@pytest.mark.asyncio
async def test_telegram_sender_without_token():
    channel = NotificationChannel(type=NotificationType.TELEGRAM, name="t", config={"chat_id": "1"})
    monitor = make_monitor(channel)
    with pytest.raises(NotifierDeliveryFailure):
        await TelegramSender(Settings(_env_file=None, telegram_bot_token="")).send(
            channel, monitor, make_incident(monitor), IncidentEvent.OPENED
        )


@pytest.mark.asyncio
async def test_email_sender_skips_smtp_without_credentials():
    channel = NotificationChannel(
        type=NotificationType.EMAIL, name="mail", config={"to": "ops@example.com"}
    )
    monitor = make_monitor(channel)
    with patch("uptimeguard.notifications.channels.aiosmtplib.send", AsyncMock()) as mock_send:
        await EmailSender(Settings(_env_file=None, smtp_username="", smtp_password="")).send(
            channel, monitor, make_incident(monitor), IncidentEvent.OPENED
        )
    mock_send.assert_not_called()


@pytest.mark.asyncio
async def test_email_sender_sends_multipart_message():
    channel = NotificationChannel(
        type=NotificationType.EMAIL, name="mail", config={"to": "ops@example.com"}
    )
    monitor = make_monitor(channel)
    settings = Settings(
        _env_file=None,
        smtp_host="smtp.example.com",
        smtp_username="alerts",
        smtp_password="secret",
    )
    with patch("uptimeguard.notifications.channels.aiosmtplib.send", AsyncMock()) as mock_send:
        await EmailSender(settings).send(
            channel, monitor, make_incident(monitor, closed=True), IncidentEvent.CLOSED
        )

    message = mock_send.call_args.args[0]
    assert message["To"] == "ops@example.com"
    assert message["Subject"] == "[UptimeGuard] Shop is back UP"
    assert mock_send.call_args.kwargs["hostname"] == "smtp.example.com"
    assert len(message.get_payload()) == 2
