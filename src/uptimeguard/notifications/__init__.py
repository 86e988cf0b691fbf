from uptimeguard.notifications.channels import (
    DiscordSender,
    EmailSender,
    Sender,
    SlackSender,
    TelegramSender,
    WebhookSender,
)
from uptimeguard.notifications.dispatcher import NotificationDispatcher, default_senders

__all__ = [
    "NotificationDispatcher",
    "default_senders",
    "Sender",
    "EmailSender",
    "WebhookSender",
    "SlackSender",
    "DiscordSender",
    "TelegramSender",
]
