"""
Fans incident lifecycle events out to a monitor's notification channels.

`dispatch` never blocks the caller: each delivery runs as its own task and
delivery failures end in the log.
"""
import asyncio
import logging
from typing import Optional

from uptimeguard.config import Settings, get_settings
from uptimeguard.errors import NotifierDeliveryFailure
from uptimeguard.notifications.channels import (
    DiscordSender,
    EmailSender,
    Sender,
    SlackSender,
    TelegramSender,
    WebhookSender,
)
from uptimeguard.schemas import (
    Incident,
    IncidentEvent,
    Monitor,
    NotificationChannel,
    NotificationType,
)

logger = logging.getLogger("uptimeguard.notifications")


def default_senders(settings: Settings) -> dict[NotificationType, Sender]:
    # PUSH, SMS and CALL depend on a provider and must be registered by the host.
    return {
        NotificationType.EMAIL: EmailSender(settings),
        NotificationType.WEBHOOK: WebhookSender(),
        NotificationType.SLACK: SlackSender(),
        NotificationType.DISCORD: DiscordSender(),
        NotificationType.TELEGRAM: TelegramSender(settings),
    }


class NotificationDispatcher:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        senders: Optional[dict[NotificationType, Sender]] = None,
    ) -> None:
        settings = settings or get_settings()
        self._senders: dict[NotificationType, Sender] = (
            dict(senders) if senders is not None else default_senders(settings)
        )
        self._tasks: set[asyncio.Task] = set()

    def register(self, channel_type: NotificationType, sender: Sender) -> None:
        self._senders[channel_type] = sender

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(self, monitor: Monitor, incident: Incident, event: IncidentEvent) -> None:
        channels = [c for c in monitor.notifications if c.enabled]
        if not channels:
            logger.debug(f"No notification channels for {monitor.name}; {event.value} not sent")
            return

        loop = asyncio.get_running_loop()
        for channel in channels:
            sender = self._senders.get(channel.type)
            if sender is None:
                logger.warning(
                    f"No sender registered for {channel.type.value} channel '{channel.name}'"
                )
                continue
            task = loop.create_task(self._deliver(sender, channel, monitor, incident, event))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for outstanding deliveries."""
        if self._tasks:
            await asyncio.wait(set(self._tasks), timeout=timeout)

    async def _deliver(
        self,
        sender: Sender,
        channel: NotificationChannel,
        monitor: Monitor,
        incident: Incident,
        event: IncidentEvent,
    ) -> None:
        try:
            await sender.send(channel, monitor, incident, event)
        except NotifierDeliveryFailure as e:
            logger.error(
                f"Failed to deliver {event.value} for {monitor.name} "
                f"via {channel.type.value} '{channel.name}': {e}"
            )
        except Exception as e:
            logger.error(
                f"Unexpected error delivering {event.value} for {monitor.name} "
                f"via {channel.type.value} '{channel.name}': {e}",
                exc_info=True,
            )
        else:
            logger.info(
                f"Sent {event.value} for {monitor.name} via {channel.type.value} '{channel.name}'"
            )
