"""Alert notification channels and best-effort delivery."""

import asyncio
from typing import Dict, Iterable, List, Optional, Set

import httpx
import structlog

from .collaborators import NotificationTransport
from .config import InfraWatchConfig
from .messaging import MessageBusClient
from .models import Alert, AlertSeverity, ChannelType, NotificationChannel

logger = structlog.get_logger(__name__)


def default_channels(config: InfraWatchConfig) -> List[NotificationChannel]:
    """Email and webhook channels; each is enabled only if it has an address."""
    return [
        NotificationChannel(
            id="email-ops",
            name="Operations email",
            type=ChannelType.EMAIL,
            config={"to": config.alert_email},
            enabled=bool(config.alert_email),
            severities=[AlertSeverity.HIGH, AlertSeverity.CRITICAL],
        ),
        NotificationChannel(
            id="webhook-ops",
            name="Operations webhook",
            type=ChannelType.WEBHOOK,
            config={"url": config.alert_webhook_url, "token": config.alert_webhook_token},
            enabled=bool(config.alert_webhook_url),
            severities=[AlertSeverity.MEDIUM, AlertSeverity.HIGH, AlertSeverity.CRITICAL],
        ),
    ]


class MessageBusTransport:
    """Hands email notifications to the mailer over NATS."""

    def __init__(self, message_bus: MessageBusClient, subject: str = "infra.notify.email"):
        self.message_bus = message_bus
        self.subject = subject

    async def send(self, channel: NotificationChannel, alert: Alert) -> None:
        await self.message_bus.publish(
            self.subject,
            {
                "to": channel.config.get("to"),
                "subject": f"[{alert.severity.value}] {alert.name}",
                "body": alert.description,
                "alert": alert.model_dump(mode="json"),
            },
        )
        logger.info("Published email notification", subject=self.subject, alert_id=alert.id)


class WebhookTransport:
    """POSTs the alert as JSON to the channel URL."""

    def __init__(self, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.timeout = timeout
        self._client = client

    async def send(self, channel: NotificationChannel, alert: Alert) -> None:
        headers = {"Content-Type": "application/json"}
        token = channel.config.get("token")
        if token:
            headers["Authorization"] = f"Bearer {token}"
        payload = {"type": "alert", "alert": alert.model_dump(mode="json")}

        if self._client is not None:
            response = await self._client.post(channel.config["url"], json=payload, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(channel.config["url"], json=payload, headers=headers)
        response.raise_for_status()
        logger.info("Webhook notification delivered", alert_id=alert.id, status_code=response.status_code)


class NotificationDispatcher:
    """Selects channels for a new alert and delivers to each of them.

    Delivery is best effort: every send is bounded by ``timeout`` and any
    failure is logged, never raised, so alert state is never affected.
    """

    def __init__(
        self,
        channels: Iterable[NotificationChannel],
        transports: Dict[ChannelType, NotificationTransport],
        timeout: float = 10.0,
    ):
        self.channels = list(channels)
        self.transports = transports
        self.timeout = timeout
        self._pending: Set[asyncio.Task] = set()

    def select_channels(self, alert: Alert) -> List[NotificationChannel]:
        return [c for c in self.channels if c.accepts(alert) and c.type in self.transports]

    async def dispatch(self, alert: Alert) -> Dict[str, bool]:
        """Send ``alert`` to every matching channel; returns success per channel id."""
        channels = self.select_channels(alert)
        if not channels:
            logger.debug("No notification channel for alert", alert_id=alert.id, severity=alert.severity.value)
            return {}

        results = await asyncio.gather(
            *(self._send(channel, alert) for channel in channels)
        )
        return {channel.id: ok for channel, ok in zip(channels, results)}

    async def _send(self, channel: NotificationChannel, alert: Alert) -> bool:
        transport = self.transports[channel.type]
        try:
            await asyncio.wait_for(transport.send(channel, alert), self.timeout)
            return True
        except asyncio.TimeoutError:
            logger.error(
                "Notification delivery timed out",
                channel=channel.id,
                alert_id=alert.id,
                timeout=self.timeout,
            )
        except Exception as e:
            logger.error(
                "Notification delivery failed",
                channel=channel.id,
                alert_id=alert.id,
                error=str(e),
            )
        return False

    def notify(self, alert: Alert) -> None:
        """AlertStore listener: deliver without blocking the caller."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(self.dispatch(alert))
            return
        task = loop.create_task(self.dispatch(alert))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for deliveries still in flight."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
