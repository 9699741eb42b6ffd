"""NATS message bus client used for notifications and request/reply handlers."""

import json
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import nats
from nats.aio.client import Client as NATSClient
import structlog

from .config import InfraWatchConfig

logger = structlog.get_logger(__name__)

ReplyHandler = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


def _encode(message: Union[Dict[str, Any], str, bytes]) -> bytes:
    if isinstance(message, dict):
        return json.dumps(message, default=str).encode()
    if isinstance(message, str):
        return message.encode()
    return message


class MessageBusClient:
    """Thin wrapper over a NATS connection."""

    def __init__(self, config: Optional[InfraWatchConfig] = None):
        self.config = config or InfraWatchConfig()
        self.nc: Optional[NATSClient] = None
        self._subscriptions: Dict[str, Any] = {}

    @property
    def is_connected(self) -> bool:
        return self.nc is not None and self.nc.is_connected

    async def connect(self) -> None:
        try:
            self.nc = await nats.connect(
                servers=[self.config.nats_url],
                max_reconnect_attempts=self.config.nats_max_reconnect_attempts,
                reconnect_time_wait=2,
                error_cb=self._error_callback,
                disconnected_cb=self._disconnected_callback,
                reconnected_cb=self._reconnected_callback,
            )
            logger.info("Connected to NATS", url=self.config.nats_url)
        except Exception as e:
            logger.error("Failed to connect to NATS", error=str(e))
            raise

    async def disconnect(self) -> None:
        if self.nc:
            await self.nc.drain()
            self.nc = None
            self._subscriptions.clear()
            logger.info("Disconnected from NATS")

    async def publish(
        self,
        subject: str,
        message: Union[Dict[str, Any], str, bytes],
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        if not self.nc:
            raise RuntimeError("Not connected to NATS")

        payload = _encode(message)
        await self.nc.publish(subject, payload, headers=headers)
        logger.debug("Published message", subject=subject, size=len(payload))

    async def reply_handler(self, subject: str, handler: ReplyHandler) -> None:
        """Answer requests on ``subject`` with the handler's result."""
        if not self.nc:
            raise RuntimeError("Not connected to NATS")

        async def reply_callback(msg):
            try:
                request_data = json.loads(msg.data.decode()) if msg.data else {}
                response_data = await handler(request_data)
            except Exception as e:
                logger.error("Error handling request", subject=subject, error=str(e))
                response_data = {"error": str(e)}
            await msg.respond(_encode(response_data))

        sub = await self.nc.subscribe(subject, cb=reply_callback)
        self._subscriptions[subject] = sub
        logger.info("Registered reply handler", subject=subject)

    async def _error_callback(self, e: Exception) -> None:
        logger.error("NATS error", error=str(e))

    async def _disconnected_callback(self) -> None:
        logger.warning("Disconnected from NATS")

    async def _reconnected_callback(self) -> None:
        logger.info("Reconnected to NATS")
