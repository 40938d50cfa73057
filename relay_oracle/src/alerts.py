"""Alert channels: fire-and-forget operator notifications.

The pipeline and health monitor only call ``alert(message, severity)``.
Delivery must never block a cycle or raise into it: a webhook post runs as a
background task and a delivery failure is only logged.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum

import httpx

logger = logging.getLogger(__name__)


class Severity(Enum):
    """Alert severity, mapped onto logging levels."""

    INFO = logging.INFO
    WARNING = logging.WARNING
    CRITICAL = logging.CRITICAL


class AlertChannel:
    """Base alert channel that writes alerts to the log."""

    def alert(self, message: str, severity: Severity = Severity.WARNING) -> None:
        """Raise an alert.

        :param message: Human-readable description.
        :param severity: How urgent the alert is.
        """
        logger.log(severity.value, f"ALERT [{severity.name}] {message}")


class LoggingAlertChannel(AlertChannel):
    """Alerts go to the log only."""

    pass


class WebhookAlertChannel(AlertChannel):
    """Posts alerts as JSON to a webhook, in addition to logging them.

    :ivar url: Webhook URL.
    :ivar min_severity: Alerts below this are only logged.
    :ivar timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        url: str,
        min_severity: Severity = Severity.WARNING,
        timeout: float = 5.0,
        source: str = "relay-oracle",
    ) -> None:
        self.url = url
        self.min_severity = min_severity
        self.timeout = timeout
        self.source = source
        self._client: httpx.AsyncClient | None = None
        self._pending: set[asyncio.Task] = set()

    def alert(self, message: str, severity: Severity = Severity.WARNING) -> None:
        super().alert(message, severity)
        if severity.value < self.min_severity.value:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, webhook alert not sent")
            return
        task = loop.create_task(self._post(message, severity))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _post(self, message: str, severity: Severity) -> None:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        payload = {"source": self.source, "severity": severity.name, "message": message}
        try:
            response = await self._client.post(self.url, json=payload)
            if not response.is_success:
                logger.warning(
                    f"Alert webhook returned HTTP {response.status_code}: "
                    f"{response.text[:200]}"
                )
        except httpx.HTTPError as e:
            logger.warning(f"Alert webhook delivery failed: {e}")

    async def close(self) -> None:
        """Wait for in-flight alerts and close the HTTP client."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
