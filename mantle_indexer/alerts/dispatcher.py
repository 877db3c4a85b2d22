"""Asynchronous, retrying delivery of stored alerts to notification channels.

The evaluator enqueues alerts after they are stored; a single consumer task
sends each one through every channel whose flag is still unset. The send and
the flag update are retried separately, so a delivered alert is never re-sent
because its flag failed to store, and a row is never created twice. Alerts that exhaust their
retries stay in the table with the flag unset and are picked up again by
:meth:`AlertDispatcher.resume` on the next start.
"""

from __future__ import annotations

import asyncio

from typing import TYPE_CHECKING

from mantle_indexer.alerts.models import Severity
from mantle_indexer.helpers.constants import (
    DEFAULT_DISPATCH_MAX_RETRIES,
    DEFAULT_DISPATCH_RESUME_LIMIT,
    DEFAULT_DISPATCH_TIMEOUT,
    DISPATCH_QUEUE_SIZE,
    RETRY_BASE_DELAY,
    RETRY_MAX_DELAY,
)
from mantle_indexer.helpers.errors import DispatchError
from mantle_indexer.helpers.http import retry_with_backoff
from mantle_indexer.helpers.logging import get_logger


if TYPE_CHECKING:
    from collections.abc import Sequence

    from mantle_indexer.alerts.channels import NotificationChannel
    from mantle_indexer.alerts.models import Alert
    from mantle_indexer.alerts.repository import AlertRepository


logger = get_logger(__name__)


class AlertDispatcher:
    """Queue-driven sender for alerts."""

    def __init__(
        self,
        channels: Sequence[NotificationChannel],
        alerts: AlertRepository,
        *,
        min_severity: Severity = Severity.WARNING,
        timeout: float = DEFAULT_DISPATCH_TIMEOUT,
        max_retries: int = DEFAULT_DISPATCH_MAX_RETRIES,
        resume_limit: int = DEFAULT_DISPATCH_RESUME_LIMIT,
        retry_base_delay: float = RETRY_BASE_DELAY,
        retry_max_delay: float = RETRY_MAX_DELAY,
        queue_size: int = DISPATCH_QUEUE_SIZE,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            channels: Channels every alert is sent through
            alerts: Repository used to set dispatch flags
            min_severity: Alerts below this are stored but never sent
            timeout: Seconds to wait for one channel acknowledgement
            max_retries: Attempts per alert and channel
            resume_limit: Undispatched alerts re-enqueued by :meth:`resume`
            retry_base_delay: First backoff delay in seconds
            retry_max_delay: Backoff ceiling in seconds
            queue_size: Bound on queued alerts
        """
        self.channels = list(channels)
        self.alerts = alerts
        self.min_severity = min_severity
        self.timeout = timeout
        self.max_retries = max_retries
        self.resume_limit = resume_limit
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self.queue: asyncio.Queue[Alert] = asyncio.Queue(maxsize=queue_size)

        self.sent = 0
        self.failed = 0

    @property
    def flags(self) -> list[str]:
        """Dispatch flags of the configured channels."""
        return [channel.flag for channel in self.channels if channel.flag]

    def enqueue(self, alert: Alert) -> bool:
        """Queue an alert for delivery.

        Returns:
            False if the alert is below the dispatch threshold or the queue is
            full (it will be resumed from the store on the next start)
        """
        if not alert.severity.at_least(self.min_severity):
            return False
        try:
            self.queue.put_nowait(alert)
        except asyncio.QueueFull:
            logger.warning("Dispatch queue full, deferring alert %s", alert.id)
            return False
        return True

    async def resume(self) -> int:
        """Re-enqueue alerts left undispatched by a previous run.

        Returns:
            Number of alerts enqueued
        """
        pending = await self.alerts.list_undispatched(
            self.flags, self.min_severity, self.resume_limit
        )
        enqueued = sum(1 for alert in pending if self.enqueue(alert))
        if enqueued:
            logger.info("Resumed %d undispatched alerts", enqueued)
        return enqueued

    async def _deliver(self, channel: NotificationChannel, alert: Alert) -> None:
        async with asyncio.timeout(self.timeout):
            delivered = await channel.send(alert)
        if not delivered:
            msg = f"{channel.name} did not confirm alert {alert.id}"
            raise DispatchError(msg)

    async def dispatch(self, alert: Alert) -> bool:
        """Send one alert through every channel that has not confirmed it yet.

        Returns:
            True if every channel confirmed delivery
        """
        retry = retry_with_backoff(
            max_retries=self.max_retries,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
        )
        # Sending and flagging retry separately so a confirmed send is not repeated
        deliver = retry(self._deliver)
        mark_sent = retry(self.alerts.mark_sent)

        all_delivered = True
        for channel in self.channels:
            if channel.flag and getattr(alert, channel.flag, False):
                continue
            try:
                await deliver(channel, alert)
            except Exception as e:
                all_delivered = False
                self.failed += 1
                logger.error(
                    "Alert %s permanently failed on %s after %d attempts: %s",
                    alert.id,
                    channel.name,
                    self.max_retries,
                    e,
                )
                continue

            self.sent += 1
            if not channel.flag:
                continue
            try:
                await mark_sent(alert.id, channel.flag)
            except Exception as e:
                all_delivered = False
                logger.error(
                    "Alert %s was delivered on %s but its %s flag could not be stored: %s",
                    alert.id,
                    channel.name,
                    channel.flag,
                    e,
                )
        return all_delivered

    async def run(self) -> None:
        """Consume the queue until cancelled.

        Cancellation abandons the in-flight alert; its flags stay unset.
        """
        logger.info("Alert dispatcher started")
        try:
            while True:
                alert = await self.queue.get()
                try:
                    await self.dispatch(alert)
                finally:
                    self.queue.task_done()
        except asyncio.CancelledError:
            logger.info(
                "Alert dispatcher stopped (%d sent, %d failed, %d queued)",
                self.sent,
                self.failed,
                self.queue.qsize(),
            )
            raise

    async def close(self) -> None:
        """Close every channel."""
        for channel in self.channels:
            await channel.close()


__all__ = ["AlertDispatcher"]
