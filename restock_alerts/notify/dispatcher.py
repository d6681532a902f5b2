"""Multi-channel alert delivery."""

import asyncio
import logging
import time
from typing import Optional, Protocol

from restock_alerts import metrics
from restock_alerts.alerts.schemas import ChannelDeliveryResult, DeliveryResult
from restock_alerts.config import settings
from restock_alerts.db.models import Alert, User
from restock_alerts.notify.channels import ChannelSender

logger = logging.getLogger(__name__)


class Dispatcher(Protocol):
    """What the orchestrator needs from a delivery dispatcher."""

    async def deliver_alert(
        self, alert: Alert, user: User, channels: list[str]
    ) -> DeliveryResult:
        ...


class DeliveryDispatcher:
    """
    Sends an alert over several channels concurrently.

    Delivery succeeds when at least one channel succeeds. Channels without a
    registered sender count as failed. Nothing is retried here; retry policy
    belongs to the orchestrator.
    """

    def __init__(
        self,
        senders: Optional[dict[str, ChannelSender]] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.senders: dict[str, ChannelSender] = dict(senders or {})
        self.timeout_seconds = timeout_seconds or settings.delivery_timeout_seconds

    def register(self, channel: str, sender: ChannelSender):
        self.senders[channel] = sender

    async def close(self):
        """Close any sender holding an HTTP client."""
        for sender in self.senders.values():
            close = getattr(sender, "close", None)
            if close is not None:
                await close()

    async def _send_one(self, channel: str, alert: Alert, user: User) -> ChannelDeliveryResult:
        sender = self.senders.get(channel)
        if sender is None:
            return ChannelDeliveryResult(
                channel=channel, success=False, error=f"Channel not configured: {channel}"
            )

        try:
            external_id = await asyncio.wait_for(
                sender.send(alert, user), timeout=self.timeout_seconds
            )
            return ChannelDeliveryResult(channel=channel, success=True, external_id=external_id)
        except asyncio.TimeoutError:
            logger.warning(f"Delivery of alert {alert.id} via {channel} timed out")
            return ChannelDeliveryResult(
                channel=channel,
                success=False,
                error=f"{channel} timed out after {self.timeout_seconds}s",
            )
        except Exception as e:
            logger.warning(f"Delivery of alert {alert.id} via {channel} failed: {e}")
            return ChannelDeliveryResult(channel=channel, success=False, error=str(e))

    async def deliver_alert(
        self, alert: Alert, user: User, channels: list[str]
    ) -> DeliveryResult:
        """
        Deliver an alert to a user.

        Args:
            alert: Alert to deliver, normally still pending
            user: Recipient
            channels: Ordered channel identifiers to attempt

        Returns:
            DeliveryResult with successful and failed channels in request order
        """
        if not channels:
            return DeliveryResult(success=False, error="No delivery channels requested")

        started = time.perf_counter()
        results = await asyncio.gather(
            *(self._send_one(channel, alert, user) for channel in channels)
        )
        duration = time.perf_counter() - started

        successful = [r.channel for r in results if r.success]
        failed = [r.channel for r in results if not r.success]
        metrics.record_delivery(successful, failed, duration)

        if successful:
            if failed:
                logger.info(
                    f"Alert {alert.id} partially delivered: ok={successful} failed={failed}"
                )
            return DeliveryResult(
                success=True, successful_channels=successful, failed_channels=failed
            )

        error = "; ".join(f"{r.channel}: {r.error}" for r in results if r.error)
        return DeliveryResult(
            success=False,
            successful_channels=[],
            failed_channels=failed,
            error=error or "All delivery channels failed",
        )
