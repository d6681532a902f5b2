"""Alert type strategy base classes."""

from __future__ import annotations

from typing import Any, Optional

from restock_alerts.alerts.schemas import ALL_CHANNELS, AlertPriority, DeliveryChannel
from restock_alerts.db.models import Alert, User

POPULARITY_THRESHOLD_HIGH = 500
POPULARITY_THRESHOLD_URGENT = 800


def _as_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class AlertStrategy:
    """Base alert strategy implementation.

    Subclasses set ``alert_type`` and ``supported_channels`` and implement
    ``calculate_urgency_score``.
    """

    alert_type: str = "generic"
    supported_channels: tuple[DeliveryChannel, ...] = ALL_CHANNELS

    def calculate_urgency_score(self, data: dict, popularity_score: int = 0) -> int:
        """Return an urgency score between 0 and 100."""
        return self.popularity_urgency(popularity_score)

    def calculate_priority(self, data: dict, popularity_score: int = 0) -> AlertPriority:
        """Map the urgency score for this signal to a priority level."""
        score = max(0, min(100, self.calculate_urgency_score(data, popularity_score)))
        return self.urgency_to_priority(score)

    def determine_delivery_channels(self, user: User, alert: Alert) -> list[DeliveryChannel]:
        """
        Pick delivery channels from the user's notification settings.

        Web push and email are available to every user; SMS and Discord
        require the pro tier (Discord also needs a webhook URL). The result
        keeps that order and is restricted to ``supported_channels``.

        Args:
            user: Recipient with notification settings loaded
            alert: Alert being delivered

        Returns:
            Ordered list of channel identifiers, possibly empty
        """
        prefs = user.notification_settings or {}
        channels: list[DeliveryChannel] = []

        if prefs.get("web_push"):
            channels.append("web_push")
        if prefs.get("email"):
            channels.append("email")

        if user.subscription_tier == "pro":
            if prefs.get("sms"):
                channels.append("sms")
            if prefs.get("discord") and prefs.get("discord_webhook"):
                channels.append("discord")

        channels = [c for c in channels if c in self.supported_channels]

        # Web push is the fallback unless the user switched it off explicitly
        if (
            not channels
            and prefs.get("web_push") is not False
            and "web_push" in self.supported_channels
        ):
            channels.append("web_push")

        return channels

    @staticmethod
    def urgency_to_priority(urgency_score: int) -> AlertPriority:
        """Convert urgency score to priority level."""
        if urgency_score >= 90:
            return "urgent"
        if urgency_score >= 70:
            return "high"
        if urgency_score >= 40:
            return "medium"
        return "low"

    @staticmethod
    def popularity_urgency(popularity_score: int) -> int:
        """Base urgency from product popularity."""
        popularity_score = popularity_score or 0
        if popularity_score > POPULARITY_THRESHOLD_URGENT:
            return 80
        if popularity_score > POPULARITY_THRESHOLD_HIGH:
            return 60
        return 30

    @staticmethod
    def price_drop_percent(data: dict) -> Optional[float]:
        """Percentage drop from original_price to price, if both are known."""
        price = _as_float(data.get("price"))
        original = _as_float(data.get("original_price"))
        if price is None or original is None or original <= 0:
            return None
        return (original - price) / original * 100

    @staticmethod
    def stock_level(data: dict) -> Optional[float]:
        return _as_float(data.get("stock_level"))
