"""Pre-order alert strategy."""

from __future__ import annotations

from restock_alerts.alerts.strategies.base import AlertStrategy

PRE_ORDER_PENALTY = 10
PRE_ORDER_MAX_URGENCY = 89  # Never urgent


class PreOrderStrategy(AlertStrategy):
    """Pre-orders open for days, so they rank below stock events and skip SMS."""

    alert_type = "pre_order"
    supported_channels = ("web_push", "email", "discord")

    def calculate_urgency_score(self, data: dict, popularity_score: int = 0) -> int:
        urgency = self.popularity_urgency(popularity_score) - PRE_ORDER_PENALTY
        return max(0, min(urgency, PRE_ORDER_MAX_URGENCY))
