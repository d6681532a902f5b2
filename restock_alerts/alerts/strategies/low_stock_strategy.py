"""Low stock alert strategy."""

from __future__ import annotations

from restock_alerts.alerts.strategies.base import AlertStrategy

CRITICAL_STOCK_LEVEL = 3
CRITICAL_STOCK_BONUS = 20


class LowStockStrategy(AlertStrategy):
    """
    Low stock signals are time-sensitive.

    Email is too slow to be useful for these, so it is not offered.
    """

    alert_type = "low_stock"
    supported_channels = ("web_push", "sms", "discord")

    def calculate_urgency_score(self, data: dict, popularity_score: int = 0) -> int:
        urgency = self.popularity_urgency(popularity_score)
        stock = self.stock_level(data)
        if stock is not None and stock <= CRITICAL_STOCK_LEVEL:
            urgency += CRITICAL_STOCK_BONUS
        return urgency
