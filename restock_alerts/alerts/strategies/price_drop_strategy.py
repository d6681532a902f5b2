"""Price drop alert strategy."""

from __future__ import annotations

from restock_alerts.alerts.strategies.base import AlertStrategy

PRICE_DROP_THRESHOLD_HIGH = 20.0
PRICE_DROP_THRESHOLD_URGENT = 40.0


class PriceDropStrategy(AlertStrategy):
    """Price drops escalate by percentage off the original price."""

    alert_type = "price_drop"

    def calculate_urgency_score(self, data: dict, popularity_score: int = 0) -> int:
        urgency = self.popularity_urgency(popularity_score)
        drop = self.price_drop_percent(data)

        if drop is None:
            # No baseline to compare against
            return max(0, urgency - 10)
        if drop >= PRICE_DROP_THRESHOLD_URGENT:
            return max(urgency, 90)
        if drop >= PRICE_DROP_THRESHOLD_HIGH:
            return max(urgency, 70)
        return urgency
