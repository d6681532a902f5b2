"""Restock alert strategy."""

from __future__ import annotations

from restock_alerts.alerts.strategies.base import AlertStrategy

RESTOCK_BONUS = 10


class RestockStrategy(AlertStrategy):
    """Back-in-stock signals. Popular products escalate to high or urgent."""

    alert_type = "restock"

    def calculate_urgency_score(self, data: dict, popularity_score: int = 0) -> int:
        return self.popularity_urgency(popularity_score) + RESTOCK_BONUS
