"""Alert type strategy table."""

from __future__ import annotations

from restock_alerts.alerts.strategies.base import AlertStrategy
from restock_alerts.alerts.strategies.low_stock_strategy import LowStockStrategy
from restock_alerts.alerts.strategies.pre_order_strategy import PreOrderStrategy
from restock_alerts.alerts.strategies.price_drop_strategy import PriceDropStrategy
from restock_alerts.alerts.strategies.restock_strategy import RestockStrategy


_STRATEGIES: dict[str, AlertStrategy] = {
    "restock": RestockStrategy(),
    "price_drop": PriceDropStrategy(),
    "low_stock": LowStockStrategy(),
    "pre_order": PreOrderStrategy(),
}


def get_strategy_for_type(alert_type: str) -> AlertStrategy:
    """Return the strategy for an alert type.

    Raises:
        ValueError: If the type is not one of the four known alert types
    """
    try:
        return _STRATEGIES[alert_type]
    except KeyError:
        raise ValueError(f"Unknown alert type: {alert_type!r}") from None


__all__ = [
    "AlertStrategy",
    "get_strategy_for_type",
]
