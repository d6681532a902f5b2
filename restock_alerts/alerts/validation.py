"""Validation of incoming monitoring signals."""

import asyncio
import logging
from typing import Optional
from urllib.parse import urlparse

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from restock_alerts.alerts.errors import AlertValidationError
from restock_alerts.alerts.schemas import VALID_ALERT_TYPES, VALID_PRIORITIES, AlertGenerationData
from restock_alerts.db.models import Product, User, Watch

logger = logging.getLogger(__name__)


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def is_valid_url(value: str) -> bool:
    """True for absolute http(s) URLs with a host."""
    if not isinstance(value, str):
        return False
    try:
        parsed = urlparse(value.strip())
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def validate_payload(alert_data: AlertGenerationData) -> list[str]:
    """
    Check the parts of a signal that need no database access.

    Returns:
        List of violated rules, empty when the signal is well formed
    """
    errors: list[str] = []

    if _is_blank(alert_data.user_id):
        errors.append("User ID is required")
    if _is_blank(alert_data.product_id):
        errors.append("Product ID is required")
    if _is_blank(alert_data.retailer_id):
        errors.append("Retailer ID is required")

    if alert_data.type not in VALID_ALERT_TYPES:
        errors.append(f"Invalid alert type: {alert_data.type}")

    if alert_data.priority is not None and alert_data.priority not in VALID_PRIORITIES:
        errors.append(f"Invalid priority: {alert_data.priority}")

    data = alert_data.data or {}
    if _is_blank(data.get("product_name")):
        errors.append("Product name is required in alert data")
    if _is_blank(data.get("retailer_name")):
        errors.append("Retailer name is required in alert data")

    product_url = data.get("product_url")
    if _is_blank(product_url):
        errors.append("Product URL is required in alert data")
    elif not is_valid_url(product_url):
        errors.append("Product URL must be a valid http(s) URL")

    return errors


class AlertValidator:
    """
    Validates signals against stored users, products and watches.

    Each lookup runs in its own session so the three loads can proceed
    concurrently.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _load(self, model, entity_id: Optional[str]):
        if entity_id is None:
            return None
        async with self.session_factory() as db:
            return await db.get(model, entity_id)

    async def validate(self, alert_data: AlertGenerationData) -> tuple[User, Product]:
        """
        Validate a signal, raising on any violated rule.

        Args:
            alert_data: Signal to validate

        Returns:
            Tuple of (user, product) loaded during validation

        Raises:
            AlertValidationError: With every violated rule listed
        """
        errors = validate_payload(alert_data)

        # Lookups need usable ids
        if _is_blank(alert_data.user_id) or _is_blank(alert_data.product_id):
            raise AlertValidationError(errors)

        user, product, watch = await asyncio.gather(
            self._load(User, alert_data.user_id),
            self._load(Product, alert_data.product_id),
            self._load(Watch, alert_data.watch_id),
        )

        if user is None:
            errors.append("User not found")
        elif not user.email_verified:
            errors.append("User email not verified")

        if product is None:
            errors.append("Product not found")
        elif not product.is_active:
            errors.append("Product is inactive")

        if alert_data.watch_id is not None:
            if watch is None:
                errors.append("Watch not found")
            else:
                if not watch.is_active:
                    errors.append("Watch is inactive")
                if watch.user_id != alert_data.user_id:
                    errors.append("Watch does not belong to user")

        if errors:
            logger.debug(
                "Rejected signal for user %s product %s: %s",
                alert_data.user_id,
                alert_data.product_id,
                errors,
            )
            raise AlertValidationError(errors)

        return user, product
