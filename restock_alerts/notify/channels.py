"""Delivery channel transports."""

import logging
from datetime import datetime
from typing import Optional, Protocol

import httpx

from restock_alerts.alerts.errors import DeliveryError
from restock_alerts.config import settings
from restock_alerts.db.models import Alert, User

logger = logging.getLogger(__name__)

# Embed colours per alert type
_EMBED_COLORS = {
    "restock": 0x00FF00,
    "price_drop": 0x3498DB,
    "low_stock": 0xFFA500,
    "pre_order": 0x9B59B6,
}

_TITLES = {
    "restock": "🟢 Back in Stock",
    "price_drop": "💰 Price Drop",
    "low_stock": "⚠️ Low Stock",
    "pre_order": "📦 Pre-order Open",
}


class ChannelSender(Protocol):
    """Sends one alert to one user over a single channel.

    Returns an external message id when the transport provides one and
    raises on failure.
    """

    async def send(self, alert: Alert, user: User) -> Optional[str]:
        ...


class _HttpChannel:
    """Shared lazy httpx client handling."""

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout
        self._http_client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class DiscordChannel(_HttpChannel):
    """Posts alerts to the user's own Discord webhook."""

    def __init__(self, username: Optional[str] = None, timeout: float = 30.0):
        super().__init__(timeout=timeout)
        self.username = username or settings.discord_username

    def build_payload(self, alert: Alert) -> dict:
        """
        Build the webhook payload for an alert.

        Args:
            alert: Alert being delivered

        Returns:
            Discord webhook JSON body with a single embed
        """
        data = alert.data or {}
        product_name = data.get("product_name") or "Product"

        embed = {
            "title": f"{_TITLES.get(alert.type, 'Alert')}: {product_name}",
            "url": data.get("product_url"),
            "color": _EMBED_COLORS.get(alert.type, 0x95A5A6),
            "fields": [
                {
                    "name": "Retailer",
                    "value": data.get("retailer_name") or alert.retailer_id,
                    "inline": True,
                },
                {
                    "name": "Priority",
                    "value": alert.priority,
                    "inline": True,
                },
            ],
            "footer": {"text": f"Alert {alert.id}"},
            "timestamp": datetime.utcnow().isoformat(),
        }

        price = data.get("price")
        if price is not None:
            embed["fields"].append(
                {"name": "Price", "value": f"${float(price):.2f}", "inline": True}
            )

        original_price = data.get("original_price")
        if original_price is not None and alert.type == "price_drop":
            embed["fields"].append(
                {"name": "Was", "value": f"${float(original_price):.2f}", "inline": True}
            )

        stock_level = data.get("stock_level")
        if stock_level is not None:
            embed["fields"].append(
                {"name": "Stock", "value": str(stock_level), "inline": True}
            )

        if data.get("cart_url"):
            embed["fields"].append(
                {"name": "Add to cart", "value": data["cart_url"], "inline": False}
            )

        return {"embeds": [embed], "username": self.username}

    async def send(self, alert: Alert, user: User) -> Optional[str]:
        webhook_url = (user.notification_settings or {}).get("discord_webhook")
        if not webhook_url:
            raise DeliveryError("Discord webhook not configured", ["discord"])

        client = await self._get_client()
        try:
            # wait=true makes Discord return the created message
            response = await client.post(
                webhook_url, params={"wait": "true"}, json=self.build_payload(alert)
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Failed to send Discord alert {alert.id}: {e}")
            raise DeliveryError(f"Discord delivery failed: {e}", ["discord"]) from e

        message_id = None
        if response.content:
            body = response.json()
            message_id = body.get("id") or None

        logger.info(f"Sent Discord alert {alert.id} to user {user.id}")
        return message_id


class WebhookChannel(_HttpChannel):
    """
    Forwards alerts as JSON to a relay endpoint.

    Used for channels whose transport lives in another service (push,
    email, SMS): the relay receives the channel name, recipient and alert.
    """

    def __init__(self, channel: str, url: str, timeout: float = 30.0):
        super().__init__(timeout=timeout)
        self.channel = channel
        self.url = url

    def build_payload(self, alert: Alert, user: User) -> dict:
        return {
            "channel": self.channel,
            "recipient": {
                "user_id": user.id,
                "email": user.email,
                "timezone": user.timezone,
            },
            "alert": {
                "id": alert.id,
                "type": alert.type,
                "priority": alert.priority,
                "product_id": alert.product_id,
                "retailer_id": alert.retailer_id,
                "data": alert.data or {},
            },
        }

    async def send(self, alert: Alert, user: User) -> Optional[str]:
        client = await self._get_client()
        try:
            response = await client.post(self.url, json=self.build_payload(alert, user))
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Relay delivery of alert {alert.id} via {self.channel} failed: {e}")
            raise DeliveryError(f"{self.channel} delivery failed: {e}", [self.channel]) from e

        if not response.content:
            return None
        try:
            body = response.json()
        except ValueError:
            return None
        return body.get("id") if isinstance(body, dict) else None
