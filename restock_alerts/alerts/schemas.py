"""Alert pipeline types.

Literal types and frozensets for the closed alert vocabularies, plus the
dataclasses passed between the orchestrator and its collaborators.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Optional

AlertType = Literal["restock", "price_drop", "low_stock", "pre_order"]

VALID_ALERT_TYPES: frozenset[str] = frozenset({
    "restock",
    "price_drop",
    "low_stock",
    "pre_order",
})

AlertPriority = Literal["low", "medium", "high", "urgent"]

VALID_PRIORITIES: frozenset[str] = frozenset({"low", "medium", "high", "urgent"})

# Ordering used when draining the pending queue (higher first)
PRIORITY_RANK: dict[str, int] = {"low": 1, "medium": 2, "high": 3, "urgent": 4}

AlertStatus = Literal["pending", "scheduled", "sent", "failed", "deduplicated"]

# Outcome reported by generate_alert
GenerationStatus = Literal["processed", "scheduled", "failed", "deduplicated"]

DeliveryChannel = Literal["web_push", "email", "sms", "discord"]

ALL_CHANNELS: tuple[str, ...] = ("web_push", "email", "sms", "discord")


@dataclass
class AlertGenerationData:
    """A monitoring signal addressed to one user.

    Attributes:
        user_id: Recipient.
        product_id: Product the signal concerns.
        retailer_id: Retailer where the state change was observed.
        type: Alert type.
        data: Payload with product_name, retailer_name, product_url and
            optional price, original_price, stock_level, cart_url.
        watch_id: Originating watch, if any.
        priority: Explicit priority overriding the type strategy.
    """

    user_id: str
    product_id: str
    retailer_id: str
    type: AlertType
    data: dict[str, Any] = field(default_factory=dict)
    watch_id: Optional[str] = None
    priority: Optional[AlertPriority] = None


@dataclass
class AlertProcessingResult:
    """Result of generate_alert."""

    alert_id: Optional[str]
    status: GenerationStatus
    scheduled_for: Optional[datetime] = None
    reason: Optional[str] = None
    delivery_channels: list[DeliveryChannel] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "status": self.status,
            "scheduled_for": self.scheduled_for.isoformat() if self.scheduled_for else None,
            "reason": self.reason,
            "delivery_channels": self.delivery_channels,
        }


@dataclass
class AlertProcessResult:
    """Result of delivering (or attempting to deliver) one stored alert.

    ``not_found`` is set when no alert has the given id. ``exhausted`` is
    set when the alert failed with no retry attempts left.
    """

    success: bool
    rescheduled: bool = False
    delivery_channels: list[DeliveryChannel] = field(default_factory=list)
    reason: Optional[str] = None
    not_found: bool = False
    exhausted: bool = False


@dataclass
class QuietHoursCheck:
    """Answer from a quiet-hours gate."""

    is_quiet_time: bool
    next_active_time: Optional[datetime] = None
    reason: Optional[str] = None


@dataclass
class ChannelDeliveryResult:
    """Outcome of one channel send."""

    channel: str
    success: bool
    external_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class DeliveryResult:
    """Aggregate outcome across all requested channels."""

    success: bool
    successful_channels: list[DeliveryChannel] = field(default_factory=list)
    failed_channels: list[DeliveryChannel] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class DedupResult:
    """Answer from the deduplication gate."""

    is_duplicate: bool
    existing_alert_id: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class RateLimitResult:
    """Answer from the rate limiter."""

    allowed: bool
    count: int
    limit: int
