"""Tests for signal payload validation."""

import pytest

from restock_alerts.alerts.schemas import AlertGenerationData
from restock_alerts.alerts.validation import is_valid_url, validate_payload


@pytest.mark.parametrize(
    "url,valid",
    [
        ("https://www.target.com/p/etb", True),
        ("http://walmart.com", True),
        ("ftp://files.example.com/x", False),
        ("www.target.com/p/etb", False),
        ("https://", False),
        (None, False),
    ],
)
def test_is_valid_url(url, valid):
    assert is_valid_url(url) is valid


def test_well_formed_payload_has_no_errors():
    data = AlertGenerationData(
        user_id="u1",
        product_id="p1",
        retailer_id="target",
        type="price_drop",
        priority="high",
        data={
            "product_name": "Elite Trainer Box",
            "retailer_name": "Target",
            "product_url": "https://www.target.com/p/etb",
            "cart_url": "https://www.target.com/cart",
        },
    )

    assert validate_payload(data) == []


def test_every_violation_is_reported():
    data = AlertGenerationData(
        user_id=" ",
        product_id="",
        retailer_id="",
        type="flash_sale",
        priority="critical",
        data={"product_url": "not a url", "cart_url": "javascript:alert(1)"},
    )

    assert validate_payload(data) == [
        "User ID is required",
        "Product ID is required",
        "Retailer ID is required",
        "Invalid alert type: flash_sale",
        "Invalid priority: critical",
        "Product name is required in alert data",
        "Retailer name is required in alert data",
        "Product URL must be a valid http(s) URL",
    ]


def test_cart_url_is_not_format_checked():
    data = AlertGenerationData(
        user_id="u1",
        product_id="p1",
        retailer_id="target",
        type="restock",
        data={
            "product_name": "Elite Trainer Box",
            "retailer_name": "Target",
            "product_url": "https://www.target.com/p/etb",
            "cart_url": "/cart/add?sku=1",
        },
    )

    assert validate_payload(data) == []
