"""
Shared fixtures and mocks for proxy tests.
"""
import bcrypt
import pytest
from unittest.mock import AsyncMock, MagicMock

from dashproxy.services.models import ShopContext
from dashproxy.services.upstream import UpstreamResponse


def link_header(base_url, next_cursor=None, previous_cursor=None):
    """Build a Link header the way the orders endpoint returns it."""
    parts = []
    if previous_cursor:
        parts.append(f'<{base_url}/orders.json?limit=250&page_info={previous_cursor}>; rel="previous"')
    if next_cursor:
        parts.append(f'<{base_url}/orders.json?limit=250&page_info={next_cursor}>; rel="next"')
    return ", ".join(parts)


def orders_response(orders, headers=None):
    return UpstreamResponse(status_code=200, body={"orders": orders}, headers=headers or {})


@pytest.fixture
def shop():
    """Default shop context used by service tests."""
    return ShopContext(shop_domain="test-store.myshopify.com", access_token="shpat_test", api_version="2024-01")


@pytest.fixture
def sample_orders():
    """Orders covering the tag shapes the dashboard sees."""
    return [
        {"id": 1001, "name": "#1001", "tags": "Shipped", "total_price": "19.99",
         "fulfillment_status": "fulfilled", "financial_status": "paid", "note_attributes": []},
        {"id": 1002, "name": "#1002", "tags": "", "total_price": "5.00",
         "fulfillment_status": None, "financial_status": "pending",
         "note_attributes": [{"name": "Device", "value": "mobile"}, {"name": "source", "value": "instagram"}]},
        {"id": 1003, "name": "#1003", "tags": "A, B,A", "total_price": "42.50",
         "fulfillment_status": None, "financial_status": "pending", "note_attributes": []},
        {"id": 1004, "name": "#1004", "tags": "  ,  ", "total_price": "10.00",
         "fulfillment_status": None, "financial_status": "pending", "note_attributes": []},
    ]


@pytest.fixture
def paged_orders(shop, sample_orders):
    """Three pages of orders, chained by next links."""
    return [
        orders_response(sample_orders[:2], {"Link": link_header(shop.base_url, next_cursor="cursor-2")}),
        orders_response(sample_orders[2:3], {"link": link_header(shop.base_url, next_cursor="cursor-3",
                                                                 previous_cursor="cursor-1")}),
        orders_response(sample_orders[3:], {"Link": link_header(shop.base_url, previous_cursor="cursor-2")}),
    ]


@pytest.fixture
def mock_upstream():
    """UpstreamClient stand-in with async endpoint methods."""
    client = MagicMock()
    client.connect = AsyncMock()
    client.close = AsyncMock()
    client.list_orders = AsyncMock()
    client.count_orders = AsyncMock(return_value=0)
    client.get_order = AsyncMock(return_value={})
    client.update_order_tags = AsyncMock(return_value={})
    client.list_fulfillment_orders = AsyncMock(return_value=[])
    client.create_fulfillment = AsyncMock(return_value={"id": 555})
    client.create_transaction = AsyncMock(return_value={"id": 777})
    return client


@pytest.fixture
def admin_password():
    return "correct-horse"


@pytest.fixture
def api_env(admin_password):
    """Environment for starting the API."""
    return {
        "JWT_SECRET": "jwt-test-secret",
        "API_SECRET": "app-test-secret",
        "ADMIN_USERNAME": "admin",
        "ADMIN_PASSWORD_HASH": bcrypt.hashpw(admin_password.encode(), bcrypt.gensalt(rounds=4)).decode(),
        "SHOPIFY_SHOP_DOMAIN": "test-store.myshopify.com",
        "SHOPIFY_TOKEN": "shpat_test",
        "ALLOWED_IPS": "",
        "RATE_LIMIT": "1000/minute",
    }


@pytest.fixture
def make_link_header():
    return link_header


@pytest.fixture
def make_orders_response():
    return orders_response
