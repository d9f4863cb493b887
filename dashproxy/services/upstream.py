"""HTTP client for the commerce platform's admin REST API.

Every call is a single authenticated request. Non-2xx responses and
transport faults raise ``UpstreamCallError``; nothing is retried here.
Callers (aggregator, tagging workflow) decide whether to abort.

API Endpoints used:
- GET  orders.json                              - List orders (cursor-paginated)
- GET  orders/count.json                        - Count orders
- GET  orders/{id}.json                         - Fetch one order
- PUT  orders/{id}.json                         - Update order tags
- GET  orders/{id}/fulfillment_orders.json      - List fulfillment orders
- POST fulfillments.json                        - Create a fulfillment
- POST orders/{id}/transactions.json            - Create a transaction
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

import httpx

from .errors import UpstreamCallError
from .models import ShopContext

logger = logging.getLogger(__name__)

# Largest page size the orders endpoint accepts
PAGE_LIMIT = 250


@dataclass
class UpstreamResponse:
    """Decoded body plus raw response metadata."""
    status_code: int
    body: Any
    headers: dict[str, str] = field(default_factory=dict)

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None


class UpstreamClient:
    """Async client for the admin REST API.

    Usage:
        client = UpstreamClient(timeout=30.0)
        await client.connect()

        shop = ShopContext(shop_domain="store.myshopify.com", access_token="shpat_...")
        page = await client.list_orders(shop)
        orders = page.body["orders"]

        await client.close()
    """

    def __init__(
        self,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            timeout: HTTP request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def connect(self) -> None:
        """Open the underlying connection pool."""
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            transport=self._transport,
            headers={
                "User-Agent": "Dashboard-Commerce-Proxy/1.0",
                "Accept": "application/json",
            },
        )
        logger.info("Upstream client initialized")

    async def close(self) -> None:
        """Close the connection pool."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "UpstreamClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _get_headers(self, shop: ShopContext) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": shop.access_token,
        }

    async def request(
        self,
        shop: ShopContext,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> UpstreamResponse:
        """Perform one call against the admin API.

        Args:
            shop: Shop to address and credential to use
            method: HTTP method
            path: Path relative to the versioned admin API root
            params: Query parameters
            json: JSON request body

        Returns:
            UpstreamResponse with decoded body and response headers

        Raises:
            UpstreamCallError: On non-2xx status, transport fault or undecodable body
        """
        if not self._client:
            raise RuntimeError("Not connected - call connect() first")

        url = f"{shop.base_url}/{path.lstrip('/')}"

        try:
            response = await self._client.request(
                method,
                url,
                params=params,
                json=json,
                headers=self._get_headers(shop),
            )
        except httpx.RequestError as e:
            logger.error(f"Transport error on {method} {path} for {shop.shop_domain}: {e}")
            raise UpstreamCallError(
                f"Transport error calling {method} {path}: {e}",
                method=method,
                path=path,
            ) from e

        if not response.is_success:
            body = self._decode_error_body(response)
            logger.error(f"{method} {path} for {shop.shop_domain} failed: {response.status_code} - {body}")
            raise UpstreamCallError(
                f"{method} {path} returned {response.status_code}",
                status_code=response.status_code,
                body=body,
                method=method,
                path=path,
            )

        if not response.content:
            body = {}
        else:
            try:
                body = response.json()
            except ValueError as e:
                raise UpstreamCallError(
                    f"{method} {path} returned a non-JSON body",
                    status_code=response.status_code,
                    body=response.text,
                    method=method,
                    path=path,
                ) from e

        if not isinstance(body, dict):
            logger.error(f"{method} {path} for {shop.shop_domain} returned a non-object body: {body!r}")
            raise UpstreamCallError(
                f"{method} {path} returned a non-object JSON body",
                status_code=response.status_code,
                body=body,
                method=method,
                path=path,
            )

        logger.debug(f"{method} {path} for {shop.shop_domain}: {response.status_code}")
        return UpstreamResponse(
            status_code=response.status_code,
            body=body,
            headers=dict(response.headers),
        )

    @staticmethod
    def _decode_error_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text

    # Endpoint helpers

    async def list_orders(self, shop: ShopContext, cursor: Optional[str] = None) -> UpstreamResponse:
        """Fetch one page of orders.

        With a cursor only ``limit`` and ``page_info`` may be sent; the filter
        from the first request is carried inside the cursor.
        """
        if cursor:
            params = {"limit": PAGE_LIMIT, "page_info": cursor}
        else:
            params = {"status": "any", "limit": PAGE_LIMIT}
        return await self.request(shop, "GET", "orders.json", params=params)

    async def count_orders(self, shop: ShopContext, financial_status: Optional[str] = None) -> int:
        params = {"status": "any"}
        if financial_status:
            params["financial_status"] = financial_status
        response = await self.request(shop, "GET", "orders/count.json", params=params)
        return int(response.body.get("count", 0))

    async def get_order(self, shop: ShopContext, order_id: str) -> dict[str, Any]:
        response = await self.request(shop, "GET", f"orders/{order_id}.json")
        return response.body.get("order") or {}

    async def update_order_tags(self, shop: ShopContext, order_id: str, tags: str) -> dict[str, Any]:
        payload = {"order": {"id": order_id, "tags": tags}}
        response = await self.request(shop, "PUT", f"orders/{order_id}.json", json=payload)
        return response.body.get("order") or {}

    async def list_fulfillment_orders(self, shop: ShopContext, order_id: str) -> list[dict[str, Any]]:
        response = await self.request(shop, "GET", f"orders/{order_id}/fulfillment_orders.json")
        return response.body.get("fulfillment_orders") or []

    async def create_fulfillment(
        self,
        shop: ShopContext,
        fulfillment_order_ids: list[int],
        notify_customer: bool = False,
    ) -> dict[str, Any]:
        payload = {
            "fulfillment": {
                "line_items_by_fulfillment_order": [
                    {"fulfillment_order_id": fo_id} for fo_id in fulfillment_order_ids
                ],
                "notify_customer": notify_customer,
            }
        }
        response = await self.request(shop, "POST", "fulfillments.json", json=payload)
        return response.body.get("fulfillment") or {}

    async def create_transaction(
        self,
        shop: ShopContext,
        order_id: str,
        amount: Decimal,
        kind: str = "capture",
        status: str = "success",
        gateway: str = "manual",
    ) -> dict[str, Any]:
        payload = {
            "transaction": {
                "kind": kind,
                "status": status,
                "amount": str(amount),
                "gateway": gateway,
            }
        }
        response = await self.request(shop, "POST", f"orders/{order_id}/transactions.json", json=payload)
        return response.body.get("transaction") or {}
