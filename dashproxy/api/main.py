"""
Dashboard Commerce Proxy API.

FastAPI application that sits between the static order dashboard and the
commerce platform's admin REST API.

Routes under /api require (in order) an allowed client IP, the shared
X-App-Token header and a Bearer session token obtained from POST /login.
"""
# Load .env file if present (for local development)
from dotenv import load_dotenv
load_dotenv()

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional, Union

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from limits import parse as parse_limit
from slowapi import Limiter
from slowapi.util import get_remote_address

from ..services.credentials import EnvCredentialResolver
from ..services.errors import (
    AggregationCancelled,
    AggregationError,
    CredentialError,
    PartialWorkflowFailure,
    UpstreamCallError,
    ValidationError,
)
from ..services.models import ShopContext
from ..services.pagination import OrderAggregator
from ..services.upstream import UpstreamClient
from ..services.workflow import KnownStatuses, OrderTagWorkflow
from .config import Settings, cors_origins_from_env
from .security import AuthError, check_request, create_access_token, verify_password

logger = logging.getLogger(__name__)

DEFAULT_RATE_LIMIT = "50/5minutes"

# Global instances
settings: Optional[Settings] = None
upstream: Optional[UpstreamClient] = None
resolver: Optional[EnvCredentialResolver] = None
aggregator: Optional[OrderAggregator] = None
workflow: Optional[OrderTagWorkflow] = None


def current_rate_limit() -> str:
    return settings.rate_limit if settings else DEFAULT_RATE_LIMIT


limiter = Limiter(key_func=get_remote_address)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Reads settings, opens the upstream connection pool and wires the
    aggregator and tagging workflow to it.
    """
    global settings, upstream, resolver, aggregator, workflow

    settings = Settings.from_env()

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    resolver = EnvCredentialResolver(api_version=settings.api_version)

    upstream = UpstreamClient(timeout=settings.upstream_timeout)
    await upstream.connect()

    aggregator = OrderAggregator(
        upstream,
        max_pages=settings.max_pages,
        max_seconds=settings.max_seconds,
    )
    workflow = OrderTagWorkflow(upstream)

    if not settings.admin_password_hash:
        logger.warning("ADMIN_PASSWORD_HASH not set - /login will reject every attempt")

    logger.info(f"Proxy ready for {settings.shop_domain} (API {settings.api_version})")

    yield

    # Cleanup
    if upstream:
        await upstream.close()


app = FastAPI(
    title="Dashboard Commerce Proxy",
    description="Authenticated proxy between the order dashboard and the commerce admin API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins_from_env(),
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "X-App-Token", "Authorization"],
)


# Request/Response Models

class LoginRequest(BaseModel):
    """Request model for dashboard login."""
    username: str
    password: str


class LoginResponse(BaseModel):
    """Response model for dashboard login."""
    token: str


class OrdersPageResponse(BaseModel):
    """Response model for one page of orders."""
    orders: list[dict[str, Any]]
    next_cursor: Optional[str] = None


class OrderCountResponse(BaseModel):
    """Response model for order count."""
    count: int
    financial_status: Optional[str] = None


class TagCountsResponse(BaseModel):
    """Response model for tag histogram."""
    total: int
    counts: dict[str, int]
    pages: int


class TagOrderRequest(BaseModel):
    """Request model for tagging an order.

    Fields are optional here so a missing field is reported as a 400 by
    the workflow rather than a schema error.
    """
    orderId: Optional[Union[int, str]] = None
    tag: Optional[str] = None
    financial_status: Optional[str] = None
    fulfillment_status: Optional[str] = None


class TagOrderResponse(BaseModel):
    """Response model for a completed tagging workflow."""
    success: bool
    order_id: str
    tag: str
    intent: str
    secondary: dict[str, Any]
    states: list[str]


class HealthResponse(BaseModel):
    """Response model for health check."""
    status: str
    shop_domain: Optional[str]
    api_version: Optional[str]
    max_pages: Optional[int] = None
    max_seconds: Optional[float] = None


# Dependencies

def enforce_rate_limit(request: Request) -> None:
    """
    Count one /api request against the caller's window.

    Runs before the auth checks so rejected requests use up the window too.

    Raises:
        HTTPException: 429 once the window is used up
    """
    item = parse_limit(current_rate_limit())
    key = get_remote_address(request)
    if not limiter.limiter.hit(item, "api", key):
        logger.warning(f"Rate limit {item} exceeded for {key}")
        raise HTTPException(status_code=429, detail=f"Rate limit exceeded: {item}")


async def require_user(request: Request) -> str:
    """Gate for /api routes. Returns the verified username."""
    enforce_rate_limit(request)
    try:
        return check_request(
            request,
            api_secret=settings.api_secret,
            jwt_secret=settings.jwt_secret,
            allowed_ips=settings.allowed_ips,
        )
    except AuthError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


def shop_context(shop: Optional[str] = None) -> ShopContext:
    """Resolve the ``shop`` query parameter (default shop when omitted)."""
    return resolver.resolve(shop)


# Error mapping

@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc), "fields": exc.fields})


@app.exception_handler(CredentialError)
async def credential_error_handler(request: Request, exc: CredentialError):
    return JSONResponse(status_code=404, content={"detail": f"Unknown shop: {exc.shop_id}"})


@app.exception_handler(AggregationCancelled)
async def aggregation_cancelled_handler(request: Request, exc: AggregationCancelled):
    return JSONResponse(status_code=499, content={"detail": "Client closed request"})


@app.exception_handler(AggregationError)
async def aggregation_error_handler(request: Request, exc: AggregationError):
    return JSONResponse(status_code=500, content={"detail": "Failed to fetch orders"})


@app.exception_handler(PartialWorkflowFailure)
async def partial_failure_handler(request: Request, exc: PartialWorkflowFailure):
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Update failed",
            "tag_applied": True,
            "outcome": exc.outcome.to_dict(),
        },
    )


@app.exception_handler(UpstreamCallError)
async def upstream_error_handler(request: Request, exc: UpstreamCallError):
    return JSONResponse(status_code=500, content={"detail": "Upstream request failed"})


# API Endpoints

@app.post("/login", response_model=LoginResponse)
async def login(req: LoginRequest):
    """
    Exchange dashboard credentials for a session token.

    Raises:
        HTTPException: 401 on unknown user or wrong password
    """
    if not settings.admin_username or req.username != settings.admin_username:
        raise HTTPException(status_code=401, detail="Invalid credentials")

    if not verify_password(req.password, settings.admin_password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    token = create_access_token(req.username, settings.jwt_secret, settings.jwt_expires_minutes)
    logger.info(f"Issued session token for {req.username}")
    return LoginResponse(token=token)


@app.get("/api/orders", response_model=OrdersPageResponse)
async def list_orders(
    request: Request,
    page_info: Optional[str] = None,
    user: str = Depends(require_user),
    shop: ShopContext = Depends(shop_context),
):
    """
    Get one page of orders.

    Args:
        page_info: Cursor returned as next_cursor by the previous page
        shop: Optional shop id (default shop when omitted)

    Returns:
        OrdersPageResponse with order summaries and the next cursor
    """
    page = await aggregator.list_orders_page(shop, cursor=page_info)
    return OrdersPageResponse(
        orders=[order.to_summary() for order in page.orders],
        next_cursor=page.next_cursor,
    )


@app.get("/api/orders/count", response_model=OrderCountResponse)
async def order_count(
    request: Request,
    financial_status: Optional[str] = None,
    user: str = Depends(require_user),
    shop: ShopContext = Depends(shop_context),
):
    """
    Get the number of orders, optionally filtered by financial status.

    Returns:
        OrderCountResponse with the upstream count
    """
    count = await upstream.count_orders(shop, financial_status=financial_status)
    return OrderCountResponse(count=count, financial_status=financial_status)


@app.get("/api/orders/tag-counts", response_model=TagCountsResponse)
async def tag_counts(
    request: Request,
    user: str = Depends(require_user),
    shop: ShopContext = Depends(shop_context),
):
    """
    Count orders per tag across every page of the orders collection.

    Stops fetching if the client disconnects.

    Returns:
        TagCountsResponse with total, per-tag counts and pages fetched
    """
    result = await aggregator.aggregate_tag_counts(shop, is_cancelled=request.is_disconnected)
    return TagCountsResponse(**result.to_dict())


@app.post("/api/orders/tag", response_model=TagOrderResponse)
async def tag_order(
    request: Request,
    req: TagOrderRequest,
    user: str = Depends(require_user),
    shop: ShopContext = Depends(shop_context),
):
    """
    Apply a tag to an order and run its follow-up action.

    "Shipped" fulfils open fulfillment orders, "Completed" captures the
    order total through the manual gateway.

    Returns:
        TagOrderResponse describing the applied tag and follow-up

    Raises:
        HTTPException: 500 if the tag update itself fails
    """
    known = KnownStatuses(
        fulfillment_status=req.fulfillment_status,
        financial_status=req.financial_status,
    )
    order_id = str(req.orderId) if req.orderId is not None else None

    try:
        outcome = await workflow.apply_order_tag(shop, order_id, req.tag, known)
    except UpstreamCallError:
        raise HTTPException(status_code=500, detail="Update failed")

    logger.info(f"{user} tagged order {outcome.order_id} as '{outcome.tag}' ({outcome.secondary.status})")
    return TagOrderResponse(**outcome.to_dict())


@app.get("/health", response_model=HealthResponse)
async def health():
    """
    Health check endpoint.

    Returns:
        HealthResponse with service status and upstream configuration
    """
    return HealthResponse(
        status="healthy",
        shop_domain=settings.shop_domain if settings else None,
        api_version=settings.api_version if settings else None,
        max_pages=settings.max_pages if settings else None,
        max_seconds=settings.max_seconds if settings else None,
    )


@app.get("/")
async def root():
    """
    Root endpoint with API information.

    Returns:
        API info and available endpoints
    """
    return {
        "name": "Dashboard Commerce Proxy",
        "version": "1.0.0",
        "endpoints": {
            "login": "POST /login",
            "orders": "GET /api/orders",
            "order_count": "GET /api/orders/count",
            "tag_counts": "GET /api/orders/tag-counts",
            "tag_order": "POST /api/orders/tag",
            "health": "GET /health",
        },
    }
