"""Data types shared by the aggregator and the tagging workflow."""
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Optional


def _optional_str(value: Any) -> Optional[str]:
    return str(value) if value not in (None, "") else None


@dataclass(frozen=True)
class ShopContext:
    """Where to send upstream calls and which credential to use."""
    shop_domain: str
    access_token: str
    api_version: str = "2024-01"

    @property
    def base_url(self) -> str:
        return f"https://{self.shop_domain}/admin/api/{self.api_version}"


@dataclass
class Order:
    """An upstream order, reduced to the fields the dashboard uses."""
    id: int
    name: str = ""
    tags: str = ""
    fulfillment_status: Optional[str] = None
    financial_status: Optional[str] = None
    total_price: Optional[str] = None
    created_at: Optional[str] = None
    note_attributes: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Order":
        return cls(
            id=payload.get("id"),
            name=payload.get("name") or "",
            tags=payload.get("tags") or "",
            fulfillment_status=payload.get("fulfillment_status"),
            financial_status=payload.get("financial_status"),
            total_price=_optional_str(payload.get("total_price")),
            created_at=payload.get("created_at"),
            note_attributes=list(payload.get("note_attributes") or []),
        )

    def note_attribute(self, name: str) -> Optional[str]:
        """Value of a note attribute, matched case-insensitively by name."""
        wanted = name.lower()
        for attr in self.note_attributes:
            if str(attr.get("name", "")).lower() == wanted:
                return attr.get("value")
        return None

    @property
    def device(self) -> Optional[str]:
        return self.note_attribute("device")

    @property
    def source(self) -> Optional[str]:
        return self.note_attribute("source")

    @property
    def total_amount(self) -> Decimal:
        """Total price parsed as a decimal.

        Raises:
            ValueError: If the upstream total is missing, not a finite
                number, or negative
        """
        if self.total_price is None:
            raise ValueError(f"Order {self.id} has no total_price")
        try:
            amount = Decimal(self.total_price.strip())
        except InvalidOperation:
            raise ValueError(f"Order {self.id} has a non-numeric total_price: {self.total_price!r}")
        if not amount.is_finite() or amount < 0:
            raise ValueError(f"Order {self.id} has an invalid total_price: {self.total_price!r}")
        return amount

    def to_summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "tags": self.tags,
            "fulfillment_status": self.fulfillment_status,
            "financial_status": self.financial_status,
            "total_price": self.total_price,
            "created_at": self.created_at,
            "device": self.device,
            "source": self.source,
        }


@dataclass(frozen=True)
class FulfillmentOrder:
    """A fulfillment sub-order of an order."""
    id: int
    status: str = "open"

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "FulfillmentOrder":
        return cls(id=payload.get("id"), status=payload.get("status") or "open")

    @property
    def is_open(self) -> bool:
        return self.status != "closed"


@dataclass
class OrdersPage:
    """One page of orders plus the cursor for the page after it."""
    orders: list[Order]
    next_cursor: Optional[str] = None


@dataclass
class TagCountResult:
    """Outcome of a full tag-count aggregation."""
    total: int
    counts: dict[str, int]
    pages: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"total": self.total, "counts": self.counts, "pages": self.pages}
