"""
Order tagging workflow.

Applies a tag to an order, then runs the follow-up chain the tag calls for.

Flow:
1. Validate order id and tag
2. Resolve the tag into an intent (Retag, MarkShipped, MarkCompleted)
3. Update the order's tags
4. MarkShipped: fulfil every fulfillment order that is not closed
   MarkCompleted: capture the order total through the manual gateway
   Retag: nothing else

Steps run strictly in sequence. A failed tag update aborts everything; a
failed follow-up leaves the tag in place and raises PartialWorkflowFailure.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from .errors import PartialWorkflowFailure, UpstreamCallError, ValidationError
from .models import FulfillmentOrder, Order, ShopContext
from .upstream import UpstreamClient

logger = logging.getLogger(__name__)

SHIPPED_TAG = "Shipped"
COMPLETED_TAG = "Completed"


class WorkflowState(str, Enum):
    VALIDATING = "validating"
    MUTATING = "mutating"
    IDLE = "idle"
    FULFILLMENT_CHECK = "fulfillment_check"
    FULFILLMENT_CREATED = "fulfillment_created"
    FULFILLMENT_SKIPPED = "fulfillment_skipped"
    PAYMENT_CAPTURE = "payment_capture"
    CAPTURED = "captured"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class KnownStatuses:
    """Statuses the dashboard last saw for the order (both optional)."""
    fulfillment_status: Optional[str] = None
    financial_status: Optional[str] = None


@dataclass(frozen=True)
class Retag:
    tag: str


@dataclass(frozen=True)
class MarkShipped:
    tag: str


@dataclass(frozen=True)
class MarkCompleted:
    tag: str


MutationIntent = Union[Retag, MarkShipped, MarkCompleted]


def resolve_intent(tag: str, known: Optional[KnownStatuses] = None) -> MutationIntent:
    """
    Decide what a tag means for the order.

    "Shipped" only triggers fulfillment when the order is not known to be
    fulfilled already (status missing or "unfulfilled").
    """
    known = known or KnownStatuses()
    if tag == SHIPPED_TAG and known.fulfillment_status in (None, "", "unfulfilled"):
        return MarkShipped(tag)
    if tag == COMPLETED_TAG:
        return MarkCompleted(tag)
    return Retag(tag)


@dataclass
class SecondaryResult:
    """What happened after the tag update."""
    action: str = "none"              # none / fulfillment / payment_capture
    status: str = "not_applicable"    # not_applicable / fulfilled / skipped / captured / failed
    detail: dict[str, Any] = field(default_factory=dict)
    error: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "status": self.status,
            "detail": self.detail,
            "error": self.error,
        }


@dataclass
class MutationOutcome:
    success: bool
    order_id: str
    tag: str
    intent: str
    secondary: SecondaryResult = field(default_factory=SecondaryResult)
    states: list[WorkflowState] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "order_id": self.order_id,
            "tag": self.tag,
            "intent": self.intent,
            "secondary": self.secondary.to_dict(),
            "states": [s.value for s in self.states],
        }


class OrderTagWorkflow:
    """
    Applies a tag to an order and performs tag-triggered side effects.

    Usage:
        workflow = OrderTagWorkflow(client)
        outcome = await workflow.apply_order_tag(shop, "450789469", "Shipped")
    """

    def __init__(self, client: UpstreamClient):
        self.client = client

    async def apply_order_tag(
        self,
        shop: ShopContext,
        order_id: Optional[str],
        tag: Optional[str],
        known: Optional[KnownStatuses] = None,
    ) -> MutationOutcome:
        """
        Apply a tag and run its follow-up chain.

        Args:
            shop: Shop the order belongs to
            order_id: Upstream order identifier
            tag: Tag to apply
            known: Statuses the caller last saw for the order

        Returns:
            MutationOutcome describing the applied tag and the follow-up

        Raises:
            ValidationError: If order_id or tag is missing (no upstream call made)
            UpstreamCallError: If the tag update itself fails
            PartialWorkflowFailure: If the tag was applied but the follow-up failed
        """
        states = [WorkflowState.VALIDATING]
        order_id, tag = self._validate(order_id, tag)

        intent = resolve_intent(tag, known)
        outcome = MutationOutcome(
            success=False,
            order_id=order_id,
            tag=tag,
            intent=type(intent).__name__,
            states=states,
        )

        states.append(WorkflowState.MUTATING)
        try:
            await self.client.update_order_tags(shop, order_id, tag)
        except UpstreamCallError:
            states.append(WorkflowState.FAILED)
            logger.error(f"Tag update to '{tag}' failed for order {order_id} on {shop.shop_domain}")
            raise
        logger.info(f"Order {order_id} on {shop.shop_domain} tagged '{tag}'")

        try:
            match intent:
                case MarkShipped():
                    outcome.secondary = SecondaryResult(action="fulfillment")
                    await self._fulfil_open_orders(shop, order_id, outcome.secondary, states)
                case MarkCompleted():
                    outcome.secondary = SecondaryResult(action="payment_capture")
                    await self._capture_payment(shop, order_id, outcome.secondary, states)
                case Retag():
                    states.append(WorkflowState.IDLE)
        except (UpstreamCallError, ValueError) as e:
            states.append(WorkflowState.FAILED)
            outcome.secondary.status = "failed"
            outcome.secondary.error = e.to_dict() if isinstance(e, UpstreamCallError) else {"message": str(e)}
            logger.error(
                f"Follow-up '{outcome.secondary.action}' failed for order {order_id} "
                f"on {shop.shop_domain} (tag '{tag}' remains applied): {e}"
            )
            raise PartialWorkflowFailure("Update failed", outcome=outcome, cause=e) from e

        states.append(WorkflowState.DONE)
        outcome.success = True
        return outcome

    @staticmethod
    def _validate(order_id: Optional[str], tag: Optional[str]) -> tuple[str, str]:
        missing = []
        order_id = str(order_id).strip() if order_id is not None else ""
        tag = tag.strip() if tag else ""
        if not order_id:
            missing.append("orderId")
        if not tag:
            missing.append("tag")
        if missing:
            raise ValidationError(f"Missing required field(s): {', '.join(missing)}", fields=missing)
        return order_id, tag

    async def _fulfil_open_orders(
        self,
        shop: ShopContext,
        order_id: str,
        result: SecondaryResult,
        states: list[WorkflowState],
    ) -> None:
        """Fulfil the fulfillment orders that are not closed yet."""
        states.append(WorkflowState.FULFILLMENT_CHECK)

        payloads = await self.client.list_fulfillment_orders(shop, order_id)
        open_orders = [fo for fo in map(FulfillmentOrder.from_payload, payloads) if fo.is_open]

        if not open_orders:
            logger.info(f"Order {order_id}: no open fulfillment orders, skipping fulfillment")
            states.append(WorkflowState.FULFILLMENT_SKIPPED)
            result.status = "skipped"
            result.detail = {"fulfillment_orders": len(payloads), "open": 0}
            return

        open_ids = [fo.id for fo in open_orders]
        fulfillment = await self.client.create_fulfillment(shop, open_ids, notify_customer=False)
        logger.info(f"Order {order_id}: fulfilled {len(open_ids)} fulfillment order(s)")

        states.append(WorkflowState.FULFILLMENT_CREATED)
        result.status = "fulfilled"
        result.detail = {
            "fulfillment_id": fulfillment.get("id"),
            "fulfillment_order_ids": open_ids,
        }

    async def _capture_payment(
        self,
        shop: ShopContext,
        order_id: str,
        result: SecondaryResult,
        states: list[WorkflowState],
    ) -> None:
        """Record a manual capture for the order's current total."""
        states.append(WorkflowState.PAYMENT_CAPTURE)

        order = Order.from_payload(await self.client.get_order(shop, order_id))
        amount = order.total_amount

        transaction = await self.client.create_transaction(shop, order_id, amount)
        logger.info(f"Order {order_id}: captured {amount} via manual gateway")

        states.append(WorkflowState.CAPTURED)
        result.status = "captured"
        result.detail = {
            "transaction_id": transaction.get("id"),
            "amount": str(amount),
        }
