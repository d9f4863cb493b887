"""
Tests for the order tagging workflow.
"""
from decimal import Decimal

import pytest

from dashproxy.services.errors import PartialWorkflowFailure, UpstreamCallError, ValidationError
from dashproxy.services.models import Order
from dashproxy.services.workflow import (
    KnownStatuses,
    MarkCompleted,
    MarkShipped,
    OrderTagWorkflow,
    Retag,
    WorkflowState,
    resolve_intent,
)


class TestResolveIntent:
    """Tests for mapping a tag to an intent."""

    def test_shipped_without_known_status(self):
        """Test Shipped with no known status resolves to a fulfillment."""
        assert resolve_intent("Shipped") == MarkShipped("Shipped")

    def test_shipped_when_unfulfilled(self):
        """Test Shipped on an unfulfilled order resolves to a fulfillment."""
        known = KnownStatuses(fulfillment_status="unfulfilled")

        assert isinstance(resolve_intent("Shipped", known), MarkShipped)

    def test_shipped_when_already_fulfilled_is_plain_retag(self):
        """Test Shipped on a fulfilled order only retags."""
        known = KnownStatuses(fulfillment_status="fulfilled")

        assert resolve_intent("Shipped", known) == Retag("Shipped")

    def test_completed(self):
        """Test Completed resolves to a payment capture."""
        assert resolve_intent("Completed") == MarkCompleted("Completed")

    def test_other_tags_are_retag(self):
        """Test unrecognised tags only retag."""
        assert resolve_intent("Returned") == Retag("Returned")

    def test_match_is_case_sensitive(self):
        """Test a lowercase shipped tag does not trigger fulfillment."""
        assert resolve_intent("shipped") == Retag("shipped")


class TestValidation:
    """Tests for required-field checks."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("order_id,tag", [
        (None, "Shipped"),
        ("1001", None),
        ("", "Shipped"),
        ("1001", "   "),
        (None, None),
    ])
    async def test_missing_fields_make_no_upstream_calls(self, shop, mock_upstream, order_id, tag):
        """Test missing order id or tag fails before any upstream call."""
        workflow = OrderTagWorkflow(mock_upstream)

        with pytest.raises(ValidationError):
            await workflow.apply_order_tag(shop, order_id, tag)

        mock_upstream.update_order_tags.assert_not_awaited()
        mock_upstream.list_fulfillment_orders.assert_not_awaited()
        mock_upstream.get_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_validation_error_names_fields(self, shop, mock_upstream):
        """Test the validation error lists every missing field."""
        workflow = OrderTagWorkflow(mock_upstream)

        with pytest.raises(ValidationError) as exc_info:
            await workflow.apply_order_tag(shop, None, None)

        assert exc_info.value.fields == ["orderId", "tag"]


class TestRetag:
    """Tests for tags without follow-up."""

    @pytest.mark.asyncio
    async def test_retag_only_updates_tags(self, shop, mock_upstream):
        """Test a plain tag makes exactly one upstream call."""
        workflow = OrderTagWorkflow(mock_upstream)

        outcome = await workflow.apply_order_tag(shop, "1001", "Returned")

        mock_upstream.update_order_tags.assert_awaited_once_with(shop, "1001", "Returned")
        mock_upstream.list_fulfillment_orders.assert_not_awaited()
        mock_upstream.create_transaction.assert_not_awaited()
        assert outcome.success is True
        assert outcome.tag == "Returned"
        assert outcome.intent == "Retag"
        assert outcome.secondary.status == "not_applicable"
        assert outcome.states == [
            WorkflowState.VALIDATING, WorkflowState.MUTATING, WorkflowState.IDLE, WorkflowState.DONE,
        ]

    @pytest.mark.asyncio
    async def test_tag_is_trimmed(self, shop, mock_upstream):
        """Test order id and tag are trimmed before use."""
        workflow = OrderTagWorkflow(mock_upstream)

        outcome = await workflow.apply_order_tag(shop, " 1001 ", "  VIP ")

        mock_upstream.update_order_tags.assert_awaited_once_with(shop, "1001", "VIP")
        assert outcome.order_id == "1001"


class TestShipped:
    """Tests for the fulfillment branch."""

    @pytest.mark.asyncio
    async def test_fulfils_only_open_fulfillment_orders(self, shop, mock_upstream):
        """Test closed fulfillment orders are left out of the fulfillment."""
        mock_upstream.list_fulfillment_orders.return_value = [
            {"id": 11, "status": "open"},
            {"id": 12, "status": "closed"},
        ]
        workflow = OrderTagWorkflow(mock_upstream)

        outcome = await workflow.apply_order_tag(shop, "1001", "Shipped")

        mock_upstream.create_fulfillment.assert_awaited_once_with(shop, [11], notify_customer=False)
        assert outcome.success is True
        assert outcome.secondary.action == "fulfillment"
        assert outcome.secondary.status == "fulfilled"
        assert outcome.secondary.detail["fulfillment_order_ids"] == [11]
        assert WorkflowState.FULFILLMENT_CREATED in outcome.states

    @pytest.mark.asyncio
    async def test_all_closed_skips_fulfillment(self, shop, mock_upstream):
        """Test no fulfillment is created when nothing is open."""
        mock_upstream.list_fulfillment_orders.return_value = [
            {"id": 11, "status": "closed"},
            {"id": 12, "status": "closed"},
        ]
        workflow = OrderTagWorkflow(mock_upstream)

        outcome = await workflow.apply_order_tag(shop, "1001", "Shipped")

        mock_upstream.create_fulfillment.assert_not_awaited()
        assert outcome.success is True
        assert outcome.secondary.status == "skipped"
        assert WorkflowState.FULFILLMENT_SKIPPED in outcome.states

    @pytest.mark.asyncio
    async def test_known_fulfilled_order_skips_lookup(self, shop, mock_upstream):
        """Test a known fulfilled order is only retagged."""
        workflow = OrderTagWorkflow(mock_upstream)

        outcome = await workflow.apply_order_tag(
            shop, "1001", "Shipped", KnownStatuses(fulfillment_status="fulfilled")
        )

        mock_upstream.update_order_tags.assert_awaited_once()
        mock_upstream.list_fulfillment_orders.assert_not_awaited()
        assert outcome.intent == "Retag"

    @pytest.mark.asyncio
    async def test_failed_tag_update_skips_follow_up(self, shop, mock_upstream):
        """Test a failed tag update raises and never fulfils."""
        mock_upstream.update_order_tags.side_effect = UpstreamCallError("PUT failed", status_code=503)
        workflow = OrderTagWorkflow(mock_upstream)

        with pytest.raises(UpstreamCallError):
            await workflow.apply_order_tag(shop, "1001", "Shipped")

        mock_upstream.list_fulfillment_orders.assert_not_awaited()
        mock_upstream.create_fulfillment.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_fulfillment_is_partial_failure(self, shop, mock_upstream):
        """Test a failed fulfillment keeps the tag and reports the error."""
        mock_upstream.list_fulfillment_orders.return_value = [{"id": 11, "status": "open"}]
        mock_upstream.create_fulfillment.side_effect = UpstreamCallError(
            "POST fulfillments.json returned 422", status_code=422, method="POST", path="fulfillments.json"
        )
        workflow = OrderTagWorkflow(mock_upstream)

        with pytest.raises(PartialWorkflowFailure) as exc_info:
            await workflow.apply_order_tag(shop, "1001", "Shipped")

        outcome = exc_info.value.outcome
        assert outcome.success is False
        assert outcome.tag == "Shipped"
        assert outcome.secondary.action == "fulfillment"
        assert outcome.secondary.status == "failed"
        assert outcome.secondary.error["status_code"] == 422
        assert outcome.states[-1] == WorkflowState.FAILED
        # tag update is not rolled back
        mock_upstream.update_order_tags.assert_awaited_once()


class TestCompleted:
    """Tests for the payment capture branch."""

    @pytest.mark.asyncio
    async def test_captures_order_total(self, shop, mock_upstream):
        """Test Completed captures the order total as a decimal."""
        mock_upstream.get_order.return_value = {"id": 1001, "total_price": "129.95"}
        workflow = OrderTagWorkflow(mock_upstream)

        outcome = await workflow.apply_order_tag(shop, "1001", "Completed")

        mock_upstream.create_transaction.assert_awaited_once_with(shop, "1001", Decimal("129.95"))
        assert outcome.success is True
        assert outcome.secondary.action == "payment_capture"
        assert outcome.secondary.status == "captured"
        assert outcome.secondary.detail == {"transaction_id": 777, "amount": "129.95"}
        assert outcome.states[-2:] == [WorkflowState.CAPTURED, WorkflowState.DONE]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("order", [
        {"id": 1001, "total_price": "n/a"},
        {"id": 1001, "total_price": "NaN"},
        {"id": 1001, "total_price": "Infinity"},
        {"id": 1001, "total_price": "-5.00"},
        {"id": 1001, "total_price": None},
        {"id": 1001},
        {},
    ])
    async def test_unusable_total_is_partial_failure(self, shop, mock_upstream, order):
        """Test a missing or invalid total never reaches the capture call."""
        mock_upstream.get_order.return_value = order
        workflow = OrderTagWorkflow(mock_upstream)

        with pytest.raises(PartialWorkflowFailure) as exc_info:
            await workflow.apply_order_tag(shop, "1001", "Completed")

        mock_upstream.create_transaction.assert_not_awaited()
        assert isinstance(exc_info.value.cause, ValueError)
        assert exc_info.value.outcome.secondary.action == "payment_capture"
        assert exc_info.value.outcome.secondary.status == "failed"

    @pytest.mark.asyncio
    async def test_order_lookup_failure_is_partial_failure(self, shop, mock_upstream):
        """Test a failed order lookup keeps the tag and skips the capture."""
        mock_upstream.get_order.side_effect = UpstreamCallError("GET failed", status_code=500)
        workflow = OrderTagWorkflow(mock_upstream)

        with pytest.raises(PartialWorkflowFailure) as exc_info:
            await workflow.apply_order_tag(shop, "1001", "Completed")

        assert isinstance(exc_info.value.cause, UpstreamCallError)
        mock_upstream.create_transaction.assert_not_awaited()


class TestOrderTotal:
    """Tests for parsing an order's total price."""

    def test_parses_decimal(self):
        """Test a numeric total is parsed exactly."""
        order = Order.from_payload({"id": 1, "total_price": "10.10"})

        assert order.total_amount == Decimal("10.10")

    def test_numeric_payload_value(self):
        """Test a JSON number total is accepted."""
        order = Order.from_payload({"id": 1, "total_price": 7})

        assert order.total_amount == Decimal("7")

    def test_zero_total_is_allowed(self):
        """Test a genuine zero total parses."""
        order = Order.from_payload({"id": 1, "total_price": "0.00"})

        assert order.total_amount == Decimal("0.00")

    def test_missing_total_is_not_zero(self):
        """Test a missing total stays missing instead of becoming zero."""
        order = Order.from_payload({"id": 1})

        assert order.total_price is None
        with pytest.raises(ValueError, match="no total_price"):
            order.total_amount
