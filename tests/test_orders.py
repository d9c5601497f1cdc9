"""Tests for order creation, completion and administration."""

import httpx
import pytest
from pydantic import ValidationError

from conftest import MAIL_DOMAIN
from mock_services import mock_mail_service, mock_payment_service
from pizza_service.clients import MailClient, PaymentClient
from pizza_service.errors import EmptyOrder, InvalidRequest, PartialSuccess, PaymentFailed, StorageError
from pizza_service.models import ItemRecord, OrderRecord, OrderUpdateRequest
from pizza_service.orders import (
    INVOICE_FAILED,
    INVOICE_SENT,
    ORDERS,
    OrderLifecycle,
    build_invoice,
    to_minor_units,
    total_in_minor_units,
)


async def _pizza_order(orders, menu, email="mario@pizza.com"):
    # 2 x 10.00 + 2 x 2.50
    return await orders.create(email, {menu["margherita"].id: 2, menu["cola"].id: 2})


class TestMoney:

    @pytest.mark.parametrize("amount,cents", [(7.5, 750), (12.5, 1250), (0.1 + 0.2, 30), (19.99, 1999), (0.005, 1)])
    def test_to_minor_units(self, amount, cents):
        assert to_minor_units(amount) == cents

    @pytest.mark.asyncio
    async def test_total_skips_items_missing_from_catalog(self, catalog, menu):
        prices = await catalog.price_map()
        items = {menu["itemX"].id: 2, "gone000000": 4}
        assert total_in_minor_units(items, prices) == 1500


class TestCreate:

    @pytest.mark.asyncio
    async def test_unknown_items_dropped(self, orders, menu):
        order = await orders.create("mario@pizza.com", {menu["pepperoni"].id: 1, "zzzzzzzzzz": 3, menu["cola"].id: 0})
        assert order.items == {menu["pepperoni"].id: 1}
        assert len(order.id) == 20
        assert not order.is_completed
        assert order.total == 0

    @pytest.mark.asyncio
    async def test_nothing_orderable(self, orders, menu):
        with pytest.raises(InvalidRequest):
            await orders.create("mario@pizza.com", {"zzzzzzzzzz": 3})

    @pytest.mark.asyncio
    async def test_invalid_owner(self, orders, menu):
        with pytest.raises(InvalidRequest):
            await orders.create("mario", {menu["cola"].id: 1})


class TestComplete:

    @pytest.mark.asyncio
    async def test_charges_total_and_persists(self, orders, menu):
        order = await _pizza_order(orders, menu)
        result = await orders.complete(order)

        assert result.total == 25.00
        assert result.receipt["amount"] == 2500
        assert result.receipt["currency"] == "usd"
        assert result.invoice == INVOICE_SENT
        assert not result.alreadyCompleted

        stored = await orders.get(order.id)
        assert stored.is_completed
        assert stored.completedOn >= stored.createdOn
        assert stored.paymentInfo["id"] == result.receipt["id"]
        assert stored.total == 25.00

    @pytest.mark.asyncio
    async def test_invoice_mailed(self, orders, menu):
        order = await _pizza_order(orders, menu)
        await orders.complete(order)

        assert len(mock_mail_service.outbox) == 1
        message = mock_mail_service.outbox[0]
        assert message["to"] == "mario@pizza.com"
        assert message["subject"] == f"Order Invoice - {order.id}"
        assert message["domain"] == MAIL_DOMAIN
        assert "25.00" in message["html"]
        assert "Margherita" in message["html"]

    @pytest.mark.asyncio
    async def test_second_completion_is_a_no_op(self, orders, menu):
        order = await _pizza_order(orders, menu)
        first = await orders.complete(order)
        second = await orders.complete(order)

        assert second.alreadyCompleted
        assert second.receipt == first.receipt
        assert second.completedOn == first.completedOn
        assert len(mock_payment_service.charges_by_key) == 1
        assert len(mock_mail_service.outbox) == 1

    @pytest.mark.asyncio
    async def test_stale_copy_does_not_charge_again(self, orders, menu):
        order = await _pizza_order(orders, menu)
        stale = order.model_copy(deep=True)
        first = await orders.complete(order)

        again = await orders.complete(stale)
        assert again.alreadyCompleted
        assert again.receipt == first.receipt
        assert stale.is_completed
        assert len(mock_payment_service.charges_by_key) == 1

    @pytest.mark.asyncio
    async def test_zero_total_is_never_charged(self, orders, catalog, menu):
        order = await orders.create("mario@pizza.com", {menu["cola"].id: 1})
        await catalog.delete(menu["cola"].id)

        with pytest.raises(EmptyOrder):
            await orders.complete(order)
        assert mock_payment_service.charges_by_key == {}
        assert not (await orders.get(order.id)).is_completed

    @pytest.mark.asyncio
    async def test_declined_card(self, orders, menu):
        order = await _pizza_order(orders, menu)
        with pytest.raises(PaymentFailed) as exc_info:
            await orders.complete(order, "tok_chargeDeclined")

        assert exc_info.value.gateway_response["error"]["code"] == "card_declined"
        assert not (await orders.get(order.id)).is_completed
        assert mock_mail_service.outbox == []

    @pytest.mark.asyncio
    async def test_gateway_timeout(self, store, catalog, mailer, menu):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        payment = PaymentClient(base_url="http://payment.test", transport=httpx.MockTransport(handler))
        orders = OrderLifecycle(store, catalog, payment, mailer)
        order = await _pizza_order(orders, menu)
        try:
            with pytest.raises(PaymentFailed):
                await orders.complete(order)
        finally:
            await payment.aclose()
        assert not (await orders.get(order.id)).is_completed

    @pytest.mark.asyncio
    async def test_charged_but_not_saved(self, store, orders, menu, monkeypatch):
        order = await _pizza_order(orders, menu)

        async def broken_put(*args, **kwargs):
            raise StorageError("disk full")

        monkeypatch.setattr(store, "put_record", broken_put)
        with pytest.raises(PartialSuccess) as exc_info:
            await orders.complete(order)

        assert exc_info.value.order_id == order.id
        assert exc_info.value.receipt["status"] == "succeeded"
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_invoice_failure_does_not_undo_completion(self, orders, menu):
        order = await _pizza_order(orders, menu, email="bounce@pizza.com")
        result = await orders.complete(order)

        assert result.invoice == INVOICE_FAILED
        assert (await orders.get(order.id)).is_completed

    @pytest.mark.asyncio
    async def test_misconfigured_mail_transport_does_not_fail_checkout(self, store, catalog, payment, menu):
        def handler(request):
            raise httpx.InvalidURL("bad mail url")

        mailer = MailClient(base_url="http://mail.test", domain="mg.test", transport=httpx.MockTransport(handler))
        orders = OrderLifecycle(store, catalog, payment, mailer)
        order = await _pizza_order(orders, menu)
        try:
            result = await orders.complete(order)
        finally:
            await mailer.aclose()

        assert result.invoice == INVOICE_FAILED
        assert result.receipt["status"] == "succeeded"
        assert (await orders.get(order.id)).is_completed


class TestCompletionRules:

    def test_completed_on_cannot_precede_created_on(self):
        with pytest.raises(ValidationError):
            OrderRecord(id="o" * 20, email="mario@pizza.com", items={"a" * 10: 1}, createdOn=2000, completedOn=1000)

    def test_mark_completed_only_once(self):
        order = OrderRecord(id="o" * 20, email="mario@pizza.com", items={"a" * 10: 1}, createdOn=1000)
        with pytest.raises(InvalidRequest):
            order.mark_completed({"id": "ch_1"}, 999)
        order.mark_completed({"id": "ch_1"}, 1500)
        with pytest.raises(InvalidRequest):
            order.mark_completed({"id": "ch_2"}, 3000)
        assert order.completedOn == 1500
        assert order.paymentInfo == {"id": "ch_1"}

    def test_quantities_must_be_positive(self):
        with pytest.raises(ValidationError):
            OrderRecord(id="o" * 20, email="mario@pizza.com", items={"a" * 10: 0})


class TestAdministration:

    @pytest.mark.asyncio
    async def test_update_items_before_completion(self, orders, menu):
        order = await _pizza_order(orders, menu)
        updated = await orders.update(OrderUpdateRequest(id=order.id, items={menu["pepperoni"].id: 1, "zzzzzzzzzz": 1}))
        assert updated.items == {menu["pepperoni"].id: 1}

    @pytest.mark.asyncio
    async def test_completed_orders_are_frozen(self, orders, menu):
        order = await _pizza_order(orders, menu)
        await orders.complete(order)
        with pytest.raises(InvalidRequest):
            await orders.update(OrderUpdateRequest(id=order.id, email="luigi@pizza.com"))

    def test_totals_and_receipts_not_client_supplied(self):
        with pytest.raises(ValidationError):
            OrderUpdateRequest(id="o" * 20, total=0.01)
        with pytest.raises(ValidationError):
            OrderUpdateRequest(id="o" * 20, paymentInfo={"paid": True})

    @pytest.mark.asyncio
    async def test_list_and_delete(self, store, orders, menu):
        first = await _pizza_order(orders, menu)
        second = await _pizza_order(orders, menu)
        assert {o.id for o in await orders.list()} == {first.id, second.id}
        await orders.delete(first.id)
        assert await store.list_keys(ORDERS) == [second.id]


def test_invoice_escapes_html():
    order = OrderRecord(id="o" * 20, email="mario@pizza.com", items={"a" * 10: 1}, createdOn=1000, completedOn=2000, total=3.0)
    snapshot = {"a" * 10: ItemRecord(id="a" * 10, name="<b>Bad</b>", unitPrice=3.0)}
    subject, body = build_invoice(order, snapshot)
    assert subject == f"Order Invoice - {order.id}"
    assert "&lt;b&gt;Bad&lt;/b&gt;" in body
    assert "<b>Bad</b>" not in body
    assert "3.00" in body
