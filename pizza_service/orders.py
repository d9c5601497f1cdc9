"""
orders.py — Order Lifecycle

An order is created once from a user's cart and completed at most once by a
successful payment. Completion is the money path:

    1. Idempotence guard: an already completed order is returned as is,
       without charging, re-totalling or mailing again.
    2. Load the catalog price map (CatalogUnavailable if it cannot be read).
    3. Total = sum(unit price * quantity) over items still in the catalog,
       computed in minor units. A non-positive total is refused (EmptyOrder).
    4. One charge attempt at the gateway, keyed by the order id.
    5. Record the receipt and completion time, persist the order.
    6. Mail the invoice (best effort, reported in the result).

Once the gateway has accepted a charge nothing here reverses it; failures
after that point are reported as PartialSuccess.

Prices are taken from the catalog at completion time, not at the time the
item was put in the cart.
"""

import html
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple

import httpx

from . import config
from .catalog import Catalog
from .clients import MailClient, PaymentClient
from .datastore import DataStore
from .errors import EmptyOrder, InvalidRequest, NotFound, PartialSuccess, PaymentFailed, StorageError
from .ids import ORDER_ID_LENGTH, IdAllocator
from .logging_config import get_logger
from .models import CheckoutResult, ItemRecord, OrderRecord, OrderUpdateRequest, now_ms
from .validators import is_valid_email, is_valid_order_id

log = get_logger(__name__)

ORDERS = "orders"

INVOICE_SENT = "sent"
INVOICE_FAILED = "failed"
INVOICE_SKIPPED = "skipped"


def to_minor_units(amount: float) -> int:
    """Converts a major-unit price (e.g. 7.5) to integer minor units (750)."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def total_in_minor_units(items: Mapping[str, int], price_map: Mapping[str, ItemRecord]) -> int:
    """Sums unit price * quantity; items missing from the price map are skipped."""
    return sum(
        to_minor_units(price_map[item_id].unitPrice) * quantity
        for item_id, quantity in items.items()
        if item_id in price_map
    )


def charge_succeeded(receipt: Any) -> bool:
    return (
        isinstance(receipt, dict)
        and receipt.get("object") == "charge"
        and bool(receipt.get("paid"))
        and receipt.get("status") == "succeeded"
    )


def _format_ms(timestamp: Optional[int]) -> str:
    if timestamp is None:
        return "-"
    return datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def build_invoice(order: OrderRecord, catalog_snapshot: Mapping[str, ItemRecord]) -> Tuple[str, str]:
    """Returns (subject, html body) of the receipt for a completed order."""
    rows = []
    for item_id, quantity in order.items.items():
        item = catalog_snapshot.get(item_id)
        name = item.name if item else "(no longer on the menu)"
        description = (item.description or "") if item else ""
        price = f"{item.unitPrice:.2f}" if item else "-"
        rows.append(
            "<tr>"
            f"<td>{html.escape(name)}</td><td>{html.escape(item_id)}</td>"
            f"<td>{html.escape(description)}</td><td>{price}</td><td>{quantity}</td>"
            "</tr>"
        )

    subject = f"Order Invoice - {order.id}"
    body = (
        "<h1>Invoice</h1>"
        f"<h5>Your order #{html.escape(order.id)} has been placed successfully</h5>"
        "<p>Details</p><hr/>"
        "<ul>"
        f"<li><span>Order ID: </span><strong>{html.escape(order.id)}</strong></li>"
        f"<li><span>User ID: </span><strong>{html.escape(order.email)}</strong></li>"
        f"<li><span>Created On: </span><strong>{_format_ms(order.createdOn)}</strong></li>"
        f"<li><span>Completed On: </span><strong>{_format_ms(order.completedOn)}</strong></li>"
        "</ul>"
        "<p>Items</p><hr/>"
        "<table>"
        "<tr><th>Name</th><th>ID</th><th>Description</th><th>Price per unit</th><th>Quantity</th></tr>"
        f"{''.join(rows)}"
        "</table>"
        f"<p><span>Total: </span><strong>{order.total:.2f}</strong></p>"
    )
    return subject, body


class OrderLifecycle:
    """
    Creates, completes and administers orders stored in the `orders` collection.

    Args:
        store (DataStore): Document store.
        catalog (Catalog): Source of item existence and prices.
        payment (PaymentClient): Gateway used to charge completed orders.
        mailer (MailClient): Transport for invoices.
        id_allocator (IdAllocator, optional): Order id source (20 chars).
        currency (str, optional): Charge currency, defaults to config.PAYMENT_CURRENCY.
    """

    def __init__(self, store: DataStore, catalog: Catalog, payment: PaymentClient, mailer: MailClient,
                 id_allocator: IdAllocator = None, currency: str = None, sender: str = None):
        self.store = store
        self.catalog = catalog
        self.payment = payment
        self.mailer = mailer
        self.ids = id_allocator or IdAllocator(ORDER_ID_LENGTH)
        self.currency = currency or config.PAYMENT_CURRENCY
        self.sender = sender or config.MAIL_SENDER

    async def _filter_items(self, requested: Mapping[str, int]) -> Dict[str, int]:
        """Keeps the entries that name a catalog item and have a positive quantity."""
        snapshot = await self.catalog.price_map()
        return {
            item_id: quantity
            for item_id, quantity in (requested or {}).items()
            if item_id in snapshot and isinstance(quantity, int) and quantity > 0
        }

    # --- creation ---

    async def create(self, owner_email: str, requested_items: Mapping[str, int]) -> OrderRecord:
        """
        Creates and stores a new, not yet completed order.

        Unknown item ids are dropped silently.

        Raises:
            InvalidRequest: Invalid email, or no known item left after filtering.
            CatalogUnavailable: The catalog cannot be read.
            StorageError: The order could not be stored.
        """
        if not is_valid_email(owner_email):
            raise InvalidRequest("Missing required field: email")
        items = await self._filter_items(requested_items)
        if not items:
            raise InvalidRequest("Cannot create order. User's cart is empty")

        order = OrderRecord(id=self.ids.allocate(), email=owner_email.strip(), items=items)
        await self.store.create_record(ORDERS, order.id, order)
        log.info(f"[Order: {order.id}] Created for {order.email} with {len(items)} item(s).")
        return order

    # --- completion ---

    def _already_completed(self, order: OrderRecord) -> CheckoutResult:
        log.info(f"[Order: {order.id}] Already completed, not charging again.")
        return CheckoutResult(
            orderId=order.id,
            total=order.total,
            completedOn=order.completedOn,
            receipt=order.paymentInfo,
            alreadyCompleted=True,
            invoice=INVOICE_SKIPPED,
            info="Order already completed",
        )

    async def complete(self, order: OrderRecord, payment_source: str = None) -> CheckoutResult:
        """
        Charges the order and marks it completed.

        The in-memory `order` is updated in place. Calling this again for an
        order that is already completed (in memory or in the store) returns
        the original receipt without contacting the gateway.

        Raises:
            CatalogUnavailable: The price map cannot be loaded.
            EmptyOrder: The computed total is not positive.
            PaymentFailed: The gateway declined or could not be reached.
            PartialSuccess: Charged, but the completed order could not be stored.
        """
        log_prefix = f"[Order: {order.id}]"
        source = payment_source or config.DEFAULT_PAYMENT_SOURCE

        if order.is_completed:
            return self._already_completed(order)

        async with self.store.lock(ORDERS, order.id):
            # The stored copy wins over a stale in-memory one.
            try:
                stored = await self.store.get_record(ORDERS, order.id, OrderRecord)
            except NotFound:
                stored = None
            if stored is not None and stored.is_completed:
                order.completedOn, order.paymentInfo, order.total = stored.completedOn, stored.paymentInfo, stored.total
                return self._already_completed(stored)

            log.info(f"{log_prefix} Step 1: Loading prices...")
            price_map = await self.catalog.price_map()

            total_cents = total_in_minor_units(order.items, price_map)
            if total_cents <= 0:
                log.warning(f"{log_prefix} Refusing to charge a total of {total_cents} cents.")
                raise EmptyOrder("This order contains no items.")
            order.total = total_cents / 100

            log.info(f"{log_prefix} Step 2: Charging {total_cents} {self.currency} minor units...")
            receipt = await self.payment.create_charge(
                order_id=order.id,
                source=source,
                amount_cents=total_cents,
                currency=self.currency,
            )
            if not charge_succeeded(receipt):
                log.error(f"{log_prefix} Charge not successful (status: {receipt.get('status') if isinstance(receipt, dict) else receipt}).")
                raise PaymentFailed("Payment failed.", receipt)
            log.info(f"{log_prefix} Payment succeeded. (Charge: {receipt.get('id')})")

            order.mark_completed(receipt, max(now_ms(), order.createdOn))
            try:
                await self.store.put_record(ORDERS, order.id, order)
            except StorageError as e:
                log.critical(f"{log_prefix} CHARGED BUT NOT RECORDED: {e.message}. Manual reconciliation required!")
                raise PartialSuccess("Payment succeeded but the order could not be saved.", order.id, receipt)

        log.info(f"{log_prefix} Step 3: Sending invoice to {order.email}...")
        invoice = await self.send_invoice(order, price_map)
        info = f"Receipt mailed to {order.email}" if invoice == INVOICE_SENT else "Order completed; the receipt could not be mailed"
        return CheckoutResult(
            orderId=order.id,
            total=order.total,
            completedOn=order.completedOn,
            receipt=receipt,
            invoice=invoice,
            info=info,
        )

    async def send_invoice(self, order: OrderRecord, catalog_snapshot: Mapping[str, ItemRecord]) -> str:
        """Mails the receipt. Never raises; returns INVOICE_SENT or INVOICE_FAILED."""
        subject, body = build_invoice(order, catalog_snapshot)
        try:
            await self.mailer.send(self.sender, order.email, subject, body)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            log.error(f"[Order: {order.id}] Invoice could not be mailed: {e}", exc_info=True)
            return INVOICE_FAILED
        return INVOICE_SENT

    # --- administration ---

    async def get(self, order_id: str) -> OrderRecord:
        if not is_valid_order_id(order_id):
            raise InvalidRequest("Missing required field: id")
        return await self.store.get_record(ORDERS, order_id.strip(), OrderRecord)

    async def list(self) -> List[OrderRecord]:
        keys = await self.store.list_keys(ORDERS)
        return [await self.store.get_record(ORDERS, key, OrderRecord) for key in keys]

    async def update(self, request: OrderUpdateRequest) -> OrderRecord:
        """
        Changes the owner or the items of an order that is not completed yet.

        Items are filtered against the catalog like at creation.
        """
        if not is_valid_order_id(request.id):
            raise InvalidRequest("Missing required field: id")
        if request.email is None and request.items is None:
            raise InvalidRequest("Missing fields to update.")
        if request.email is not None and not is_valid_email(request.email):
            raise InvalidRequest("Invalid field: email")

        order_id = request.id.strip()
        async with self.store.lock(ORDERS, order_id):
            order = await self.get(order_id)
            if order.is_completed:
                raise InvalidRequest("Completed orders cannot be changed")
            if request.email is not None:
                order.email = request.email.strip()
            if request.items is not None:
                items = await self._filter_items(request.items)
                if not items:
                    raise InvalidRequest("Orders must contain at least one catalog item")
                order.items = items
            await self.store.put_record(ORDERS, order.id, order)
        log.info(f"[Order: {order.id}] Updated.")
        return order

    async def delete(self, order_id: str) -> OrderRecord:
        order = await self.get(order_id)
        await self.store.remove(ORDERS, order.id)
        log.info(f"[Order: {order.id}] Deleted.")
        return order
