"""
workflow.py — Checkout Orchestration

This module contains the checkout sequence that turns a user's cart into a
paid order. It coordinates the token service, the user ledger and the order
lifecycle in a fixed order:

1. TokenCheck          — the token in the request header must be live and belong to the user
2. UserLookup          — the user record must exist
3. CartNotEmptyCheck   — the cart must hold at least one entry
4. OrderCreate         — a new order is stored from the cart (unknown items dropped)
5. OrderComplete       — total, charge, receipt, invoice (see orders.OrderLifecycle.complete)
6. UserOrderListAppend — the order id is appended to the user and the cart emptied

Nothing is rolled back once the charge has gone through: a failure in step 6
is reported as PartialSuccess and left for manual reconciliation.

Side effects that must not influence the response (the sliding token
extension) run as tracked background tasks.
"""

import asyncio
from typing import Awaitable, Set

from . import config
from .errors import EmptyCart, InvalidRequest, NotFound, PartialSuccess, StorageError
from .logging_config import get_logger
from .models import CheckoutResult, TokenRecord
from .orders import OrderLifecycle
from .tokens import TokenService
from .users import UserLedger
from .validators import is_valid_email

log = get_logger(__name__)


class TaskRegistry:
    """
    Fire-and-forget tasks whose outcome is only logged.

    Tasks are kept referenced until they finish; `drain()` waits for all of
    them (used on shutdown and by tests).
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Awaitable, description: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)

        def _done(t: asyncio.Task):
            self._tasks.discard(t)
            if t.cancelled():
                log.warning(f"Background task cancelled: {description}")
            elif t.exception() is not None:
                log.warning(f"Background task failed: {description}: {t.exception()}")

        task.add_done_callback(_done)
        return task

    async def drain(self):
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def __len__(self):
        return len(self._tasks)


class CheckoutWorkflow:
    """
    Composes token verification, the user ledger and the order lifecycle.

    Args:
        tokens (TokenService): Verifies and extends tokens.
        users (UserLedger): Reads users and records their orders.
        orders (OrderLifecycle): Creates and completes orders.
        background (TaskRegistry, optional): Registry for fire-and-forget work.
    """

    def __init__(self, tokens: TokenService, users: UserLedger, orders: OrderLifecycle,
                 background: TaskRegistry = None):
        self.tokens = tokens
        self.users = users
        self.orders = orders
        self.background = background or TaskRegistry()

    async def authorize(self, token_id: str, email: str) -> TokenRecord:
        """
        Verifies the token for `email` and schedules a sliding extension of its expiry.

        Raises:
            Unauthorized: Missing, unknown, foreign or expired token.
        """
        token = await self.tokens.verify(token_id, email)
        self.background.spawn(self.tokens.extend(token.id), f"extend token of {token.email}")
        return token

    async def checkout(self, email: str, token_id: str, payment_source: str = None) -> CheckoutResult:
        """
        Executes the complete checkout for one user.

        Args:
            email (str): The user placing the order.
            token_id (str): Token from the `tokenid` request header.
            payment_source (str, optional): Payment method token; defaults to config.DEFAULT_PAYMENT_SOURCE.

        Returns:
            CheckoutResult: Receipt and invoice status of the completed order.

        Raises:
            InvalidRequest: Invalid email, or nothing orderable in the cart.
            Unauthorized: Token check failed.
            NotFound: No such user.
            EmptyCart: The cart has no entries.
            CatalogUnavailable, EmptyOrder, PaymentFailed, StorageError: From order creation/completion.
            PartialSuccess: Charged, but the order or the user record could not be updated.
        """
        if not is_valid_email(email):
            raise InvalidRequest("Missing required field: email")
        email = email.strip()
        log_prefix = f"[User: {email}]"
        source = payment_source or config.DEFAULT_PAYMENT_SOURCE

        log.info(f"{log_prefix} Starting checkout.")

        # --- 1. TokenCheck ---
        await self.authorize(token_id, email)

        # --- 2. UserLookup ---
        user = await self.users.get(email)

        # --- 3. CartNotEmptyCheck ---
        if not user.cart:
            log.info(f"{log_prefix} Checkout refused: cart is empty.")
            raise EmptyCart("Cannot create order. Cart is empty.")

        # --- 4. OrderCreate ---
        order = await self.orders.create(email, user.cart)
        log.info(f"{log_prefix} Order {order.id} created, completing payment...")

        # --- 5. OrderComplete ---
        result = await self.orders.complete(order, source)

        # --- 6. UserOrderListAppend ---
        try:
            await self.users.record_order(email, order.id)
        except (StorageError, NotFound) as e:
            log.critical(
                f"{log_prefix} Order {order.id} is paid but the user record could not be updated: "
                f"{e.message}. Manual action required!"
            )
            raise PartialSuccess(
                "Payment succeeded but the order could not be added to the user's account.",
                order.id,
                result.receipt,
            )

        log.info(f"{log_prefix} Checkout of order {order.id} finished (total {result.total:.2f}).")
        return result
