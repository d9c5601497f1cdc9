"""
users.py — User Ledger

Owns user records: profile fields, the cart (item id -> quantity) and the
list of order ids the user has paid for. Authentication is checked by the
caller (see workflow.CheckoutWorkflow.authorize) before any method here runs.
"""

from typing import Dict, Optional

from .catalog import Catalog
from .datastore import DataStore
from .errors import Conflict, InvalidRequest, NotFound, StorageError
from .logging_config import get_logger
from .models import UserCreateRequest, UserRecord, UserUpdateRequest
from .tokens import TOKENS
from .validators import hash_password, is_valid_email

log = get_logger(__name__)

USERS = "users"
ORDERS = "orders"


def _clean_cart(cart: Dict[str, int]) -> Dict[str, int]:
    return {item_id: quantity for item_id, quantity in cart.items() if quantity > 0}


class UserLedger:
    """
    User records in the `users` collection: profile, cart and paid order ids.

    Cart and order-list changes are read-modify-write sequences taken under
    the per-user store lock; cart additions are checked against the catalog.
    """

    def __init__(self, store: DataStore, catalog: Catalog):
        self.store = store
        self.catalog = catalog

    @staticmethod
    def _email(email: str) -> str:
        if not is_valid_email(email):
            raise InvalidRequest("Missing required field: email")
        return email.strip()

    async def create(self, request: UserCreateRequest) -> UserRecord:
        if await self.store.exists(USERS, request.email):
            raise Conflict("A user with this email already exists")
        user = UserRecord(
            email=request.email,
            password=hash_password(request.password),
            firstName=request.firstName,
            lastName=request.lastName,
            streetAddress=request.streetAddress.strip(),
        )
        await self.store.create_record(USERS, user.email, user)
        log.info(f"[User: {user.email}] Created.")
        return user

    async def get(self, email: str) -> UserRecord:
        return await self.store.get_record(USERS, self._email(email), UserRecord)

    async def update(self, request: UserUpdateRequest) -> UserRecord:
        """Applies the fields present in the request. `cart` and `orders` are replaced wholesale."""
        async with self.store.lock(USERS, request.email):
            user = await self.get(request.email)
            if request.firstName and request.firstName.strip():
                user.firstName = request.firstName.strip()
            if request.lastName and request.lastName.strip():
                user.lastName = request.lastName.strip()
            if request.streetAddress and request.streetAddress.strip():
                user.streetAddress = request.streetAddress.strip()
            if request.password:
                user.password = hash_password(request.password)
            if request.cart is not None:
                user.cart = _clean_cart(request.cart)
            if request.orders is not None:
                user.orders = list(request.orders)
            await self.store.put_record(USERS, user.email, user)
        return user

    async def delete(self, email: str, token_id: Optional[str] = None) -> UserRecord:
        """
        Deletes a user, their session token and every order they own.

        Raises:
            StorageError: If some of the user's orders could not be deleted.
        """
        email = self._email(email)
        user = await self.get(email)
        if token_id:
            token_id = token_id.strip()
            async with self.store.lock(TOKENS, token_id):
                try:
                    await self.store.remove(TOKENS, token_id)
                except NotFound:
                    pass
        await self.store.remove(USERS, email)

        failed = []
        for order_id in user.orders:
            try:
                await self.store.remove(ORDERS, order_id)
            except (NotFound, StorageError):
                failed.append(order_id)
        if failed:
            log.error(f"[User: {email}] Could not delete orders {failed}.")
            raise StorageError(
                "Errors encountered while deleting all of the user's orders. "
                "All orders may not have been deleted from the system successfully."
            )
        log.info(f"[User: {email}] Deleted with {len(user.orders)} order(s).")
        return user

    # --- cart ---

    async def set_cart_item(self, email: str, item_id: str, quantity: int) -> UserRecord:
        """Sets the quantity of one cart entry; a quantity of zero or less removes it."""
        email = self._email(email)
        if not isinstance(item_id, str) or not item_id.strip():
            raise InvalidRequest("Missing required field: itemId")
        item_id = item_id.strip()
        # Removal skips the catalog so items dropped from the menu can still leave the cart.
        if quantity > 0 and await self.catalog.by_id(item_id) is None:
            raise NotFound("Cannot find an item with the given ID")
        async with self.store.lock(USERS, email):
            user = await self.get(email)
            if quantity > 0:
                user.cart[item_id] = quantity
            else:
                user.cart.pop(item_id, None)
            await self.store.put_record(USERS, email, user)
        return user

    async def remove_from_cart(self, email: str, item_id: str) -> UserRecord:
        return await self.set_cart_item(email, item_id, 0)

    async def empty_cart(self, email: str) -> UserRecord:
        email = self._email(email)
        async with self.store.lock(USERS, email):
            user = await self.get(email)
            user.cart = {}
            await self.store.put_record(USERS, email, user)
        return user

    async def record_order(self, email: str, order_id: str) -> UserRecord:
        """Appends a paid order to the user's list and empties the cart."""
        async with self.store.lock(USERS, email):
            user = await self.get(email)
            if order_id not in user.orders:
                user.orders.append(order_id)
            user.cart = {}
            await self.store.put_record(USERS, email, user)
        log.info(f"[User: {email}] Order {order_id} recorded, cart emptied.")
        return user
