"""
catalog.py — Read Access to the Item Catalog

Items are consulted at two points of an order's life: when a cart is turned
into an order (does the item exist?) and when the order is completed (what
does it cost now?). Every lookup reads the store again; there is no cache,
so a lookup reflects the catalog as of that read and nothing more.
"""

from typing import Dict, List, Optional

from .datastore import DataStore
from .errors import CatalogUnavailable, InvalidRequest, NotFound, ServiceError
from .ids import ITEM_ID_LENGTH, IdAllocator
from .logging_config import get_logger
from .models import ItemRecord
from .validators import is_valid_item_id

log = get_logger(__name__)

ITEMS = "items"


class Catalog:
    """
    Item catalog backed by the `items` collection.

    Any failure to enumerate the catalog surfaces as CatalogUnavailable; a
    caller that cannot see the catalog cannot validate a cart or price an order.
    """

    def __init__(self, store: DataStore, id_allocator: IdAllocator = None):
        self.store = store
        self.ids = id_allocator or IdAllocator(ITEM_ID_LENGTH)

    async def list(self) -> List[ItemRecord]:
        try:
            keys = await self.store.list_keys(ITEMS)
            return [await self.store.get_record(ITEMS, key, ItemRecord) for key in keys]
        except ServiceError as e:
            log.error(f"Catalog listing failed: {e.message}")
            raise CatalogUnavailable("Unable to load the list of items")

    async def price_map(self) -> Dict[str, ItemRecord]:
        """Snapshot of the whole catalog keyed by item id."""
        return {item.id: item for item in await self.list()}

    async def by_id(self, item_id: str) -> Optional[ItemRecord]:
        if not is_valid_item_id(item_id):
            return None
        try:
            return await self.store.get_record(ITEMS, item_id.strip(), ItemRecord)
        except NotFound:
            return None

    async def create(self, name: str, unit_price: float, description: str = "", image_url: str = "") -> ItemRecord:
        """Adds an item to the catalog. Not exposed over HTTP; used to seed the menu."""
        name = name.strip() if isinstance(name, str) else ""
        if not name:
            raise InvalidRequest("Missing required field: name")
        try:
            unit_price = float(unit_price)
        except (TypeError, ValueError):
            raise InvalidRequest("unitPrice must be a number")
        if unit_price <= 0:
            raise InvalidRequest("unitPrice must be greater than zero")

        item = ItemRecord(
            id=self.ids.allocate(),
            name=name,
            description=description or "",
            imageURL=image_url or "",
            unitPrice=unit_price,
        )
        await self.store.create_record(ITEMS, item.id, item)
        log.info(f"[Item: {item.id}] Added '{item.name}' at {item.unitPrice:.2f}.")
        return item

    async def delete(self, item_id: str) -> None:
        if not is_valid_item_id(item_id):
            raise InvalidRequest("Missing required field: id")
        await self.store.remove(ITEMS, item_id.strip())
        log.info(f"[Item: {item_id}] Removed from catalog.")
