"""
ids.py — Identifier Allocation

Orders, tokens and catalog items are keyed by short random alphanumeric
identifiers. The allocator remembers every id it handed out during the
process lifetime and draws again on a collision; across processes it relies
only on the size of the random namespace (36^20 for orders and tokens).
"""

import secrets
import string
import threading

ORDER_ID_LENGTH = 20
TOKEN_ID_LENGTH = 20
ITEM_ID_LENGTH = 10

_ALPHABET = string.ascii_lowercase + string.digits


class IdAllocator:
    """Hands out fixed-length random ids, unique within this process."""

    def __init__(self, length: int):
        if length <= 0:
            raise ValueError("length must be > 0")
        self.length = length
        self._issued = set()
        self._lock = threading.Lock()

    def _draw(self) -> str:
        return "".join(secrets.choice(_ALPHABET) for _ in range(self.length))

    def allocate(self) -> str:
        with self._lock:
            new_id = self._draw()
            while new_id in self._issued:
                new_id = self._draw()
            self._issued.add(new_id)
            return new_id

    def __contains__(self, value) -> bool:
        return value in self._issued
