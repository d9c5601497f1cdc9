"""
datastore.py — Async JSON Document Store

Each record lives in its own file, `<base_dir>/<collection>/<key>.json`.
All file access goes through aiofiles so a slow disk suspends only the
request that touches it.

Concurrency: the store itself has last-writer-wins semantics. Callers that
read, modify and write back a record take `store.lock(collection, key)` to
serialise those sequences within this process.
"""

import asyncio
import json
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Type, TypeVar

import aiofiles
import aiofiles.os
from pydantic import BaseModel, ValidationError

from . import config
from .errors import CorruptRecord, InvalidRequest, NotFound, StorageError
from .logging_config import get_logger

log = get_logger(__name__)

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9._@+-]+$")

RecordT = TypeVar("RecordT", bound=BaseModel)


class DataStore:
    """
    Async CRUD over JSON files grouped into collections (sub-directories).

    Args:
        base_dir (str, optional): Root directory; defaults to config.DATA_DIR.
    """

    def __init__(self, base_dir=None):
        self.base_dir = Path(base_dir or config.DATA_DIR)
        self._locks: Dict[str, asyncio.Lock] = {}

    def _collection_dir(self, collection: str) -> Path:
        if not _KEY_PATTERN.match(collection or ""):
            raise InvalidRequest(f"Invalid collection name: {collection!r}")
        return self.base_dir / collection

    def _path(self, collection: str, key: str) -> Path:
        if not isinstance(key, str) or not _KEY_PATTERN.match(key) or key.startswith("."):
            raise InvalidRequest(f"Invalid record key: {key!r}")
        return self._collection_dir(collection) / f"{key}.json"

    def lock(self, collection: str, key: str) -> asyncio.Lock:
        """Returns the process-local lock guarding one record."""
        return self._locks.setdefault(f"{collection}/{key}", asyncio.Lock())

    async def _ensure_collection(self, collection: str) -> None:
        await aiofiles.os.makedirs(self._collection_dir(collection), exist_ok=True)

    async def create(self, collection: str, key: str, value: Dict[str, Any]) -> None:
        """
        Stores a new record.

        Raises:
            StorageError: If the record already exists or cannot be written.
        """
        path = self._path(collection, key)
        try:
            await self._ensure_collection(collection)
            async with aiofiles.open(path, "x", encoding="utf-8") as f:
                await f.write(json.dumps(value))
        except FileExistsError:
            raise StorageError(f"Record {collection}/{key} already exists")
        except OSError as e:
            log.error(f"Could not create {collection}/{key}: {e}")
            raise StorageError(f"Could not create {collection}/{key}")

    async def get(self, collection: str, key: str) -> Dict[str, Any]:
        """
        Reads and parses one record.

        Raises:
            NotFound: If no record exists under the key.
            CorruptRecord: If the file does not hold a JSON object.
            StorageError: On any other I/O failure.
        """
        path = self._path(collection, key)
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                raw = await f.read()
        except FileNotFoundError:
            raise NotFound(f"Cannot find {collection}/{key}")
        except OSError as e:
            log.error(f"Could not read {collection}/{key}: {e}")
            raise StorageError(f"Could not read {collection}/{key}")

        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            log.error(f"Record {collection}/{key} is not valid JSON.")
            raise CorruptRecord(f"Record {collection}/{key} is corrupt")
        if not isinstance(data, dict):
            raise CorruptRecord(f"Record {collection}/{key} is corrupt")
        return data

    async def put(self, collection: str, key: str, value: Dict[str, Any]) -> None:
        """Creates or overwrites a record. The new content replaces the old file atomically."""
        path = self._path(collection, key)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            await self._ensure_collection(collection)
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(value))
            await aiofiles.os.replace(tmp_path, path)
        except OSError as e:
            log.error(f"Could not write {collection}/{key}: {e}")
            raise StorageError(f"Could not write {collection}/{key}")

    async def remove(self, collection: str, key: str) -> None:
        path = self._path(collection, key)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            raise NotFound(f"Cannot find {collection}/{key}")
        except OSError as e:
            log.error(f"Could not delete {collection}/{key}: {e}")
            raise StorageError(f"Could not delete {collection}/{key}")

    async def exists(self, collection: str, key: str) -> bool:
        return await aiofiles.os.path.exists(self._path(collection, key))

    async def list_keys(self, collection: str) -> List[str]:
        """Returns the sorted keys of a collection; an absent collection is empty."""
        directory = self._collection_dir(collection)
        try:
            names = await aiofiles.os.listdir(directory)
        except FileNotFoundError:
            return []
        except OSError as e:
            log.error(f"Could not list {collection}: {e}")
            raise StorageError(f"Could not list {collection}")
        return sorted(os.path.splitext(name)[0] for name in names if name.endswith(".json"))

    # --- typed records ---

    async def get_record(self, collection: str, key: str, model: Type[RecordT]) -> RecordT:
        """Reads one record and validates it against its schema."""
        data = await self.get(collection, key)
        try:
            return model.model_validate(data)
        except ValidationError as e:
            log.error(f"Record {collection}/{key} does not match {model.__name__}: {e.error_count()} error(s)")
            raise CorruptRecord(f"Record {collection}/{key} is corrupt")

    async def create_record(self, collection: str, key: str, record: BaseModel) -> None:
        await self.create(collection, key, record.model_dump())

    async def put_record(self, collection: str, key: str, record: BaseModel) -> None:
        await self.put(collection, key, record.model_dump())
