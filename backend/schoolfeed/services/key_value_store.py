"""
Persistent key-value port

The feed engine only ever talks to `KeyValueStore`. Which backend sits behind
it (Redis or a local JSON file) is decided once, in `create_key_value_store`.
"""

import asyncio
import json
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

import aiofiles

from schoolfeed.core.config import Settings, settings as default_settings
from schoolfeed.core.exceptions import PersistenceError
from schoolfeed.core.logging_config import logger
from schoolfeed.core.redis_client import RedisClient


class KeyValueStore(ABC):
    """String key -> string value persistence"""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set(self, key: str, value: str) -> bool:
        ...

    @abstractmethod
    async def remove(self, key: str) -> bool:
        ...

    async def close(self) -> None:
        """Release any held resources"""


class RedisKeyValueStore(KeyValueStore):
    """
    Keys live in Redis under a common prefix.

    Connection errors raise PersistenceError instead of reading as a missing
    key, so callers never mistake an outage for an empty value.
    """

    def __init__(self, client: RedisClient, prefix: str = "schoolfeed:"):
        self.client = client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def _redis(self, key: str):
        if self.client.redis is None:
            raise PersistenceError("Redis is not connected", key=key)
        return self.client.redis

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._redis(key).get(self._key(key))
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Redis GET failed: {e}", key=key) from e

    async def set(self, key: str, value: str) -> bool:
        try:
            return bool(await self._redis(key).set(self._key(key), value))
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Redis SET failed: {e}", key=key) from e

    async def remove(self, key: str) -> bool:
        try:
            return await self._redis(key).delete(self._key(key)) > 0
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Redis DELETE failed: {e}", key=key) from e

    async def close(self) -> None:
        await self.client.disconnect()

class FileKeyValueStore(KeyValueStore):
    """
    All keys in one JSON document on disk.

    Reads and writes are serialized by an asyncio.Lock; every write rewrites
    the whole document through a temp file + rename.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = asyncio.Lock()
        self._data: Optional[Dict[str, str]] = None

    async def _load(self) -> Dict[str, str]:
        if self._data is not None:
            return self._data
        if not self.path.exists():
            self._data = {}
            return self._data
        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                content = await f.read()
        except OSError as e:
            raise PersistenceError(f"Cannot read {self.path}: {e}") from e
        try:
            loaded = json.loads(content) if content.strip() else {}
        except json.JSONDecodeError:
            logger.warning(f"[FileKeyValueStore] corrupt store at {self.path}, starting empty")
            loaded = {}
        self._data = loaded if isinstance(loaded, dict) else {}
        return self._data

    async def _flush(self, key: str) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(self._data))
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise PersistenceError(f"Cannot write {self.path}: {e}", key=key) from e

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            data = await self._load()
            return data.get(key)

    async def set(self, key: str, value: str) -> bool:
        async with self._lock:
            data = await self._load()
            data[key] = value
            await self._flush(key)
            return True

    async def remove(self, key: str) -> bool:
        async with self._lock:
            data = await self._load()
            if key not in data:
                return False
            del data[key]
            await self._flush(key)
            return True


class MemoryKeyValueStore(KeyValueStore):
    """Process-local store, nothing survives a restart"""

    def __init__(self):
        self._data: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> bool:
        self._data[key] = value
        return True

    async def remove(self, key: str) -> bool:
        return self._data.pop(key, None) is not None


async def create_key_value_store(config: Optional[Settings] = None) -> KeyValueStore:
    """Build the store selected by FEED_STORE_BACKEND"""
    config = config or default_settings
    backend = config.FEED_STORE_BACKEND.lower()

    if backend == "redis":
        client = RedisClient(config.REDIS_URL)
        await client.connect()
        logger.info("[KeyValueStore] using redis backend")
        return RedisKeyValueStore(client, prefix=config.FEED_STORE_PREFIX)
    if backend == "memory":
        logger.info("[KeyValueStore] using in-memory backend")
        return MemoryKeyValueStore()
    if backend == "file":
        logger.info(f"[KeyValueStore] using file backend at {config.store_path}")
        return FileKeyValueStore(config.store_path)

    raise ValueError(f"Unknown FEED_STORE_BACKEND: {config.FEED_STORE_BACKEND}")
