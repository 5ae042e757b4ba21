"""
Read-State Store - per-user set of acknowledged notification ids

In-memory set is authoritative for the session. Every mutation writes the
whole set back under `notif_read_<user>`; a failed write is logged and
otherwise ignored. Without a user identity the store is ephemeral.

A failed load leaves the store unloaded: the next write first re-reads the
stored set and merges it, so an outage at load time never overwrites the
persisted history with a partial set.
"""

import json
from typing import FrozenSet, Iterable, Optional, Set

from schoolfeed.core.logging_config import logger
from schoolfeed.services.key_value_store import KeyValueStore

READ_STATE_KEY_PREFIX = "notif_read_"


def read_state_key(user_id: str) -> str:
    return f"{READ_STATE_KEY_PREFIX}{user_id}"


def _decode(raw: Optional[str], user_id: str) -> Set[str]:
    if not raw:
        return set()
    try:
        loaded = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"[ReadState] corrupt read-state for {user_id}, starting empty")
        return set()
    if not isinstance(loaded, list):
        return set()
    return {str(item) for item in loaded}


class ReadStateStore:

    def __init__(self, store: KeyValueStore):
        self.store = store
        self.user_id: Optional[str] = None
        self._ids: Set[str] = set()
        self._loaded = True
        # ids un-read while unloaded; must not come back on merge
        self._dropped: Set[str] = set()

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def load(self, user_id: Optional[str]) -> None:
        """Discard the current set and rehydrate it for `user_id`"""
        self.user_id = user_id
        self._ids = set()
        self._dropped = set()
        self._loaded = True
        if not user_id:
            return

        try:
            raw = await self.store.get(read_state_key(user_id))
        except Exception as e:
            logger.warning(f"[ReadState] load failed for {user_id}, will merge on next write: {e}")
            self._loaded = False
            return
        self._ids = _decode(raw, user_id)

    def is_read(self, notification_id: str) -> bool:
        return notification_id in self._ids

    @property
    def ids(self) -> FrozenSet[str]:
        return frozenset(self._ids)

    async def mark_read(self, notification_id: str) -> None:
        self._dropped.discard(notification_id)
        if notification_id in self._ids and self._loaded:
            return
        self._ids.add(notification_id)
        await self._persist()

    async def mark_unread(self, notification_id: str) -> None:
        if not self._loaded:
            self._dropped.add(notification_id)
        elif notification_id not in self._ids:
            return
        self._ids.discard(notification_id)
        await self._persist()

    async def mark_many_read(self, notification_ids: Iterable[str]) -> None:
        notification_ids = set(notification_ids)
        self._dropped.difference_update(notification_ids)
        before = len(self._ids)
        self._ids.update(notification_ids)
        if len(self._ids) != before or not self._loaded:
            await self._persist()

    async def discard_many(self, notification_ids: Iterable[str]) -> None:
        notification_ids = set(notification_ids)
        if not self._loaded:
            self._dropped.update(notification_ids)
            self._ids.difference_update(notification_ids)
            await self._persist()
            return
        doomed = self._ids.intersection(notification_ids)
        if not doomed:
            return
        self._ids.difference_update(doomed)
        await self._persist()

    async def clear(self) -> None:
        self._ids = set()
        self._dropped = set()
        if not self.user_id:
            return
        try:
            await self.store.remove(read_state_key(self.user_id))
            self._loaded = True
        except Exception as e:
            logger.warning(f"[ReadState] clear failed for {self.user_id}: {e}")

    async def _merge_stored(self) -> bool:
        try:
            raw = await self.store.get(read_state_key(self.user_id))
        except Exception as e:
            logger.warning(f"[ReadState] still unable to read {self.user_id}, write skipped: {e}")
            return False
        self._ids |= _decode(raw, self.user_id) - self._dropped
        self._dropped = set()
        self._loaded = True
        logger.info(f"[ReadState] merged stored read-state for {self.user_id}")
        return True

    async def _persist(self) -> None:
        if not self.user_id:
            return
        if not self._loaded and not await self._merge_stored():
            return
        try:
            await self.store.set(read_state_key(self.user_id), json.dumps(sorted(self._ids)))
        except Exception as e:
            logger.warning(f"[ReadState] persist failed for {self.user_id}: {e}")
