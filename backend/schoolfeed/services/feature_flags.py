"""
Feature flags for the notification feed.

Two global switches:
1. notifications_enabled - feed on/off (off empties the feed, no fetching)
2. notifications_sync_enabled - live recomputation on/off (off freezes the feed)
"""
import json
from abc import ABC, abstractmethod
from typing import Optional

from schoolfeed.core.config import Settings, settings as default_settings
from schoolfeed.core.logging_config import logger
from schoolfeed.models.notification import FeedFlags
from schoolfeed.services.key_value_store import KeyValueStore

FLAG_ENABLED = "notifications_enabled"
FLAG_SYNC = "notifications_sync_enabled"


def flag_key(feature_name: str) -> str:
    return f"features.{feature_name}"


def parse_flag(raw: Optional[str]) -> bool:
    """
    Stored flag value -> bool.
    Returns True if not set (default to enabled).
    """
    if raw is None:
        return True
    text = raw.strip().lower()
    if text in ("", "1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off", "null"):
        return False
    try:
        return bool(json.loads(raw))
    except ValueError:
        return True


class FlagSource(ABC):

    @abstractmethod
    async def load(self) -> FeedFlags:
        ...


class SettingsFlagSource(FlagSource):
    """Flags fixed by configuration"""

    def __init__(self, config: Optional[Settings] = None):
        self.config = config or default_settings

    async def load(self) -> FeedFlags:
        return FeedFlags(
            enabled=self.config.NOTIFICATIONS_ENABLED,
            sync=self.config.NOTIFICATIONS_SYNC_ENABLED,
        )


class KeyValueFlagSource(FlagSource):
    """Flags an operator can flip at runtime through the key-value store"""

    def __init__(self, store: KeyValueStore):
        self.store = store

    async def _flag(self, feature_name: str) -> bool:
        try:
            return parse_flag(await self.store.get(flag_key(feature_name)))
        except Exception as e:
            logger.warning(f"[FeatureFlags] cannot read {feature_name}, assuming enabled: {e}")
            return True

    async def load(self) -> FeedFlags:
        return FeedFlags(enabled=await self._flag(FLAG_ENABLED), sync=await self._flag(FLAG_SYNC))

    async def set(self, feature_name: str, enabled: bool) -> None:
        await self.store.set(flag_key(feature_name), "true" if enabled else "false")


def create_flag_source(store: KeyValueStore, config: Optional[Settings] = None) -> FlagSource:
    config = config or default_settings
    if config.FEATURE_FLAG_SOURCE.lower() == "store":
        return KeyValueFlagSource(store)
    return SettingsFlagSource(config)
