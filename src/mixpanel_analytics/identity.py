"""Persistent identity: distinct IDs, project token and super properties."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Dict, Optional

from mixpanel_analytics.errors import PersistenceError, SerializationError
from mixpanel_analytics.events import coerce_properties
from mixpanel_analytics.storage import JsonFileStore

logger = logging.getLogger(__name__)


def generate_device_id() -> str:
    return str(uuid.uuid4())


class PersistentIdentity:
    """Identity state shared by the event and people recorders.

    Every mutating coroutine saves before returning, so attribution survives
    a crash that happens before the next flush. Writes run in a worker
    thread; only load() and save_sync() touch the disk on the calling thread.
    """

    def __init__(self, store: JsonFileStore):
        self._store = store
        self.distinct_id: str = ""
        self.people_distinct_id: str = ""
        self.token: str = ""
        self.super_properties: Dict[str, Any] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------ #
    # Load / save
    # ------------------------------------------------------------------ #

    def load(self) -> None:
        """Restore state from storage, falling back to defaults."""
        data: Optional[dict] = None
        try:
            data = self._store.read()
        except PersistenceError:
            logger.exception("Identity storage unreadable; using defaults")

        if not isinstance(data, dict):
            data = {}

        self.distinct_id = str(data.get("distinct_id") or "")
        self.people_distinct_id = str(data.get("people_distinct_id") or "")
        self.token = str(data.get("token") or "")
        props = data.get("super_properties")
        self.super_properties = dict(props) if isinstance(props, dict) else {}

        if not self.distinct_id:
            self.distinct_id = generate_device_id()
            logger.info("Generated device distinct id %s", self.distinct_id)
            self.save_sync()

    def save_sync(self) -> bool:
        """Persist current state on the calling thread. False if storage failed."""
        try:
            self._store.write(self.to_dict())
        except PersistenceError:
            logger.exception("Failed to persist identity")
            return False
        return True

    async def save(self) -> bool:
        """Persist current state from a worker thread. False if storage failed."""
        # Snapshot under the lock so the last write always holds the newest state.
        async with self._lock:
            snapshot = self.to_dict()
            try:
                await asyncio.to_thread(self._store.write, snapshot)
            except PersistenceError:
                logger.exception("Failed to persist identity")
                return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "distinct_id": self.distinct_id,
            "people_distinct_id": self.people_distinct_id,
            "token": self.token,
            "super_properties": dict(self.super_properties),
        }

    # ------------------------------------------------------------------ #
    # Identity fields
    # ------------------------------------------------------------------ #

    async def set_token(self, token: str) -> None:
        self.token = token or ""
        await self.save()

    async def set_distinct_id(self, distinct_id: str) -> None:
        if not distinct_id:
            logger.warning("Ignoring empty distinct id")
            return
        self.distinct_id = distinct_id
        await self.save()

    async def identify(self, distinct_id: str) -> None:
        """Set the distinct id used for people profile updates."""
        if not distinct_id:
            logger.warning("Ignoring empty people distinct id")
            return
        self.people_distinct_id = distinct_id
        await self.save()

    @property
    def profile_distinct_id(self) -> str:
        return self.people_distinct_id or self.distinct_id

    async def reset(self) -> None:
        """Forget the user: new device id, no people id, no super properties."""
        self.distinct_id = generate_device_id()
        self.people_distinct_id = ""
        self.super_properties = {}
        await self.save()

    # ------------------------------------------------------------------ #
    # Super properties
    # ------------------------------------------------------------------ #

    async def register_super_properties(self, properties: Dict[str, Any]) -> None:
        coerced = self._coerce(properties)
        if coerced is None:
            return
        self.super_properties.update(coerced)
        await self.save()

    async def register_super_properties_once(self, properties: Dict[str, Any]) -> None:
        coerced = self._coerce(properties)
        if coerced is None:
            return
        for key, val in coerced.items():
            self.super_properties.setdefault(key, val)
        await self.save()

    async def unregister_super_property(self, name: str) -> None:
        if name not in self.super_properties:
            return
        del self.super_properties[name]
        await self.save()

    async def clear_super_properties(self) -> None:
        self.super_properties.clear()
        await self.save()

    @staticmethod
    def _coerce(properties: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            return coerce_properties(properties)
        except SerializationError:
            logger.exception("Super properties not serializable; ignored")
            return None
