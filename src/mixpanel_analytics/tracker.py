"""MixpanelTracker — the main entry point of the SDK.

Owns the persistent identity, the event and people recorders, and the
message queue, and exposes the operations an application calls.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

import httpx

from mixpanel_analytics.config import MixpanelConfiguration
from mixpanel_analytics.events import MixpanelMessage, to_mixpanel_date
from mixpanel_analytics.identity import PersistentIdentity
from mixpanel_analytics.message_queue import MessageQueue
from mixpanel_analytics.recorders import EventRecorder, PeopleRecorder
from mixpanel_analytics.storage import JsonFileStore

logger = logging.getLogger(__name__)

IDENTITY_FILENAME = "identity.json"


class MixpanelTracker:
    """Records Mixpanel events and people updates.

    Usage — direct::

        tracker = MixpanelTracker(token="YOUR_PROJECT_TOKEN")
        tracker.start()
        await tracker.register_super_properties({"app_version": "2.1.0"})
        await tracker.track_event("Signed Up", {"plan": "free"})
        await tracker.set_profile_property("plan", "free")
        await tracker.close()

    Usage — context manager::

        async with MixpanelTracker(token="...") as tracker:
            await tracker.track_event("Opened App")

    Usage — FastAPI middleware::

        from mixpanel_analytics import MixpanelMiddleware
        app.add_middleware(MixpanelMiddleware, tracker=tracker)
    """

    def __init__(
        self,
        token: str = "",
        config: Optional[MixpanelConfiguration] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = (config or MixpanelConfiguration()).validate()

        self._identity = PersistentIdentity(
            JsonFileStore(self.config.storage_dir / IDENTITY_FILENAME)
        )
        self._identity.load()
        if token and token != self._identity.token:
            self._identity.token = token
            self._identity.save_sync()

        self._queue = MessageQueue(self.config, client=client)
        self._event = EventRecorder(self._identity, self._queue)
        self._people = PeopleRecorder(self._identity, self._queue)
        self._pending_tasks: Set[asyncio.Task] = set()

    async def __aenter__(self) -> "MixpanelTracker":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ------------------------------------------------------------------ #
    # Components
    # ------------------------------------------------------------------ #

    @property
    def identity(self) -> PersistentIdentity:
        return self._identity

    @property
    def event(self) -> EventRecorder:
        return self._event

    @property
    def people(self) -> PeopleRecorder:
        return self._people

    @property
    def message_queue(self) -> MessageQueue:
        return self._queue

    # ------------------------------------------------------------------ #
    # Configuration and identity
    # ------------------------------------------------------------------ #

    async def set_configuration(self, config: MixpanelConfiguration) -> None:
        try:
            await self._queue.set_configuration(config)
        except ValueError:
            logger.exception("Rejected invalid configuration")
            return
        self.config = config

    async def set_token(self, token: str) -> None:
        await self._identity.set_token(token)

    async def set_event_distinct_id(self, distinct_id: str) -> None:
        await self._event.set_distinct_id(distinct_id)

    async def identify(self, distinct_id: str) -> None:
        """Set the distinct id used for people profile updates."""
        await self._people.identify(distinct_id)

    async def reset(self) -> None:
        await self._identity.reset()

    # ------------------------------------------------------------------ #
    # Events
    # ------------------------------------------------------------------ #

    async def track_event(
        self, event_name: str, properties: Optional[Dict[str, Any]] = None
    ) -> Optional[MixpanelMessage]:
        return await self._event.track(event_name, properties)

    # ------------------------------------------------------------------ #
    # People profile
    # ------------------------------------------------------------------ #

    async def set_profile_properties(
        self, properties: Dict[str, Any]
    ) -> Optional[MixpanelMessage]:
        return await self._people.set(properties)

    async def set_profile_property(
        self, name: str, value: Any
    ) -> Optional[MixpanelMessage]:
        return await self._people.set(name, value)

    async def set_once_profile_properties(
        self, properties: Dict[str, Any]
    ) -> Optional[MixpanelMessage]:
        return await self._people.set_once(properties)

    async def set_once_profile_property(
        self, name: str, value: Any
    ) -> Optional[MixpanelMessage]:
        return await self._people.set_once(name, value)

    async def increment_profile_property(
        self, name: str, value: float = 1
    ) -> Optional[MixpanelMessage]:
        return await self._people.increment(name, value)

    async def set_custom_action(
        self, action_properties: Dict[str, Any]
    ) -> Optional[List[MixpanelMessage]]:
        return await self._people.set_custom_action(action_properties)

    async def delete_user(self) -> Optional[MixpanelMessage]:
        """Delete the identified user's profile.

        Later updates with the same distinct id start a fresh profile.
        """
        return await self._people.delete_user()

    # ------------------------------------------------------------------ #
    # Super properties
    # ------------------------------------------------------------------ #

    async def register_super_properties(self, properties: Dict[str, Any]) -> None:
        await self._identity.register_super_properties(properties)

    async def register_super_properties_once(self, properties: Dict[str, Any]) -> None:
        await self._identity.register_super_properties_once(properties)

    async def unregister_super_property(self, name: str) -> None:
        await self._identity.unregister_super_property(name)

    async def unregister_all_super_properties(self) -> None:
        await self._identity.clear_super_properties()

    # ------------------------------------------------------------------ #
    # Delivery
    # ------------------------------------------------------------------ #

    def start(self) -> None:
        """Start periodic flushing (when auto_flush is enabled)."""
        self._queue.start()

    async def flush(self) -> int:
        """Force flush queued messages to Mixpanel."""
        return await self._queue.flush()

    def register_pending_task(self, task: asyncio.Task) -> None:
        """Track a fire-and-forget recording task so close() can await it."""
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)

    async def drain_pending(self) -> None:
        if not self._pending_tasks:
            return
        results = await asyncio.gather(*self._pending_tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error("Pending recording task failed: %r", result)

    async def close(self) -> None:
        """Drain pending recordings, flush, and release resources."""
        await self.drain_pending()
        await self._queue.close()
        logger.info("MixpanelTracker closed")

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def convert_to_mixpanel_date_format(value: datetime) -> str:
        return to_mixpanel_date(value)
