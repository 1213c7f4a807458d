"""Build event and people-profile messages and hand them to the queue.

Both recorders read the shared PersistentIdentity at call time, so token
or distinct id changes apply to the very next message.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Dict, List, Optional, Union

from mixpanel_analytics.errors import SerializationError
from mixpanel_analytics.events import (
    MessageType,
    MixpanelMessage,
    ProfileAction,
    coerce_properties,
    coerce_value,
)
from mixpanel_analytics.identity import PersistentIdentity
from mixpanel_analytics.message_queue import MessageQueue

logger = logging.getLogger(__name__)

LIB_NAME = "python-mixpanel-analytics"

_MISSING = object()


class EventRecorder:
    """Turns track() calls into /track messages."""

    def __init__(self, identity: PersistentIdentity, queue: MessageQueue):
        self.identity = identity
        self.queue = queue

    async def set_distinct_id(self, distinct_id: str) -> None:
        await self.identity.set_distinct_id(distinct_id)

    async def track(
        self, event_name: str, properties: Optional[Dict[str, Any]] = None
    ) -> Optional[MixpanelMessage]:
        """Queue an event. Returns None if the event was dropped."""
        if not event_name:
            logger.warning("Dropping event with empty name")
            return None
        if not self.identity.token:
            logger.warning("No token set; dropping event %r", event_name)
            return None

        # Super properties first so caller properties win.
        merged = dict(self.identity.super_properties)
        merged.update(properties or {})
        try:
            props = coerce_properties(merged)
        except SerializationError:
            logger.exception("Dropping event %r: properties not serializable", event_name)
            return None

        now = time.time()
        props.setdefault("distinct_id", self.identity.distinct_id)
        props["token"] = self.identity.token
        props["time"] = int(now)
        props["$insert_id"] = uuid.uuid4().hex
        props["mp_lib"] = LIB_NAME

        message = MixpanelMessage(
            message_type=MessageType.EVENT,
            payload={"event": event_name, "properties": props},
            timestamp=now,
        )
        await self.queue.enqueue(message)
        return message


class PeopleRecorder:
    """Turns profile operations into /engage messages."""

    def __init__(self, identity: PersistentIdentity, queue: MessageQueue):
        self.identity = identity
        self.queue = queue

    async def identify(self, distinct_id: str) -> None:
        await self.identity.identify(distinct_id)

    async def set(
        self, properties: Union[Dict[str, Any], str], value: Any = _MISSING
    ) -> Optional[MixpanelMessage]:
        """``set({"a": 1})`` or ``set("a", 1)``."""
        return await self._record(ProfileAction.SET.value, _as_map(properties, value))

    async def set_once(
        self, properties: Union[Dict[str, Any], str], value: Any = _MISSING
    ) -> Optional[MixpanelMessage]:
        return await self._record(
            ProfileAction.SET_ONCE.value, _as_map(properties, value)
        )

    async def increment(
        self, properties: Union[Dict[str, Any], str], value: Any = 1
    ) -> Optional[MixpanelMessage]:
        amounts = _as_map(properties, value)
        for name, amount in amounts.items():
            if isinstance(amount, bool) or not isinstance(amount, (int, float)):
                logger.error(
                    "Dropping increment of %r: %r is not a number", name, amount
                )
                return None
        return await self._record(ProfileAction.ADD.value, amounts)

    async def set_custom_action(
        self, action_properties: Dict[str, Any]
    ) -> Optional[List[MixpanelMessage]]:
        """Send one update per ``{action: value}`` entry, e.g. ``$append``."""
        messages = []
        for action, value in action_properties.items():
            if not action:
                logger.warning("Skipping custom action with empty name")
                continue
            message = await self._record(action, value)
            if message is not None:
                messages.append(message)
        return messages or None

    async def delete_user(self) -> Optional[MixpanelMessage]:
        """Permanently delete the identified user's profile."""
        return await self._record(ProfileAction.DELETE.value, "")

    async def _record(self, action: str, value: Any) -> Optional[MixpanelMessage]:
        if not self.identity.token:
            logger.warning("No token set; dropping %s profile update", action)
            return None
        try:
            coerced = coerce_value(value)
        except SerializationError:
            logger.exception("Dropping %s profile update: value not serializable", action)
            return None

        now = time.time()
        message = MixpanelMessage(
            message_type=MessageType.PROFILE_UPDATE,
            payload={
                "$token": self.identity.token,
                "$distinct_id": self.identity.profile_distinct_id,
                "$time": int(now * 1000),
                action: coerced,
            },
            timestamp=now,
        )
        await self.queue.enqueue(message)
        return message


def _as_map(properties: Union[Dict[str, Any], str], value: Any) -> Dict[str, Any]:
    if isinstance(properties, str):
        if value is _MISSING:
            raise TypeError("a value is required when a property name is given")
        return {properties: value}
    return dict(properties)
