"""Mixpanel message types and data model.

A message is either a tracked event (sent to /track) or a people profile
update (sent to /engage). Messages are immutable once created and carry
a local ``message_id`` used only to address them inside the queue.
"""

from __future__ import annotations

import copy
import math
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict

from mixpanel_analytics.errors import SerializationError

MIXPANEL_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class MessageType(str, Enum):
    """Which ingestion endpoint a message belongs to."""

    EVENT = "event"
    PROFILE_UPDATE = "profile_update"


class ProfileAction(str, Enum):
    """People profile operations with a dedicated helper."""

    SET = "$set"
    SET_ONCE = "$set_once"
    ADD = "$add"
    APPEND = "$append"
    UNION = "$union"
    REMOVE = "$remove"
    UNSET = "$unset"
    DELETE = "$delete"


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------


def to_mixpanel_date(value: date) -> str:
    """Format a date/datetime the way Mixpanel expects (no timezone)."""
    if not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    return value.strftime(MIXPANEL_DATE_FORMAT)


def coerce_value(value: Any) -> Any:
    """Return a JSON-compatible copy of ``value`` or raise SerializationError."""
    if value is None or isinstance(value, (str, bool, int)):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise SerializationError(f"non-finite float {value!r}")
        return value
    if isinstance(value, Enum):
        return coerce_value(value.value)
    if isinstance(value, (datetime, date)):
        return to_mixpanel_date(value)
    if isinstance(value, Decimal):
        return coerce_value(float(value))
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        return [coerce_value(v) for v in value]
    if isinstance(value, dict):
        return coerce_properties(value)
    raise SerializationError(
        f"value of type {type(value).__name__} is not JSON serializable"
    )


def coerce_properties(properties: Dict[str, Any]) -> Dict[str, Any]:
    out = {}
    for key, val in properties.items():
        if not isinstance(key, str):
            raise SerializationError(f"property name {key!r} is not a string")
        out[key] = coerce_value(val)
    return out


# ---------------------------------------------------------------------------
# Message data class
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MixpanelMessage:
    """A single queued message.

    ``payload`` is the exact JSON object sent to Mixpanel; the other fields
    are local bookkeeping and never leave the process. Each instance holds
    a private deep copy of the payload it was built from.
    """

    message_type: MessageType
    payload: Dict[str, Any]
    timestamp: float = field(default_factory=time.time)
    message_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self):
        object.__setattr__(self, "payload", copy.deepcopy(self.payload))

    def copy(self) -> "MixpanelMessage":
        """Same message (same id) with its own payload copy."""
        return replace(self)

    @property
    def is_event(self) -> bool:
        return self.message_type is MessageType.EVENT

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the persisted queue form."""
        return {
            "message_id": self.message_id,
            "message_type": self.message_type.value,
            "timestamp": self.timestamp,
            "payload": self.payload,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MixpanelMessage":
        return cls(
            message_type=MessageType(data["message_type"]),
            payload=data["payload"],
            timestamp=float(data["timestamp"]),
            message_id=data["message_id"],
        )
