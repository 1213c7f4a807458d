"""Mixpanel Analytics — client-side event and people tracking for Mixpanel.

Buffers tracked events and people profile updates, keeps a persistent
identity (distinct id, token, super properties), and delivers messages to
the Mixpanel ingestion API in batches. Queued messages are written to disk
so they survive restarts.

Integration points (pick any or combine):
    1. Direct API          — MixpanelTracker.track_event() and friends
    2. FastAPI middleware  — tracks one event per HTTP request
"""

from mixpanel_analytics.config import MixpanelConfiguration
from mixpanel_analytics.errors import (
    MixpanelError,
    NetworkError,
    PersistenceError,
    SerializationError,
)
from mixpanel_analytics.events import (
    MessageType,
    MixpanelMessage,
    ProfileAction,
    to_mixpanel_date,
)
from mixpanel_analytics.identity import PersistentIdentity
from mixpanel_analytics.message_queue import MessageQueue
from mixpanel_analytics.recorders import EventRecorder, PeopleRecorder
from mixpanel_analytics.tracker import MixpanelTracker


def __getattr__(name: str):
    if name == "MixpanelMiddleware":
        from mixpanel_analytics.middleware import MixpanelMiddleware

        return MixpanelMiddleware
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "MixpanelTracker",
    "MixpanelConfiguration",
    "MixpanelMessage",
    "MessageType",
    "ProfileAction",
    "MessageQueue",
    "PersistentIdentity",
    "EventRecorder",
    "PeopleRecorder",
    "MixpanelMiddleware",
    "MixpanelError",
    "NetworkError",
    "PersistenceError",
    "SerializationError",
    "to_mixpanel_date",
]

__version__ = "0.1.0"
